"""Tests for the HTTP batch transport (httpx.MockTransport backed)."""

import json
from datetime import datetime, timezone

import httpx
import pytest

from tasksync.protocols import BatchTransport, TransportError
from tasksync.sync import HttpBatchTransport
from tasksync.types import VerdictStatus

BASE = "http://sync.test/api"
NOW = datetime(2025, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_transport(handler, **kwargs):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpBatchTransport(base_url=BASE, client=client, **kwargs)


@pytest.fixture
def items(storage):
    task = storage.create_task({"title": "Ship it", "description": "today"})
    storage.update_task(task.id, {"completed": True})
    storage.delete_task(task.id)
    return storage.queue.pending_items()


class TestHealth:
    def test_satisfies_protocol(self):
        assert isinstance(HttpBatchTransport(base_url=BASE), BatchTransport)

    def test_healthy(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, json={"status": "ok", "timestamp": NOW.isoformat()})

        assert make_transport(handler).check_health() is True
        assert seen == [f"{BASE}/health"]

    def test_server_error_is_unreachable(self):
        assert make_transport(lambda r: httpx.Response(500)).check_health() is False

    def test_connection_error_is_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assert make_transport(handler).check_health() is False

    def test_trailing_slash_in_base_url(self):
        seen = []

        def handler(request):
            seen.append(request.url.path)
            return httpx.Response(200)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        HttpBatchTransport(base_url=BASE + "/", client=client).check_health()
        assert seen == ["/api/health"]


class TestSendBatch:
    def test_request_body_shape(self, items):
        captured = {}

        def handler(request):
            captured["method"] = request.method
            captured["path"] = request.url.path
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"processed_items": []})

        make_transport(handler).send_batch(items, NOW)

        assert captured["method"] == "POST"
        assert captured["path"] == "/api/batch"
        body = captured["body"]
        assert datetime.fromisoformat(body["client_timestamp"].replace("Z", "+00:00")) == NOW
        assert [i["operation"] for i in body["items"]] == ["create", "update", "delete"]
        first = body["items"][0]
        assert first["client_id"] == items[0].id
        assert first["task_id"] == items[0].task_id
        assert first["data"]["title"] == "Ship it"
        assert body["items"][2]["data"] == {"id": items[0].task_id}

    def test_parses_verdicts(self, items):
        def handler(request):
            sent = json.loads(request.content)["items"]
            return httpx.Response(
                200,
                json={
                    "processed_items": [
                        {"client_id": sent[0]["client_id"], "server_id": "s1", "status": "success"},
                        {
                            "client_id": sent[1]["client_id"],
                            "status": "conflict",
                            "resolved_data": {"title": "server"},
                        },
                        {"client_id": sent[2]["client_id"], "status": "error", "error": "nope"},
                    ]
                },
            )

        response = make_transport(handler).send_batch(items, NOW)

        statuses = [v.status for v in response.processed_items]
        assert statuses == [VerdictStatus.SUCCESS, VerdictStatus.CONFLICT, VerdictStatus.ERROR]
        assert response.processed_items[0].server_id == "s1"
        assert response.processed_items[1].resolved_data == {"title": "server"}
        assert response.processed_items[2].error == "nope"

    def test_http_error_status(self, items):
        transport = make_transport(lambda r: httpx.Response(500, json={"error": "boom"}))

        with pytest.raises(TransportError) as exc_info:
            transport.send_batch(items, NOW)

        assert exc_info.value.status_code == 500

    def test_malformed_json(self, items):
        transport = make_transport(lambda r: httpx.Response(200, content=b"<html>"))

        with pytest.raises(TransportError, match="Malformed"):
            transport.send_batch(items, NOW)

    def test_unexpected_shape(self, items):
        transport = make_transport(
            lambda r: httpx.Response(200, json={"processed_items": [{"status": "maybe"}]})
        )

        with pytest.raises(TransportError, match="Malformed"):
            transport.send_batch(items, NOW)

    def test_timeout(self, items):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(TransportError, match="timed out after 2.5s"):
            make_transport(handler, batch_timeout=2.5).send_batch(items, NOW)

    def test_network_error(self, items):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransportError, match="failed"):
            make_transport(handler).send_batch(items, NOW)
