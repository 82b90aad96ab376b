"""HTTP batch transport.

Talks to the remote peer's ``/health`` and ``/batch`` endpoints over httpx.
Any failure that leaves the batch outcome unknown is raised as
``TransportError``; the orchestrator then treats every item of the batch as
unconfirmed.
"""

import json
import logging
from datetime import datetime
from typing import Optional, Sequence

import httpx
from pydantic import ValidationError as PydanticValidationError

from tasksync.config import DEFAULT_API_BASE_URL, DEFAULT_BATCH_TIMEOUT, DEFAULT_PROBE_TIMEOUT
from tasksync.protocols import TransportError
from tasksync.types import BatchResponse, QueueItem

from .wire import BatchSyncResponse, build_batch_request, to_batch_response

logger = logging.getLogger(__name__)


class HttpBatchTransport:
    """Batch transport over HTTP.

    Args:
        base_url: Remote base address, e.g. ``http://localhost:3000/api``.
        probe_timeout: Seconds allowed for the health probe.
        batch_timeout: Seconds allowed for one batch submission.
        client: Optional httpx.Client to reuse (tests pass one wired to a
            mock transport or an ASGI app).
    """

    def __init__(
        self,
        base_url: str = DEFAULT_API_BASE_URL,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
        batch_timeout: float = DEFAULT_BATCH_TIMEOUT,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.probe_timeout = probe_timeout
        self.batch_timeout = batch_timeout
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client()
        return self._client

    def close(self) -> None:
        if self._owns_client and self._client is not None:
            self._client.close()
            self._client = None

    def check_health(self) -> bool:
        """Probe ``GET {base}/health``. Never raises."""
        try:
            response = self.client.get(f"{self.base_url}/health", timeout=self.probe_timeout)
        except httpx.HTTPError as e:
            logger.debug(f"Health check failed: {e}")
            return False
        if response.status_code != 200:
            logger.debug(f"Health check returned HTTP {response.status_code}")
            return False
        return True

    def send_batch(self, items: Sequence[QueueItem], client_timestamp: datetime) -> BatchResponse:
        """Submit one batch to ``POST {base}/batch``.

        Raises:
            TransportError: On network errors, timeouts, non-2xx responses or
                a malformed response body.
        """
        request = build_batch_request(items, client_timestamp)
        try:
            response = self.client.post(
                f"{self.base_url}/batch",
                json=request.model_dump(mode="json"),
                timeout=self.batch_timeout,
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"Batch request timed out after {self.batch_timeout}s") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Batch request failed: {e}") from e

        if response.status_code >= 400:
            raise TransportError(
                f"Batch request rejected: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            parsed = BatchSyncResponse.model_validate(response.json())
        except (json.JSONDecodeError, PydanticValidationError) as e:
            raise TransportError(f"Malformed batch response: {e}", status_code=response.status_code) from e

        logger.debug(f"Batch of {len(items)} returned {len(parsed.processed_items)} verdicts")
        return to_batch_response(parsed)
