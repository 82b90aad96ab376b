"""Task CRUD routes.

Every write goes through the local store, which queues the change for the
next sync run.
"""

from datetime import datetime, timezone
from typing import Annotated, Any

from fastapi import APIRouter, Body, HTTPException, Response, status

from ..database import Database
from ..logging_config import get_logger
from ..models import TaskCreated, TaskOut

logger = get_logger("tasksync.tasks")
router = APIRouter(prefix="/tasks", tags=["tasks"])

TaskBody = Annotated[dict[str, Any], Body()]


@router.get("", response_model=list[TaskOut])
def list_tasks(db: Database):
    """All tasks that are not deleted."""
    return [task.to_dict() for task in db.list_tasks()]


@router.get("/{task_id}", response_model=TaskOut)
def get_task(task_id: str, db: Database):
    task = db.get_task(task_id)
    if task is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    return task.to_dict()


@router.post("", response_model=TaskCreated, status_code=status.HTTP_201_CREATED)
def create_task(payload: TaskBody, db: Database):
    """Create a task. Title is required; description and completed are optional."""
    task = db.create_task(payload)
    logger.info(f"CREATE | {task.id}")
    return TaskCreated(data=task.to_dict(), timestamp=datetime.now(timezone.utc))


@router.put("/{task_id}", response_model=TaskOut)
def update_task(task_id: str, payload: TaskBody, db: Database):
    """Partial update of title, description and/or completed."""
    task = db.update_task(task_id, payload)
    if task is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    logger.info(f"UPDATE | {task_id}")
    return task.to_dict()


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(task_id: str, db: Database):
    if not db.delete_task(task_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    logger.info(f"DELETE | {task_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
