"""
Task endpoints: CRUD, comments and attachments.

Status flow: Open → Assigned → In Progress → Completed, with Cancelled
reachable from anywhere and Overdue set only by the maintenance sweep.
- Creation, reassignment, status and due-date changes are written to the
  task's history by the engine.
- Unknown task ids map to 404.
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException

from coworking_portal.api.deps import Actor, get_actor, get_task_service
from coworking_portal.services.tasks import TaskService
from coworking_portal_shared.schemas.common import TaskStatus
from coworking_portal_shared.schemas.tasks import (
    AttachmentCreate,
    CommentCreate,
    Task,
    TaskAttachment,
    TaskComment,
    TaskCreate,
    TaskUpdate,
)

router = APIRouter()


def get_task_or_404(service: TaskService, task_id: str) -> Task:
    task = service.get(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


# ---------------------------------------------------------------------------
# Task CRUD
# ---------------------------------------------------------------------------


@router.get("/", response_model=List[Task])
def list_tasks_endpoint(
    branch_id: Optional[str] = None,
    assigned_to: Optional[str] = None,
    status: Optional[TaskStatus] = None,
    service: TaskService = Depends(get_task_service),
):
    """List tasks, optionally filtered by branch, assignee and status."""
    if assigned_to is not None:
        tasks = service.list_by_assignee(assigned_to)
        if branch_id is not None:
            tasks = [t for t in tasks if t.branch_id == branch_id]
    elif branch_id is not None:
        tasks = service.list_by_branch(branch_id)
    else:
        tasks = service.list_all()

    if status is not None:
        tasks = [t for t in tasks if t.status == status]
    return tasks


@router.post("/", response_model=Task, status_code=201)
def create_task_endpoint(
    task_in: TaskCreate,
    actor: Actor = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    """Create a new task."""
    return service.create(task_in, actor.user_id, actor.user_name)


@router.get("/{task_id}", response_model=Task)
def get_task_endpoint(
    task_id: str,
    service: TaskService = Depends(get_task_service),
):
    """Get a single task with comments, attachments and history."""
    return get_task_or_404(service, task_id)


@router.patch("/{task_id}", response_model=Task)
def update_task_endpoint(
    task_id: str,
    task_in: TaskUpdate,
    actor: Actor = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    """Update status, assignee, due date or other task fields."""
    task = service.update(task_id, task_in, actor.user_id, actor.user_name)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


# ---------------------------------------------------------------------------
# Comments & attachments
# ---------------------------------------------------------------------------


@router.post("/{task_id}/comments", response_model=TaskComment, status_code=201)
def add_comment_endpoint(
    task_id: str,
    body: CommentCreate,
    actor: Actor = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    if not body.comment.strip():
        raise HTTPException(status_code=400, detail="Comment is required")
    comment = service.add_comment(task_id, actor.user_id, actor.user_name, body.comment)
    if comment is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return comment


@router.post("/{task_id}/attachments", response_model=TaskAttachment, status_code=201)
def add_attachment_endpoint(
    task_id: str,
    body: AttachmentCreate,
    actor: Actor = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    """Record attachment metadata for a file already uploaded elsewhere."""
    attachment = service.add_attachment(
        task_id,
        body.file_name,
        body.file_type,
        body.file_size,
        body.file_url,
        actor.user_id,
        actor.user_name,
    )
    if attachment is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return attachment
