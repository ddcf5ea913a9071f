"""Task-related Pydantic schemas shared by the engine, the stores and the HTTP layer.

Records serialize with camelCase keys (``assignedTo``, ``dueDate``) so the
persisted JSON and the API payloads keep one shape.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, List, Optional

from pydantic import AfterValidator, Field

from .common import (
    CamelModel,
    Department,
    FileType,
    HistoryAction,
    RecurrenceType,
    TaskPriority,
    TaskStatus,
)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]
Weekday = Annotated[int, Field(ge=0, le=6)]  # 0 = Sunday


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Value objects and sub-records
# ---------------------------------------------------------------------------

class RecurringPattern(CamelModel):
    type: RecurrenceType
    interval: int = Field(default=1, ge=1)
    days_of_week: Optional[List[Weekday]] = None
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    time_of_day: Optional[str] = Field(default=None, pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    end_date: Optional[UtcDatetime] = None


class TaskAttachment(CamelModel):
    id: str
    task_id: str
    file_name: str
    file_type: FileType
    file_size: int
    file_url: str
    uploaded_by: str
    uploaded_at: UtcDatetime = Field(default_factory=utcnow)


class TaskComment(CamelModel):
    id: str
    task_id: str
    user_id: str
    user_name: str
    comment: str
    created_at: UtcDatetime = Field(default_factory=utcnow)


class TaskHistoryEntry(CamelModel):
    id: str
    task_id: str
    action: HistoryAction
    description: str
    user_id: str
    user_name: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    created_at: UtcDatetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------

class Task(CamelModel):
    id: str
    title: str
    description: str = ""
    department: Department
    priority: TaskPriority
    status: TaskStatus
    assigned_to: Optional[str] = None
    assigned_to_name: Optional[str] = None
    created_by: str
    created_by_name: str
    branch_id: str
    due_date: UtcDatetime
    completed_at: Optional[UtcDatetime] = None
    is_recurring: bool = False
    recurring_pattern: Optional[RecurringPattern] = None
    parent_task_id: Optional[str] = None
    attachments: List[TaskAttachment] = Field(default_factory=list)
    comments: List[TaskComment] = Field(default_factory=list)
    history: List[TaskHistoryEntry] = Field(default_factory=list)
    fine_amount: Optional[float] = None
    fine_applied: bool = False
    created_at: UtcDatetime = Field(default_factory=utcnow)
    updated_at: UtcDatetime = Field(default_factory=utcnow)


class TaskCreate(CamelModel):
    """Request body for POST /tasks."""
    title: str = Field(min_length=1)
    description: str = ""
    department: Department
    priority: TaskPriority = TaskPriority.MEDIUM
    branch_id: str
    due_date: UtcDatetime
    assigned_to: Optional[str] = None
    assigned_to_name: Optional[str] = None
    is_recurring: bool = False
    recurring_pattern: Optional[RecurringPattern] = None
    fine_amount: Optional[float] = Field(default=None, ge=0)
    parent_task_id: Optional[str] = None


class TaskUpdate(CamelModel):
    """Partial update; only fields explicitly set are merged."""
    title: Optional[str] = None
    description: Optional[str] = None
    department: Optional[Department] = None
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None
    assigned_to: Optional[str] = None
    assigned_to_name: Optional[str] = None
    due_date: Optional[UtcDatetime] = None
    fine_amount: Optional[float] = Field(default=None, ge=0)


class CommentCreate(CamelModel):
    """Request body for POST /tasks/{task_id}/comments."""
    comment: str


class AttachmentCreate(CamelModel):
    """Request body for POST /tasks/{task_id}/attachments."""
    file_name: str = Field(min_length=1)
    file_type: FileType
    file_size: int = Field(gt=0)
    file_url: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Sweeps
# ---------------------------------------------------------------------------

class AppliedFine(CamelModel):
    task_id: str
    fine_amount: float
    assigned_to: str


class MaintenanceReport(CamelModel):
    timestamp: UtcDatetime
    overdue_tasks: List[Task] = Field(default_factory=list)
    applied_fines: List[AppliedFine] = Field(default_factory=list)
    new_recurring_tasks: List[Task] = Field(default_factory=list)


class TaskManagementRun(CamelModel):
    """Response body for the task-management cron endpoint."""
    success: bool
    timestamp: UtcDatetime
    overdue_tasks: int
    applied_fines: int
    new_recurring_tasks: int
    details: MaintenanceReport

    @classmethod
    def from_report(cls, report: MaintenanceReport) -> "TaskManagementRun":
        return cls(
            success=True,
            timestamp=report.timestamp,
            overdue_tasks=len(report.overdue_tasks),
            applied_fines=len(report.applied_fines),
            new_recurring_tasks=len(report.new_recurring_tasks),
            details=report,
        )
