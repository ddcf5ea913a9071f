"""
Task service layer: lifecycle, sub-records and time-driven sweeps.

Handles:
- Task CRUD over the keyed list store (reload before every read, persist the
  full list after every mutation)
- History auditing for creation, reassignment, status and due-date changes,
  comments, attachments and fines
- Overdue sweep, late-fine application and recurring-task regeneration

Unknown task ids yield None rather than raising; the HTTP layer maps that to 404.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, List, Optional

import structlog
from pydantic import ValidationError

from coworking_portal.core.config import Settings
from coworking_portal.core.storage import ListStore, build_store
from coworking_portal.services.recurrence import next_occurrence
from coworking_portal_shared.schemas.common import (
    TERMINAL_STATUSES,
    Department,
    FileType,
    HistoryAction,
    RecurrenceType,
    StorageKey,
    TaskPriority,
    TaskStatus,
)
from coworking_portal_shared.schemas.tasks import (
    AppliedFine,
    MaintenanceReport,
    RecurringPattern,
    Task,
    TaskAttachment,
    TaskComment,
    TaskCreate,
    TaskHistoryEntry,
    TaskUpdate,
    utcnow,
)

log = structlog.get_logger()

SYSTEM_USER_ID = "system"
SYSTEM_USER_NAME = "System"

# Fields an update may explicitly clear with null
CLEARABLE_FIELDS = {"assigned_to", "assigned_to_name", "fine_amount"}


class TaskSnapshot(list):
    """Tasks loaded for one operation.

    Stored records that fail validation are kept verbatim in ``unreadable`` so
    a save writes them back untouched and their ids stay reserved.
    """

    def __init__(self, tasks: Iterable[Task] = ()):
        super().__init__(tasks)
        self.unreadable: List[Any] = []

    def taken_ids(self) -> List[str]:
        ids = [t.id for t in self]
        ids.extend(str(r["id"]) for r in self.unreadable if isinstance(r, dict) and "id" in r)
        return ids


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _new_id() -> str:
    return uuid.uuid4().hex


def _next_task_id(ids: Iterable[str]) -> str:
    numeric = [int(i) for i in ids if i.isdigit()]
    return str(max(numeric, default=0) + 1)


def _find(tasks: List[Task], task_id: str) -> Optional[Task]:
    return next((t for t in tasks if t.id == task_id), None)


def _resolve_now(now: Optional[datetime]) -> datetime:
    if now is None:
        return utcnow()
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def _fmt_due(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M")


def _history(
    task_id: str,
    action: HistoryAction,
    description: str,
    user_id: str,
    user_name: str,
    at: datetime,
    old_value: Optional[str] = None,
    new_value: Optional[str] = None,
) -> TaskHistoryEntry:
    return TaskHistoryEntry(
        id=_new_id(),
        task_id=task_id,
        action=action,
        description=description,
        user_id=user_id,
        user_name=user_name,
        old_value=old_value,
        new_value=new_value,
        created_at=at,
    )


def default_tasks(now: Optional[datetime] = None) -> List[Task]:
    """Demo tasks served while the store holds no tasks."""
    now = now or utcnow()
    return [
        Task(
            id="1",
            title="Clean Washroom - Hourly",
            description="Clean all washrooms thoroughly including floors, sinks, and toilets",
            department=Department.CLEANING,
            priority=TaskPriority.HIGH,
            status=TaskStatus.OPEN,
            assigned_to="staff-1",
            assigned_to_name="Mike Johnson",
            created_by="3",
            created_by_name="Admin User",
            branch_id="1",
            due_date=now + timedelta(hours=1),
            is_recurring=True,
            recurring_pattern=RecurringPattern(
                type=RecurrenceType.HOURLY,
                interval=1,
                time_of_day="10:00",
                end_date=now + timedelta(days=365),
            ),
            history=[
                _history("1", HistoryAction.CREATED, "Task created", "3", "Admin User", now),
            ],
            fine_amount=50,
            created_at=now,
            updated_at=now,
        ),
        Task(
            id="2",
            title="Check AC Units",
            description="Inspect and maintain all AC units in the building",
            department=Department.AC,
            priority=TaskPriority.MEDIUM,
            status=TaskStatus.ASSIGNED,
            assigned_to="team-1",
            assigned_to_name="Lisa Garcia",
            created_by="3",
            created_by_name="Admin User",
            branch_id="1",
            due_date=now + timedelta(days=1),
            comments=[
                TaskComment(
                    id=_new_id(),
                    task_id="2",
                    user_id="team-1",
                    user_name="Lisa Garcia",
                    comment="Will start working on this tomorrow morning",
                    created_at=now,
                ),
            ],
            history=[
                _history("2", HistoryAction.CREATED, "Task created", "3", "Admin User", now),
                _history(
                    "2", HistoryAction.ASSIGNED, "Task assigned to Lisa Garcia",
                    "3", "Admin User", now, new_value="Lisa Garcia",
                ),
            ],
            fine_amount=100,
            created_at=now,
            updated_at=now,
        ),
    ]


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class TaskService:
    """Task engine over a keyed list store.

    ``seed_tasks`` is served whenever the store holds no tasks; None means the
    built-in demo tasks, an empty list disables seeding.
    """

    def __init__(self, store: ListStore, seed_tasks: Optional[Iterable[Task]] = None):
        self.store = store
        self._seed = list(seed_tasks) if seed_tasks is not None else default_tasks()

    # --- Persistence ---

    def _load(self) -> TaskSnapshot:
        raw = self.store.read(StorageKey.TASKS, [])
        if not raw:
            return TaskSnapshot(t.model_copy(deep=True) for t in self._seed)

        snapshot = TaskSnapshot()
        for record in raw:
            try:
                snapshot.append(Task.model_validate(record))
            except ValidationError as exc:
                snapshot.unreadable.append(record)
                log.warning(
                    "tasks.record_unreadable",
                    task_id=record.get("id") if isinstance(record, dict) else None,
                    errors=exc.error_count(),
                )
        return snapshot

    def _save(self, tasks: TaskSnapshot) -> None:
        records = [t.to_record() for t in tasks] + list(tasks.unreadable)
        self.store.write(StorageKey.TASKS, records)

    def _lock(self):
        return self.store.lock(StorageKey.TASKS)

    # --- Reads ---

    def list_all(self) -> List[Task]:
        return self._load()

    def list_by_branch(self, branch_id: str) -> List[Task]:
        return [t for t in self._load() if t.branch_id == branch_id]

    def list_by_assignee(self, user_id: str) -> List[Task]:
        return [t for t in self._load() if t.assigned_to == user_id]

    def get(self, task_id: str) -> Optional[Task]:
        return _find(self._load(), task_id)

    # --- Mutations ---

    def _build(
        self,
        tasks: TaskSnapshot,
        task_in: TaskCreate,
        created_by: str,
        created_by_name: str,
        now: datetime,
    ) -> Task:
        task_id = _next_task_id(tasks.taken_ids())
        fields = task_in.model_dump(exclude={"recurring_pattern"})
        task = Task(
            id=task_id,
            status=TaskStatus.ASSIGNED if task_in.assigned_to else TaskStatus.OPEN,
            created_by=created_by,
            created_by_name=created_by_name,
            recurring_pattern=task_in.recurring_pattern if task_in.is_recurring else None,
            created_at=now,
            updated_at=now,
            **fields,
        )
        task.history.append(
            _history(task_id, HistoryAction.CREATED, "Task created", created_by, created_by_name, now)
        )
        if task_in.assigned_to:
            assignee = task_in.assigned_to_name or task_in.assigned_to
            task.history.append(
                _history(
                    task_id, HistoryAction.ASSIGNED, f"Task assigned to {assignee}",
                    created_by, created_by_name, now, new_value=assignee,
                )
            )
        tasks.append(task)
        return task

    def create(self, task_in: TaskCreate, created_by: str, created_by_name: str) -> Task:
        """Create a task; status is Assigned when an assignee is given, else Open."""
        with self._lock():
            tasks = self._load()
            task = self._build(tasks, task_in, created_by, created_by_name, utcnow())
            self._save(tasks)
        log.info("task.created", task_id=task.id, branch_id=task.branch_id, status=task.status.value)
        return task

    def update(
        self, task_id: str, task_in: TaskUpdate, actor_id: str, actor_name: str
    ) -> Optional[Task]:
        """Merge set fields into the task.

        Status, assignee and due-date changes are audited, one history entry
        per changed field. Other fields (priority, title, ...) merge silently.
        """
        changes = {
            k: v
            for k, v in task_in.model_dump(exclude_unset=True).items()
            if v is not None or k in CLEARABLE_FIELDS
        }
        with self._lock():
            tasks = self._load()
            task = _find(tasks, task_id)
            if task is None:
                return None

            now = utcnow()
            entries: List[TaskHistoryEntry] = []

            new_status = changes.get("status")
            if new_status and new_status != task.status:
                entries.append(
                    _history(
                        task_id, HistoryAction.STATUS_CHANGED,
                        f"Status changed from {task.status.value} to {new_status.value}",
                        actor_id, actor_name, now,
                        old_value=task.status.value, new_value=new_status.value,
                    )
                )
                if new_status == TaskStatus.COMPLETED:
                    task.completed_at = now
                elif task.status == TaskStatus.COMPLETED:
                    task.completed_at = None  # reopen

            new_assignee = changes.get("assigned_to")
            if new_assignee and new_assignee != task.assigned_to:
                new_name = changes.get("assigned_to_name") or new_assignee
                changes["assigned_to_name"] = new_name
                entries.append(
                    _history(
                        task_id, HistoryAction.ASSIGNED, f"Task reassigned to {new_name}",
                        actor_id, actor_name, now,
                        old_value=task.assigned_to_name, new_value=new_name,
                    )
                )
            elif "assigned_to" in changes and new_assignee is None:
                changes.setdefault("assigned_to_name", None)

            new_due = changes.get("due_date")
            if new_due and new_due != task.due_date:
                entries.append(
                    _history(
                        task_id, HistoryAction.DUE_DATE_CHANGED,
                        f"Due date changed to {_fmt_due(new_due)}",
                        actor_id, actor_name, now,
                        old_value=_fmt_due(task.due_date), new_value=_fmt_due(new_due),
                    )
                )

            for key, value in changes.items():
                setattr(task, key, value)
            task.updated_at = now
            task.history.extend(entries)
            self._save(tasks)

        log.info("task.updated", task_id=task_id, fields=sorted(changes), audited=len(entries))
        return task

    def add_comment(
        self, task_id: str, user_id: str, user_name: str, comment: str
    ) -> Optional[TaskComment]:
        with self._lock():
            tasks = self._load()
            task = _find(tasks, task_id)
            if task is None:
                return None

            now = utcnow()
            new_comment = TaskComment(
                id=_new_id(),
                task_id=task_id,
                user_id=user_id,
                user_name=user_name,
                comment=comment,
                created_at=now,
            )
            task.comments.append(new_comment)
            task.history.append(
                _history(task_id, HistoryAction.COMMENTED, f"{user_name} added a comment", user_id, user_name, now)
            )
            task.updated_at = now
            self._save(tasks)
        log.info("task.commented", task_id=task_id, user_id=user_id)
        return new_comment

    def add_attachment(
        self,
        task_id: str,
        file_name: str,
        file_type: FileType,
        file_size: int,
        file_url: str,
        uploaded_by: str,
        uploaded_by_name: Optional[str] = None,
    ) -> Optional[TaskAttachment]:
        """Record attachment metadata; the file itself lives in external storage."""
        with self._lock():
            tasks = self._load()
            task = _find(tasks, task_id)
            if task is None:
                return None

            now = utcnow()
            attachment = TaskAttachment(
                id=_new_id(),
                task_id=task_id,
                file_name=file_name,
                file_type=file_type,
                file_size=file_size,
                file_url=file_url,
                uploaded_by=uploaded_by,
                uploaded_at=now,
            )
            task.attachments.append(attachment)
            task.history.append(
                _history(
                    task_id, HistoryAction.ATTACHMENT_ADDED, f'Attachment "{file_name}" added',
                    uploaded_by, uploaded_by_name or uploaded_by, now,
                )
            )
            task.updated_at = now
            self._save(tasks)
        log.info("task.attachment_added", task_id=task_id, file_type=file_type.value)
        return attachment

    # --- Sweeps ---

    def sweep_overdue(self, now: Optional[datetime] = None) -> List[Task]:
        """Flag every non-terminal, past-due task as Overdue. Idempotent."""
        now = _resolve_now(now)
        with self._lock():
            tasks = self._load()
            flagged: List[Task] = []
            for task in tasks:
                if task.status in TERMINAL_STATUSES or task.status == TaskStatus.OVERDUE:
                    continue
                if task.due_date >= now:
                    continue
                task.history.append(
                    _history(
                        task.id, HistoryAction.STATUS_CHANGED,
                        f"Status changed from {task.status.value} to {TaskStatus.OVERDUE.value}",
                        SYSTEM_USER_ID, SYSTEM_USER_NAME, now,
                        old_value=task.status.value, new_value=TaskStatus.OVERDUE.value,
                    )
                )
                task.status = TaskStatus.OVERDUE
                task.updated_at = now
                flagged.append(task)
            if flagged:
                self._save(tasks)

        if flagged:
            log.info("tasks.overdue_flagged", count=len(flagged), task_ids=[t.id for t in flagged])
        return flagged

    def apply_late_fines(self, now: Optional[datetime] = None) -> List[AppliedFine]:
        """Apply each overdue task's fine at most once, guarded by ``fine_applied``."""
        now = _resolve_now(now)
        with self._lock():
            tasks = self._load()
            applied: List[AppliedFine] = []
            for task in tasks:
                if task.status != TaskStatus.OVERDUE or task.fine_applied:
                    continue
                if not task.fine_amount or not task.assigned_to:
                    continue
                task.fine_applied = True
                task.updated_at = now
                task.history.append(
                    _history(
                        task.id, HistoryAction.FINE_APPLIED,
                        f"Late fine of {task.fine_amount:g} applied",
                        SYSTEM_USER_ID, SYSTEM_USER_NAME, now,
                        new_value=f"{task.fine_amount:g}",
                    )
                )
                applied.append(
                    AppliedFine(task_id=task.id, fine_amount=task.fine_amount, assigned_to=task.assigned_to)
                )
            if applied:
                self._save(tasks)

        if applied:
            log.info("tasks.fines_applied", count=len(applied), total=sum(f.fine_amount for f in applied))
        return applied

    def generate_recurring_tasks(self, now: Optional[datetime] = None) -> List[Task]:
        """Create the next occurrence for each recurring series whose latest one is due.

        A series is a recurring root task plus every task whose
        ``parent_task_id`` points at it. Cancelled roots stop their series.
        """
        now = _resolve_now(now)
        with self._lock():
            tasks = self._load()
            roots = [
                t for t in tasks
                if t.is_recurring and t.recurring_pattern and t.status != TaskStatus.CANCELLED
            ]
            created: List[Task] = []
            for root in roots:
                lineage = [root] + [t for t in tasks if t.parent_task_id == root.id]
                latest = max(lineage, key=lambda t: t.due_date)
                if latest.due_date > now:
                    continue
                due = next_occurrence(root.recurring_pattern, latest.due_date, now)
                if due is None:
                    continue
                occurrence = TaskCreate(
                    title=root.title,
                    description=root.description,
                    department=root.department,
                    priority=root.priority,
                    branch_id=root.branch_id,
                    due_date=due,
                    assigned_to=root.assigned_to,
                    assigned_to_name=root.assigned_to_name,
                    fine_amount=root.fine_amount,
                    parent_task_id=root.id,
                )
                created.append(self._build(tasks, occurrence, SYSTEM_USER_ID, SYSTEM_USER_NAME, now))
            if created:
                self._save(tasks)

        if created:
            log.info("tasks.recurring_created", count=len(created), task_ids=[t.id for t in created])
        return created

    def run_maintenance(self, now: Optional[datetime] = None) -> MaintenanceReport:
        """Overdue sweep, then fines, then recurrence, all against one clock reading."""
        now = _resolve_now(now)
        report = MaintenanceReport(
            timestamp=now,
            overdue_tasks=self.sweep_overdue(now),
            applied_fines=self.apply_late_fines(now),
            new_recurring_tasks=self.generate_recurring_tasks(now),
        )
        log.info(
            "tasks.maintenance_completed",
            overdue=len(report.overdue_tasks),
            fines=len(report.applied_fines),
            recurring=len(report.new_recurring_tasks),
        )
        return report


def build_task_service(settings: Settings, store: Optional[ListStore] = None) -> TaskService:
    """Task engine over ``store``, or over the storage backend named in settings."""
    if store is None:
        store = build_store(settings)
    log.info("tasks.storage_selected", backend=store.name)
    return TaskService(store, seed_tasks=None if settings.seed_default_tasks else [])
