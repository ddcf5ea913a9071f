"""Tests for the task engine: lifecycle, auditing and time-driven sweeps."""

from datetime import datetime, timedelta, timezone

import pytest

from coworking_portal.core.storage import FileBackedStore, InMemoryStore
from coworking_portal.services.tasks import (
    SYSTEM_USER_ID,
    TaskService,
    default_tasks,
)
from coworking_portal_shared.schemas.common import (
    FileType,
    HistoryAction,
    RecurrenceType,
    StorageKey,
    TaskPriority,
    TaskStatus,
)
from coworking_portal_shared.schemas.tasks import (
    AppliedFine,
    RecurringPattern,
    TaskUpdate,
    utcnow,
)


@pytest.fixture
def past_due(service, make_task_in):
    """An assigned task that fell due two hours ago."""
    return service.create(
        make_task_in(
            due_date=utcnow() - timedelta(hours=2),
            assigned_to="staff-1",
            assigned_to_name="Mike",
            fine_amount=50,
        ),
        "3",
        "Admin User",
    )


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


class TestCreate:
    def test_unassigned_task_is_open(self, service, make_task_in):
        task = service.create(make_task_in(), "3", "Admin User")

        assert task.status == TaskStatus.OPEN
        assert len(task.history) == 1
        assert task.history[0].action == HistoryAction.CREATED
        assert task.history[0].user_name == "Admin User"

    def test_assigned_task_is_assigned(self, service, make_task_in):
        task = service.create(
            make_task_in(assigned_to="staff-1", assigned_to_name="Mike"), "3", "Admin User"
        )

        assert task.status == TaskStatus.ASSIGNED
        assert len(task.history) == 2
        assert task.history[1].action == HistoryAction.ASSIGNED
        assert task.history[1].new_value == "Mike"

    def test_created_fields(self, service, make_task_in):
        task = service.create(make_task_in(), "3", "Admin User")

        assert task.title == "Clean Lobby"
        assert task.priority == TaskPriority.HIGH
        assert task.created_by == "3"
        assert task.comments == []
        assert task.attachments == []
        assert task.fine_applied is False
        assert task.completed_at is None

    def test_task_is_persisted(self, service, store, make_task_in):
        task = service.create(make_task_in(), "3", "Admin User")

        records = store.read(StorageKey.TASKS, [])
        assert [r["id"] for r in records] == [task.id]
        assert records[0]["branchId"] == "1"
        assert "assignedTo" not in records[0]

    def test_ids_are_sequential(self, service, make_task_in):
        first = service.create(make_task_in(), "3", "Admin User")
        second = service.create(make_task_in(title="Restock Pantry"), "3", "Admin User")
        assert (first.id, second.id) == ("1", "2")

    def test_next_id_skips_past_highest(self, store, make_task_in):
        service = TaskService(store, seed_tasks=default_tasks())
        task = service.create(make_task_in(), "3", "Admin User")
        assert task.id == "3"

    def test_pattern_dropped_for_non_recurring_task(self, service, make_task_in):
        task = service.create(
            make_task_in(recurring_pattern=RecurringPattern(type=RecurrenceType.DAILY)),
            "3",
            "Admin User",
        )
        assert task.recurring_pattern is None


# ---------------------------------------------------------------------------
# Reads and seeding
# ---------------------------------------------------------------------------


class TestReads:
    def test_unknown_id_is_none(self, service):
        assert service.get("missing") is None

    def test_filters(self, service, make_task_in):
        service.create(make_task_in(branch_id="1", assigned_to="staff-1"), "3", "Admin")
        service.create(make_task_in(branch_id="2", assigned_to="staff-2"), "3", "Admin")
        service.create(make_task_in(branch_id="2"), "3", "Admin")

        assert len(service.list_all()) == 3
        assert len(service.list_by_branch("2")) == 2
        assert [t.assigned_to for t in service.list_by_assignee("staff-1")] == ["staff-1"]

    def test_empty_store_serves_default_tasks(self, store):
        service = TaskService(store)
        tasks = service.list_all()

        assert [t.id for t in tasks] == ["1", "2"]
        assert tasks[0].is_recurring
        assert tasks[1].status == TaskStatus.ASSIGNED
        assert store.read(StorageKey.TASKS, []) == []

    def test_unreadable_record_does_not_hide_valid_ones(self, make_task_in):
        good = TaskService(InMemoryStore(), seed_tasks=[]).create(make_task_in(), "3", "Admin").to_record()
        bad = {**good, "id": "7", "department": "Plumbing"}
        service = TaskService(InMemoryStore({StorageKey.TASKS.value: [good, bad]}))

        assert [t.id for t in service.list_all()] == ["1"]
        assert service.get("7") is None

    def test_unreadable_record_survives_writes(self, make_task_in):
        good = TaskService(InMemoryStore(), seed_tasks=[]).create(make_task_in(), "3", "Admin").to_record()
        bad = {**good, "id": "7", "department": "Plumbing"}
        store = InMemoryStore({StorageKey.TASKS.value: [good, bad]})
        service = TaskService(store)

        created = service.create(make_task_in(title="Restock Pantry"), "3", "Admin")
        service.sweep_overdue(utcnow() + timedelta(days=1))

        assert created.id == "8"
        records = store.read(StorageKey.TASKS, [])
        assert sorted(r["id"] for r in records) == ["1", "7", "8"]
        assert next(r for r in records if r["id"] == "7") == bad

    def test_all_records_unreadable_serves_no_seed(self):
        store = InMemoryStore({StorageKey.TASKS.value: [{"id": "1", "title": "no fields"}, "junk"]})
        service = TaskService(store)
        assert service.list_all() == []

    def test_seed_is_not_shared_between_reads(self, store):
        service = TaskService(store)
        service.list_all()[0].title = "changed"
        assert service.list_all()[0].title == "Clean Washroom - Hourly"

    def test_tasks_survive_new_service_over_same_directory(self, tmp_path, make_task_in):
        first = TaskService(FileBackedStore(tmp_path), seed_tasks=[])
        task = first.create(make_task_in(), "3", "Admin User")
        first.add_comment(task.id, "u1", "Alice", "On it")

        second = TaskService(FileBackedStore(tmp_path), seed_tasks=[])
        reloaded = second.get(task.id)
        assert reloaded is not None
        assert reloaded.due_date == task.due_date
        assert [c.comment for c in reloaded.comments] == ["On it"]


# ---------------------------------------------------------------------------
# Update auditing
# ---------------------------------------------------------------------------


class TestUpdate:
    def test_completion_is_audited(self, service, make_task_in):
        task = service.create(make_task_in(), "3", "Admin User")
        service.update(task.id, TaskUpdate(status=TaskStatus.IN_PROGRESS), "u1", "Alice")
        before = len(service.get(task.id).history)

        updated = service.update(task.id, TaskUpdate(status=TaskStatus.COMPLETED), "u1", "Alice")

        assert updated.status == TaskStatus.COMPLETED
        assert len(updated.history) == before + 1
        entry = updated.history[-1]
        assert entry.action == HistoryAction.STATUS_CHANGED
        assert (entry.old_value, entry.new_value) == ("In Progress", "Completed")
        assert entry.user_name == "Alice"
        assert updated.completed_at is not None

    def test_reopening_clears_completed_at(self, service, make_task_in):
        task = service.create(make_task_in(), "3", "Admin User")
        service.update(task.id, TaskUpdate(status=TaskStatus.COMPLETED), "u1", "Alice")
        reopened = service.update(task.id, TaskUpdate(status=TaskStatus.IN_PROGRESS), "u1", "Alice")
        assert reopened.completed_at is None

    def test_one_entry_per_audited_field(self, service, make_task_in):
        task = service.create(make_task_in(), "3", "Admin User")
        new_due = task.due_date + timedelta(days=1)

        updated = service.update(
            task.id,
            TaskUpdate(
                status=TaskStatus.IN_PROGRESS,
                assigned_to="staff-2",
                assigned_to_name="Sara",
                due_date=new_due,
            ),
            "u1",
            "Alice",
        )

        actions = [h.action for h in updated.history[1:]]
        assert actions == [
            HistoryAction.STATUS_CHANGED,
            HistoryAction.ASSIGNED,
            HistoryAction.DUE_DATE_CHANGED,
        ]
        assert updated.assigned_to_name == "Sara"
        assert updated.due_date == new_due

    def test_unchanged_values_are_not_audited(self, service, make_task_in):
        task = service.create(make_task_in(), "3", "Admin User")
        updated = service.update(
            task.id, TaskUpdate(status=TaskStatus.OPEN, due_date=task.due_date), "u1", "Alice"
        )
        assert len(updated.history) == 1

    def test_priority_change_merges_silently(self, service, make_task_in):
        task = service.create(make_task_in(), "3", "Admin User")
        updated = service.update(
            task.id, TaskUpdate(priority=TaskPriority.CRITICAL, title="Deep clean"), "u1", "Alice"
        )
        assert updated.priority == TaskPriority.CRITICAL
        assert updated.title == "Deep clean"
        assert len(updated.history) == 1

    def test_assignee_can_be_cleared(self, service, make_task_in):
        task = service.create(
            make_task_in(assigned_to="staff-1", assigned_to_name="Mike"), "3", "Admin User"
        )
        updated = service.update(task.id, TaskUpdate(assigned_to=None), "u1", "Alice")
        assert updated.assigned_to is None
        assert updated.assigned_to_name is None

    def test_reassign_without_name_replaces_old_name(self, service, make_task_in):
        task = service.create(
            make_task_in(assigned_to="staff-1", assigned_to_name="Mike"), "3", "Admin User"
        )

        updated = service.update(task.id, TaskUpdate(assigned_to="staff-2"), "u1", "Alice")

        assert (updated.assigned_to, updated.assigned_to_name) == ("staff-2", "staff-2")
        assert updated.history[-1].old_value == "Mike"
        assert updated.history[-1].new_value == updated.assigned_to_name
        assert service.get(task.id).assigned_to_name == "staff-2"

    def test_unknown_id_is_none(self, service):
        assert service.update("missing", TaskUpdate(status=TaskStatus.COMPLETED), "u1", "Alice") is None

    def test_history_never_shrinks(self, service, make_task_in):
        task = service.create(make_task_in(), "3", "Admin User")
        lengths = [len(task.history)]
        for status in (TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED):
            lengths.append(len(service.update(task.id, TaskUpdate(status=status), "u1", "Alice").history))
        service.add_comment(task.id, "u1", "Alice", "Done")
        lengths.append(len(service.get(task.id).history))
        assert lengths == sorted(lengths)
        assert lengths[-1] == 5


# ---------------------------------------------------------------------------
# updatedAt
# ---------------------------------------------------------------------------

LONG_AGO = datetime(2020, 1, 1, tzinfo=timezone.utc)


class TestUpdatedAt:
    @pytest.fixture
    def stale(self, service, store, make_task_in):
        """An overdue-bound, assigned, fined task whose stored updatedAt is in 2020."""
        task = service.create(
            make_task_in(
                due_date=utcnow() - timedelta(hours=1),
                assigned_to="staff-1",
                fine_amount=50,
            ),
            "3",
            "Admin User",
        )
        records = store.read(StorageKey.TASKS, [])
        records[0]["updatedAt"] = LONG_AGO.isoformat()
        store.write(StorageKey.TASKS, records)
        assert service.get(task.id).updated_at == LONG_AGO
        return task

    def test_update(self, service, stale):
        service.update(stale.id, TaskUpdate(priority=TaskPriority.LOW), "u1", "Alice")
        assert service.get(stale.id).updated_at > LONG_AGO

    def test_add_comment(self, service, stale):
        service.add_comment(stale.id, "u1", "Alice", "hi")
        assert service.get(stale.id).updated_at > LONG_AGO

    def test_add_attachment(self, service, stale):
        service.add_attachment(stale.id, "a.pdf", FileType.DOCUMENT, 10, "https://files.example/a.pdf", "u1")
        assert service.get(stale.id).updated_at > LONG_AGO

    def test_sweep_overdue(self, service, stale):
        now = utcnow()
        service.sweep_overdue(now)
        assert service.get(stale.id).updated_at == now

    def test_apply_late_fines(self, service, stale):
        swept_at = utcnow()
        service.sweep_overdue(swept_at)
        fined_at = swept_at + timedelta(minutes=5)
        service.apply_late_fines(fined_at)
        assert service.get(stale.id).updated_at == fined_at

    def test_created_at_is_not_touched(self, service, stale):
        service.add_comment(stale.id, "u1", "Alice", "hi")
        assert service.get(stale.id).created_at == stale.created_at


# ---------------------------------------------------------------------------
# Comments and attachments
# ---------------------------------------------------------------------------


class TestSubRecords:
    def test_comment_is_recorded_and_audited(self, service, make_task_in):
        task = service.create(make_task_in(), "3", "Admin User")
        comment = service.add_comment(task.id, "u1", "Alice", "hi")

        stored = service.get(task.id)
        assert stored.comments == [comment]
        assert stored.history[-1].action == HistoryAction.COMMENTED
        assert stored.history[-1].description == "Alice added a comment"

    def test_comment_on_unknown_task_is_none(self, service):
        assert service.add_comment("unknown", "u1", "Alice", "hi") is None

    def test_attachment_is_recorded_and_audited(self, service, make_task_in):
        task = service.create(make_task_in(), "3", "Admin User")
        attachment = service.add_attachment(
            task.id, "lobby.jpg", FileType.IMAGE, 2048, "https://files.example/lobby.jpg", "u1", "Alice"
        )

        stored = service.get(task.id)
        assert stored.attachments[0].file_name == "lobby.jpg"
        assert stored.attachments[0].id == attachment.id
        assert stored.history[-1].action == HistoryAction.ATTACHMENT_ADDED
        assert stored.history[-1].user_name == "Alice"

    def test_attachment_on_unknown_task_is_none(self, service):
        assert service.add_attachment("unknown", "a.pdf", FileType.DOCUMENT, 1, "u", "u1") is None


# ---------------------------------------------------------------------------
# Sweeps
# ---------------------------------------------------------------------------


class TestOverdueSweep:
    def test_past_due_task_is_flagged(self, service, make_task_in):
        task = service.create(make_task_in(due_date=utcnow() - timedelta(hours=1)), "3", "Admin")

        flagged = service.sweep_overdue()

        assert [t.id for t in flagged] == [task.id]
        stored = service.get(task.id)
        assert stored.status == TaskStatus.OVERDUE
        assert stored.history[-1].user_id == SYSTEM_USER_ID
        assert stored.history[-1].new_value == "Overdue"

    def test_second_sweep_changes_nothing(self, service, past_due):
        service.sweep_overdue()
        assert service.sweep_overdue() == []

    def test_terminal_and_future_tasks_are_skipped(self, service, make_task_in):
        past = utcnow() - timedelta(hours=1)
        done = service.create(make_task_in(due_date=past), "3", "Admin")
        cancelled = service.create(make_task_in(due_date=past), "3", "Admin")
        service.update(done.id, TaskUpdate(status=TaskStatus.COMPLETED), "u1", "Alice")
        service.update(cancelled.id, TaskUpdate(status=TaskStatus.CANCELLED), "u1", "Alice")
        service.create(make_task_in(), "3", "Admin")

        assert service.sweep_overdue() == []

    def test_explicit_clock(self, service, make_task_in):
        task = service.create(make_task_in(), "3", "Admin")
        assert service.sweep_overdue(task.due_date) == []
        assert len(service.sweep_overdue(task.due_date + timedelta(seconds=1))) == 1


class TestLateFines:
    def test_fine_applied_once(self, service, past_due):
        service.sweep_overdue()

        applied = service.apply_late_fines()
        assert applied == [AppliedFine(task_id=past_due.id, fine_amount=50, assigned_to="staff-1")]
        assert service.get(past_due.id).fine_applied is True

        assert service.apply_late_fines() == []
        fines = [h for h in service.get(past_due.id).history if h.action == HistoryAction.FINE_APPLIED]
        assert len(fines) == 1
        assert fines[0].description == "Late fine of 50 applied"

    def test_not_overdue_no_fine(self, service, past_due):
        assert service.apply_late_fines() == []

    def test_needs_amount_and_assignee(self, service, make_task_in):
        past = utcnow() - timedelta(hours=1)
        service.create(make_task_in(due_date=past, fine_amount=25), "3", "Admin")
        service.create(make_task_in(due_date=past, assigned_to="staff-1"), "3", "Admin")
        service.sweep_overdue()
        assert service.apply_late_fines() == []


class TestRecurringTasks:
    def _recurring(self, service, make_task_in, due, pattern):
        return service.create(
            make_task_in(due_date=due, is_recurring=True, recurring_pattern=pattern),
            "3",
            "Admin",
        )

    def test_next_occurrence_created_when_due(self, service, make_task_in):
        now = utcnow()
        root = self._recurring(
            service, make_task_in, now - timedelta(minutes=30),
            RecurringPattern(type=RecurrenceType.HOURLY),
        )

        created = service.generate_recurring_tasks(now)

        assert len(created) == 1
        occurrence = created[0]
        assert occurrence.parent_task_id == root.id
        assert occurrence.due_date == root.due_date + timedelta(hours=1)
        assert occurrence.is_recurring is False
        assert occurrence.created_by == SYSTEM_USER_ID
        assert service.get(occurrence.id) is not None

    def test_series_not_extended_twice(self, service, make_task_in):
        now = utcnow()
        self._recurring(
            service, make_task_in, now - timedelta(minutes=30),
            RecurringPattern(type=RecurrenceType.HOURLY),
        )
        service.generate_recurring_tasks(now)
        assert service.generate_recurring_tasks(now) == []

    def test_future_series_left_alone(self, service, make_task_in):
        self._recurring(
            service, make_task_in, utcnow() + timedelta(hours=1),
            RecurringPattern(type=RecurrenceType.DAILY),
        )
        assert service.generate_recurring_tasks() == []

    def test_cancelled_root_stops_series(self, service, make_task_in):
        root = self._recurring(
            service, make_task_in, utcnow() - timedelta(days=1),
            RecurringPattern(type=RecurrenceType.DAILY),
        )
        service.update(root.id, TaskUpdate(status=TaskStatus.CANCELLED), "u1", "Alice")
        assert service.generate_recurring_tasks() == []

    def test_ended_series_stops(self, service, make_task_in):
        now = utcnow()
        self._recurring(
            service, make_task_in, now - timedelta(days=2),
            RecurringPattern(type=RecurrenceType.DAILY, end_date=now - timedelta(hours=1)),
        )
        assert service.generate_recurring_tasks(now) == []


class TestMaintenance:
    def test_full_pass(self, service, past_due, make_task_in):
        now = utcnow()
        service.create(
            make_task_in(
                due_date=now - timedelta(minutes=10),
                is_recurring=True,
                recurring_pattern=RecurringPattern(type=RecurrenceType.HOURLY),
            ),
            "3",
            "Admin",
        )

        report = service.run_maintenance(now)

        assert report.timestamp == now
        assert len(report.overdue_tasks) == 2
        assert [f.task_id for f in report.applied_fines] == [past_due.id]
        assert len(report.new_recurring_tasks) == 1

    def test_second_pass_is_quiet(self, service, past_due):
        service.run_maintenance()
        report = service.run_maintenance()
        assert report.overdue_tasks == []
        assert report.applied_fines == []
        assert report.new_recurring_tasks == []
