"""
Tests for the board service: task lifecycle, cascade delete, calendar
linking, drawings and assistant entry points.
"""
import pytest

from taskboard.errors import ExternalServiceError, InvalidInput, NotFound, ValidationError
from taskboard.schema import TaskPriority, TaskStatus
from taskboard.service import TaskService

from fakes import FakeCalendar, FakeGenerator

RECT = {"type": "rectangle", "x": 0, "y": 0, "width": 10, "height": 10}


def _connect_calendar(store, owner="alice"):
    store.save_credentials(owner, {"access_token": "tok", "refresh_token": "ref"})


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Create Tests
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_create_manual_infers_priority_from_keywords(service, generator):
    task = service.create_task("alice", {"title": "Submit report ASAP"})
    assert task.priority == TaskPriority.HIGH
    assert task.ai_generated is False
    assert generator.prompts == []
    assert service.get_task("alice", task.task_id).title == "Submit report ASAP"


def test_create_explicit_priority_is_kept(service, generator):
    task = service.create_task("alice", {"title": "Organize desk", "priority": "low"})
    assert task.priority == TaskPriority.LOW
    assert generator.prompts == []


def test_create_medium_is_re_inferred(store):
    gen = FakeGenerator("high")
    service = TaskService(store, generator=gen)
    task = service.create_task("alice", {"title": "Review budget", "priority": "medium"})
    assert task.priority == TaskPriority.HIGH
    assert len(gen.prompts) == 1


def test_create_from_natural_language(store):
    gen = FakeGenerator('{"title": "Pay rent", "priority": "high", "tags": ["home"]}')
    service = TaskService(store, generator=gen)
    task = service.create_task("alice", {"natural_language": "pay the rent on the 1st"})
    assert task.title == "Pay rent"
    assert task.priority == TaskPriority.HIGH
    assert task.tags == ["home"]
    assert task.ai_generated is True


def test_create_from_natural_language_backend_down(store):
    service = TaskService(store, generator=FakeGenerator(fail=True))
    task = service.create_task("alice", {"natural_language": "Buy groceries tomorrow, urgent"})
    assert task.title == "Buy groceries tomorrow, urgent"
    assert task.tags == []
    assert task.ai_generated is True


def test_create_natural_language_explicit_fields_win(store):
    gen = FakeGenerator('{"title": "Derived", "priority": "low"}')
    service = TaskService(store, generator=gen)
    task = service.create_task("alice", {"natural_language": "something", "status": "in-progress"})
    assert task.status == TaskStatus.IN_PROGRESS
    assert task.title == "Derived"


def test_create_empty_natural_language_rejected(service, store):
    with pytest.raises(InvalidInput):
        service.create_task("alice", {"natural_language": "   "})
    assert store.list_tasks("alice") == []


def test_create_invalid_leaves_store_empty(service, store):
    with pytest.raises(ValidationError):
        service.create_task("alice", {"title": ""})
    with pytest.raises(ValidationError):
        service.create_task("alice", {"title": "x", "status": "archived"})
    assert store.list_tasks("alice") == []


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Update / Move / Toggle Tests
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_update_is_partial(service):
    task = service.create_task("alice", {"title": "Write", "description": "chapter 1", "tags": ["book"]})
    updated = service.update_task("alice", task.task_id, {"title": "Write more"})
    assert updated.title == "Write more"
    assert updated.description == "chapter 1"
    assert updated.tags == ["book"]
    assert updated.updated_at >= task.created_at


def test_failed_update_changes_nothing(service):
    task = service.create_task("alice", {"title": "Keep me"})
    with pytest.raises(ValidationError):
        service.update_task("alice", task.task_id, {"title": "   "})
    with pytest.raises(ValidationError):
        service.update_task("alice", task.task_id, {"id": "hijack"})
    assert service.get_task("alice", task.task_id).title == "Keep me"


def test_update_other_owner_is_not_found(service):
    task = service.create_task("alice", {"title": "Mine"})
    with pytest.raises(NotFound):
        service.update_task("bob", task.task_id, {"title": "Yours"})


def test_move_and_toggle_persist(service):
    task = service.create_task("alice", {"title": "Card"})
    service.move_task("alice", task.task_id, "in-progress")
    assert service.get_task("alice", task.task_id).status == TaskStatus.IN_PROGRESS

    service.toggle_task("alice", task.task_id)
    assert service.get_task("alice", task.task_id).status == TaskStatus.COMPLETED
    service.toggle_task("alice", task.task_id)
    assert service.get_task("alice", task.task_id).status == TaskStatus.BACKLOG

    with pytest.raises(ValidationError):
        service.move_task("alice", task.task_id, "done")


def test_move_and_toggle_of_task_deleted_mid_call(service, store, monkeypatch):
    task = service.create_task("alice", {"title": "Card"})
    read_task = store.get_task

    def read_then_delete(owner_id, task_id):
        found = read_task(owner_id, task_id)
        store.delete_task(owner_id, task_id)
        return found

    monkeypatch.setattr(store, "get_task", read_then_delete)
    with pytest.raises(NotFound):
        service.move_task("alice", task.task_id, "in-progress")

    store.insert_task(task)
    with pytest.raises(NotFound):
        service.toggle_task("alice", task.task_id)
    assert read_task("alice", task.task_id) is None


def test_board_groups_by_column(service):
    a = service.create_task("alice", {"title": "A"})
    service.create_task("alice", {"title": "B", "status": "completed"})
    service.create_task("bob", {"title": "Not mine"})
    board = service.board("alice")
    assert set(board["columns"]) == {"backlog", "in-progress", "completed"}
    assert [t["id"] for t in board["columns"]["backlog"]] == [a.task_id]
    assert board["stats"]["total"] == 2


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Delete Tests
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_delete_cascades_to_drawings(service, store):
    task = service.create_task("alice", {"title": "Sketchy"})
    for i in range(3):
        service.create_drawing("alice", {"name": f"D{i}", "shapes": [RECT], "task_id": task.task_id})
    service.create_drawing("alice", {"name": "Unrelated", "shapes": []})

    assert service.delete_task("alice", task.task_id) == 3
    assert store.list_drawings("alice", task_id=task.task_id) == []
    assert len(store.list_drawings("alice")) == 1
    with pytest.raises(NotFound):
        service.get_task("alice", task.task_id)


def test_delete_missing_task_touches_no_drawings(service, store):
    service.create_drawing("alice", {"name": "Orphan", "shapes": []})
    with pytest.raises(NotFound):
        service.delete_task("alice", "task-missing")
    assert len(store.list_drawings("alice")) == 1


def test_delete_survives_calendar_failure(store):
    calendar = FakeCalendar()
    service = TaskService(store, calendar=calendar)
    _connect_calendar(store)
    task = service.create_task("alice", {"title": "Meeting", "due_date": "2025-05-01T10:00:00Z"})
    service.link_calendar("alice", task.task_id)

    calendar.fail = True
    service.delete_task("alice", task.task_id)
    assert store.get_task("alice", task.task_id) is None
    assert calendar.calls[-1][0] == "delete"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Calendar Tests
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_link_requires_due_date_and_connection(service, store):
    task = service.create_task("alice", {"title": "No date"})
    with pytest.raises(ValidationError, match="due date"):
        service.link_calendar("alice", task.task_id)

    dated = service.create_task("alice", {"title": "Dated", "due_date": "2025-05-01T10:00:00Z"})
    with pytest.raises(ValidationError, match="not connected"):
        service.link_calendar("alice", dated.task_id)


def test_link_and_unlink(service, store, calendar):
    _connect_calendar(store)
    task = service.create_task("alice", {"title": "Dentist", "due_date": "2025-05-01T10:00:00Z"})
    linked = service.link_calendar("alice", task.task_id)
    assert linked.calendar_event_id == "evt-1"
    assert store.get_task("alice", task.task_id).calendar_event_id == "evt-1"

    unlinked = service.unlink_calendar("alice", task.task_id)
    assert unlinked.calendar_event_id is None
    assert "evt-1" not in calendar.events


def test_link_failure_leaves_task_unlinked(service, store, calendar):
    _connect_calendar(store)
    task = service.create_task("alice", {"title": "Flight", "due_date": "2025-05-01T10:00:00Z"})
    calendar.fail = True
    with pytest.raises(ExternalServiceError):
        service.link_calendar("alice", task.task_id)
    assert store.get_task("alice", task.task_id).calendar_event_id is None


def test_due_date_change_updates_linked_event(service, store, calendar):
    _connect_calendar(store)
    task = service.create_task("alice", {"title": "Call", "due_date": "2025-05-01T10:00:00Z"})
    service.link_calendar("alice", task.task_id)

    service.update_task("alice", task.task_id, {"due_date": "2025-05-02T10:00:00Z"})
    assert calendar.calls[-1] == ("update", "evt-1")

    cleared = service.update_task("alice", task.task_id, {"due_date": None})
    assert cleared.calendar_event_id is None
    assert calendar.calls[-1] == ("delete", "evt-1")


def test_due_date_update_survives_calendar_failure(service, store, calendar):
    _connect_calendar(store)
    task = service.create_task("alice", {"title": "Call", "due_date": "2025-05-01T10:00:00Z"})
    service.link_calendar("alice", task.task_id)
    calendar.fail = True
    updated = service.update_task("alice", task.task_id, {"due_date": "2025-05-03T10:00:00Z"})
    assert updated.due_date.day == 3


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Drawing Tests
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_drawing_for_unknown_task_rejected(service):
    with pytest.raises(NotFound):
        service.create_drawing("alice", {"name": "X", "shapes": [], "task_id": "task-nope"})


def test_update_drawing_regenerates_preview(service):
    drawing = service.create_drawing("alice", {"name": "Plan", "shapes": []})
    old_preview = drawing.preview
    updated = service.update_drawing("alice", drawing.drawing_id, {"shapes": [RECT]})
    assert len(updated.shapes) == 1
    assert updated.preview != old_preview
    assert updated.name == "Plan"


def test_preview_without_shapes_is_ignored(service):
    drawing = service.create_drawing("alice", {"name": "Plan", "shapes": [RECT]})
    updated = service.update_drawing("alice", drawing.drawing_id,
                                     {"name": "Renamed", "preview": "data:image/png;base64,AAAA"})
    assert updated.preview == drawing.preview
    stored = service.get_drawing("alice", drawing.drawing_id)
    assert stored.name == "Renamed"
    assert stored.preview == drawing.preview


def test_bad_drawing_update_changes_nothing(service):
    drawing = service.create_drawing("alice", {"name": "Plan", "shapes": [RECT]})
    with pytest.raises(ValidationError):
        service.update_drawing("alice", drawing.drawing_id, {"name": "New", "shapes": [{"type": "blob"}]})
    stored = service.get_drawing("alice", drawing.drawing_id)
    assert stored.name == "Plan"
    assert len(stored.shapes) == 1


def test_delete_drawing(service):
    drawing = service.create_drawing("alice", {"name": "Temp", "shapes": []})
    service.delete_drawing("alice", drawing.drawing_id)
    with pytest.raises(NotFound):
        service.delete_drawing("alice", drawing.drawing_id)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Assistant Tests
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_summary_period_validated(service):
    with pytest.raises(ValidationError):
        service.summary("alice", "monthly")


def test_summary_without_tasks(service, generator):
    assert "No tasks found" in service.summary("alice", "weekly")
    assert generator.prompts == []


def test_suggestions_from_recent_tasks(store):
    gen = FakeGenerator('[{"title": "Follow up", "confidence": 0.9}]')
    service = TaskService(store, generator=gen)
    service.create_task("alice", {"title": "Email client", "priority": "high"})
    suggestions = service.suggestions("alice")
    assert suggestions[0]["title"] == "Follow up"
    assert "Email client" in gen.prompts[-1]
