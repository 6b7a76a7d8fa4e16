"""
Board service: the operations behind every API route.

Each call is scoped to one owner. Validation runs before anything is written,
so a rejected request leaves stored state untouched. Calendar pushes are
best-effort wherever the task change itself is the point of the request.
"""
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from .assistant import SUMMARY_PERIODS, generate_suggestions, generate_summary
from .canvas import CanvasDrawing, clean_drawing_name, render_preview, shapes_from_payload
from .deriver import derive_task
from .errors import ExternalServiceError, NotFound, ValidationError
from .priority import infer_priority
from .schema import (
    Task,
    TaskPriority,
    TaskStatus,
    make_id,
    utc_now,
    validate_task_payload,
)

logger = logging.getLogger(__name__)

RECENT_TASK_DAYS = 7
RECENT_TASK_LIMIT = 20


class TaskService:
    """Store-backed task, drawing and calendar operations for one board."""

    def __init__(self, store, generator=None, calendar=None):
        self.store = store
        self.generator = generator
        self.calendar = calendar

    # ── Tasks ────────────────────────────────────────────────────────────────

    def derive_draft(self, text: Optional[str]) -> Dict[str, Any]:
        return derive_task(text, self.generator)

    def create_task(self, owner_id: str, payload: Dict[str, Any]) -> Task:
        """
        Create a task from explicit fields or from ``natural_language``.

        Explicit fields win over derived ones. A missing or ``medium``
        priority is re-inferred from the title and description.
        """
        if not isinstance(payload, dict):
            raise ValidationError("Task payload must be a JSON object")
        payload = dict(payload)
        natural_language = payload.pop("natural_language", None)

        ai_generated = False
        if natural_language is not None:
            draft = self.derive_draft(natural_language)
            draft.update({k: v for k, v in payload.items() if v is not None})
            payload = draft
            ai_generated = True

        fields = validate_task_payload(payload)
        if fields["priority"] == TaskPriority.MEDIUM:
            fields["priority"] = infer_priority(fields["title"], fields["description"], self.generator)

        task = Task(task_id=make_id("task"), owner_id=owner_id, ai_generated=ai_generated, **fields)
        self.store.insert_task(task)
        logger.info(f"Created task {task.task_id} for {owner_id}")
        return task

    def get_task(self, owner_id: str, task_id: str) -> Task:
        task = self.store.get_task(owner_id, task_id)
        if task is None:
            raise NotFound("Task")
        return task

    def list_tasks(
        self,
        owner_id: str,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        tags: Optional[List[str]] = None,
        search: Optional[str] = None,
    ) -> List[Task]:
        return self.store.list_tasks(
            owner_id,
            status=TaskStatus.from_str(status) if status else None,
            priority=TaskPriority.from_str(priority) if priority else None,
            tags=tags or None,
            search=search.strip() if search and search.strip() else None,
        )

    def update_task(self, owner_id: str, task_id: str, payload: Dict[str, Any]) -> Task:
        changes = validate_task_payload(payload, partial=True)
        task = self.get_task(owner_id, task_id)
        previous_due = task.due_date
        event_id = task.calendar_event_id

        task.apply_update(changes)
        if not self.store.update_task(task):
            raise NotFound("Task")

        if event_id and "due_date" in changes and changes["due_date"] != previous_due:
            if task.due_date is None:
                self._drop_event(owner_id, event_id)
            else:
                self._push_event_update(owner_id, task)
        return task

    def move_task(self, owner_id: str, task_id: str, status: Any) -> Task:
        new_status = TaskStatus.from_str(status)
        task = self.get_task(owner_id, task_id)
        if task.transition_to(new_status) and not self.store.update_task(task):
            raise NotFound("Task")
        return task

    def toggle_task(self, owner_id: str, task_id: str) -> Task:
        task = self.get_task(owner_id, task_id)
        task.toggle_complete()
        if not self.store.update_task(task):
            raise NotFound("Task")
        return task

    def delete_task(self, owner_id: str, task_id: str) -> int:
        """Delete a task and every drawing attached to it. Returns drawings removed."""
        task = self.get_task(owner_id, task_id)
        removed = self.store.delete_drawings_for_task(owner_id, task_id)
        self.store.delete_task(owner_id, task_id)
        if task.calendar_event_id:
            self._drop_event(owner_id, task.calendar_event_id)
        logger.info(f"Deleted task {task_id} ({removed} drawings)")
        return removed

    def board(self, owner_id: str) -> Dict[str, Any]:
        columns: Dict[str, List[Dict[str, Any]]] = {s.value: [] for s in TaskStatus}
        for task in self.store.list_tasks(owner_id):
            columns[task.status.value].append(task.to_dict())
        return {"columns": columns, "stats": self.store.get_stats(owner_id)}

    # ── Calendar ─────────────────────────────────────────────────────────────

    def _credentials(self, owner_id: str) -> Optional[Dict[str, Any]]:
        if self.calendar is None:
            return None
        return self.store.get_credentials(owner_id)

    def _push_event_update(self, owner_id: str, task: Task) -> None:
        creds = self._credentials(owner_id)
        if not creds:
            return
        try:
            self.calendar.update_event(creds, task.calendar_event_id, task)
        except ExternalServiceError as e:
            logger.warning(f"Calendar update for {task.task_id} failed: {e}")

    def _drop_event(self, owner_id: str, event_id: str) -> None:
        creds = self._credentials(owner_id)
        if not creds:
            return
        try:
            self.calendar.delete_event(creds, event_id)
        except ExternalServiceError as e:
            logger.warning(f"Calendar delete of {event_id} failed: {e}")

    def calendar_connected(self, owner_id: str) -> bool:
        return self._credentials(owner_id) is not None

    def require_credentials(self, owner_id: str) -> Dict[str, Any]:
        creds = self._credentials(owner_id)
        if not creds:
            raise ValidationError("Google Calendar is not connected")
        return creds

    def link_calendar(self, owner_id: str, task_id: str) -> Task:
        """
        Create (or refresh) the calendar event for a task.

        Raises:
            ValidationError when the task has no due date or no calendar is connected.
            ExternalServiceError when Google rejects the call; the task is left as it was.
        """
        task = self.get_task(owner_id, task_id)
        if task.due_date is None:
            raise ValidationError("Task needs a due date before it can be added to the calendar")
        creds = self.require_credentials(owner_id)

        if task.calendar_event_id:
            self.calendar.update_event(creds, task.calendar_event_id, task)
            return task

        event_id = self.calendar.create_event(creds, task)
        task.link_calendar_event(event_id)
        self.store.update_task(task)
        return task

    def unlink_calendar(self, owner_id: str, task_id: str) -> Task:
        task = self.get_task(owner_id, task_id)
        if not task.calendar_event_id:
            return task
        creds = self.require_credentials(owner_id)
        self.calendar.delete_event(creds, task.calendar_event_id)
        task.unlink_calendar_event()
        self.store.update_task(task)
        return task

    def list_events(self, owner_id: str) -> List[Dict[str, Any]]:
        creds = self.require_credentials(owner_id)
        return self.calendar.list_events(creds)

    # ── Drawings ─────────────────────────────────────────────────────────────

    def _check_task_ref(self, owner_id: str, task_id: Optional[str]) -> Optional[str]:
        if task_id:
            self.get_task(owner_id, task_id)
        return task_id or None

    def create_drawing(self, owner_id: str, payload: Dict[str, Any]) -> CanvasDrawing:
        if not isinstance(payload, dict):
            raise ValidationError("Drawing payload must be a JSON object")
        shapes = shapes_from_payload(payload)
        task_id = self._check_task_ref(owner_id, payload.get("task_id"))
        drawing = CanvasDrawing.create(
            owner_id,
            payload.get("name"),
            shapes,
            task_id=task_id,
            preview=payload.get("preview"),
        )
        self.store.insert_drawing(drawing)
        return drawing

    def get_drawing(self, owner_id: str, drawing_id: str) -> CanvasDrawing:
        drawing = self.store.get_drawing(owner_id, drawing_id)
        if drawing is None:
            raise NotFound("Drawing")
        return drawing

    def list_drawings(self, owner_id: str, task_id: Optional[str] = None) -> List[CanvasDrawing]:
        return self.store.list_drawings(owner_id, task_id=task_id)

    def update_drawing(self, owner_id: str, drawing_id: str, payload: Dict[str, Any]) -> CanvasDrawing:
        if not isinstance(payload, dict):
            raise ValidationError("Drawing payload must be a JSON object")
        # Parse everything first so a bad payload changes nothing
        name = clean_drawing_name(payload["name"]) if "name" in payload else None
        shapes = shapes_from_payload(payload) if ("shapes" in payload or "data" in payload) else None
        task_id = self._check_task_ref(owner_id, payload.get("task_id")) if "task_id" in payload else None

        drawing = self.get_drawing(owner_id, drawing_id)
        if name is not None:
            drawing.name = name
        if shapes is not None:
            drawing.shapes = shapes
            drawing.preview = payload.get("preview") or render_preview(shapes)
        if "task_id" in payload:
            drawing.task_id = task_id
        drawing.updated_at = utc_now()

        if not self.store.update_drawing(drawing):
            raise NotFound("Drawing")
        return drawing

    def delete_drawing(self, owner_id: str, drawing_id: str) -> None:
        if not self.store.delete_drawing(owner_id, drawing_id):
            raise NotFound("Drawing")

    # ── Assistant ────────────────────────────────────────────────────────────

    def suggestions(self, owner_id: str) -> List[Dict[str, Any]]:
        since = utc_now() - timedelta(days=RECENT_TASK_DAYS)
        recent = self.store.list_tasks(owner_id, created_since=since, limit=RECENT_TASK_LIMIT)
        return [s.to_dict() for s in generate_suggestions(recent, self.generator)]

    def summary(self, owner_id: str, period: str = "daily") -> str:
        if period not in SUMMARY_PERIODS:
            raise ValidationError(f"Invalid period: '{period}'. Allowed: daily, weekly")
        since = utc_now() - timedelta(days=SUMMARY_PERIODS[period])
        tasks = self.store.list_tasks(owner_id, created_since=since)
        return generate_summary(tasks, period, self.generator)
