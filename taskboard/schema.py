"""
Task schema, validation and kanban status machine.

Task lifecycle:
  backlog ⇄ in-progress ⇄ completed

Any column can move to any other column. Toggle-complete is the shortcut
used by the checkbox on a card: completed goes back to backlog, everything
else goes to completed.
"""
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import ValidationError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def make_id(prefix: str) -> str:
    """Generate a sortable unique ID (ms-precision timestamp + random hex)."""
    ts = int(time.time() * 1000)
    rand = uuid.uuid4().hex[:8]
    return f"{prefix}-{ts}-{rand}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if isinstance(value, datetime) else value


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or datetime) into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(f"Invalid date: '{value}'. Use ISO-8601 (e.g. 2025-01-31T17:00:00Z)")
    else:
        raise ValidationError(f"Invalid date: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class TaskStatus(Enum):
    """Kanban columns."""
    BACKLOG = "backlog"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"

    @classmethod
    def from_str(cls, value: Any) -> "TaskStatus":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(s.value for s in cls)
            raise ValidationError(f"Invalid status: '{value}'. Allowed: {allowed}")


class TaskPriority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_str(cls, value: Any) -> "TaskPriority":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(p.value for p in cls)
            raise ValidationError(f"Invalid priority: '{value}'. Allowed: {allowed}")


# ── Validation ───────────────────────────────────────────────────────────────

TASK_FIELDS = ("title", "description", "status", "priority", "due_date", "tags")


def clean_title(value: Any) -> str:
    title = value.strip() if isinstance(value, str) else ""
    if not title:
        raise ValidationError("title is required")
    return title


def clean_tags(value: Any) -> List[str]:
    """Trim, drop blanks and duplicates, keep first-seen order."""
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple)):
        raise ValidationError("tags must be a list of strings")
    tags: List[str] = []
    for tag in value:
        if not isinstance(tag, str):
            raise ValidationError("tags must be a list of strings")
        tag = tag.strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def validate_task_payload(payload: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """
    Validate and coerce a task payload.

    With ``partial=False`` (create) missing fields get their defaults.
    With ``partial=True`` (update) only the keys present are returned.

    Raises:
        ValidationError with a message the caller can act on.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Task payload must be a JSON object")

    unknown = set(payload) - set(TASK_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

    result: Dict[str, Any] = {}

    if not partial or "title" in payload:
        result["title"] = clean_title(payload.get("title"))

    if "description" in payload:
        desc = payload["description"]
        if desc is not None and not isinstance(desc, str):
            raise ValidationError("description must be a string")
        result["description"] = (desc or "").strip()
    elif not partial:
        result["description"] = ""

    if "status" in payload:
        result["status"] = TaskStatus.from_str(payload["status"])
    elif not partial:
        result["status"] = TaskStatus.BACKLOG

    if "priority" in payload and payload["priority"] not in (None, ""):
        result["priority"] = TaskPriority.from_str(payload["priority"])
    elif not partial:
        result["priority"] = TaskPriority.MEDIUM

    if "due_date" in payload:
        result["due_date"] = parse_datetime(payload["due_date"])
    elif not partial:
        result["due_date"] = None

    if "tags" in payload:
        result["tags"] = clean_tags(payload["tags"])
    elif not partial:
        result["tags"] = []

    return result


# ── Entities ─────────────────────────────────────────────────────────────────

@dataclass
class Task:
    """A to-do record owned by a single user."""

    task_id: str
    owner_id: str
    title: str
    description: str = ""
    status: TaskStatus = TaskStatus.BACKLOG
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: Optional[datetime] = None
    tags: List[str] = field(default_factory=list)
    ai_generated: bool = False
    calendar_event_id: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def touch(self) -> None:
        self.updated_at = utc_now()

    def apply_update(self, changes: Dict[str, Any]) -> None:
        """Apply already-validated changes; untouched fields stay as they are."""
        for name in TASK_FIELDS:
            if name in changes:
                setattr(self, name, changes[name])
        if "due_date" in changes and changes["due_date"] is None:
            # A calendar link is only meaningful while a due date exists
            self.calendar_event_id = None
        self.touch()

    def transition_to(self, new_status: TaskStatus) -> bool:
        """Move to another column. Returns False when already there."""
        if new_status == self.status:
            return False
        self.status = new_status
        self.touch()
        return True

    def toggle_complete(self) -> TaskStatus:
        """Completed → backlog; backlog or in-progress → completed."""
        if self.status == TaskStatus.COMPLETED:
            self.transition_to(TaskStatus.BACKLOG)
        else:
            self.transition_to(TaskStatus.COMPLETED)
        return self.status

    def link_calendar_event(self, event_id: str) -> None:
        if self.due_date is None:
            raise ValidationError("Task needs a due date before it can be added to the calendar")
        self.calendar_event_id = event_id
        self.touch()

    def unlink_calendar_event(self) -> None:
        self.calendar_event_id = None
        self.touch()

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        now = now or utc_now()
        return (
            self.due_date is not None
            and self.due_date < now
            and self.status != TaskStatus.COMPLETED
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.task_id,
            "owner_id": self.owner_id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority.value,
            "due_date": _iso(self.due_date),
            "tags": list(self.tags),
            "ai_generated": self.ai_generated,
            "calendar_event_id": self.calendar_event_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        tags = data.get("tags") or []
        return cls(
            task_id=data.get("id") or data.get("task_id", ""),
            owner_id=data.get("owner_id", ""),
            title=data.get("title", ""),
            description=data.get("description") or "",
            status=TaskStatus.from_str(data.get("status") or "backlog"),
            priority=TaskPriority.from_str(data.get("priority") or "medium"),
            due_date=parse_datetime(data.get("due_date")),
            tags=list(tags),
            ai_generated=bool(data.get("ai_generated", False)),
            calendar_event_id=data.get("calendar_event_id"),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
            updated_at=parse_datetime(data.get("updated_at")) or utc_now(),
        )


@dataclass
class AISuggestion:
    """Transient task idea produced by the assistant. Never stored."""

    title: str
    description: str = ""
    type: str = "task"
    confidence: float = 0.5
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["AISuggestion"]:
        """Coerce one model-produced entry; returns None when unusable."""
        if not isinstance(data, dict):
            return None
        title = data.get("title")
        if not isinstance(title, str) or not title.strip():
            return None
        try:
            confidence = float(data.get("confidence", 0.5))
        except (TypeError, ValueError):
            confidence = 0.5
        kind = data.get("type") if data.get("type") in ("task", "priority", "schedule") else "task"
        metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
        return cls(
            title=title.strip(),
            description=str(data.get("description") or ""),
            type=kind,
            confidence=min(1.0, max(0.0, confidence)),
            metadata=metadata,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "confidence": self.confidence,
            "metadata": self.metadata,
        }
