"""
Client-side task cache.

Holds the last known server copy of every task (``id -> task dict`` in wire
format) and applies edits optimistically: the local record changes first,
the server call runs, and on failure the previous record is put back.
"""
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from .schema import TaskPriority, TaskStatus, parse_datetime, utc_now

logger = logging.getLogger(__name__)


class TaskCache:
    """In-memory task map, optionally persisted to a JSON file."""

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path).expanduser() if path else None
        self._tasks: Dict[str, Dict[str, Any]] = {}
        if self.path and self.path.exists():
            self.load()

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._tasks

    # ── Persistence ──────────────────────────────────────────────────────────

    def load(self) -> None:
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable task cache {self.path}: {e}")
            return
        if isinstance(data, list):
            self._tasks = {t["id"]: t for t in data if isinstance(t, dict) and t.get("id")}

    def save(self) -> None:
        if not self.path:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w") as f:
            json.dump(list(self._tasks.values()), f, indent=2)
        tmp.replace(self.path)

    # ── Records ──────────────────────────────────────────────────────────────

    def replace_all(self, tasks: Iterable[Dict[str, Any]]) -> None:
        self._tasks = {t["id"]: dict(t) for t in tasks}
        self.save()

    def get(self, task_id: str) -> Optional[Dict[str, Any]]:
        task = self._tasks.get(task_id)
        return dict(task) if task else None

    def upsert(self, task: Dict[str, Any]) -> None:
        self._tasks[task["id"]] = dict(task)
        self.save()

    def remove(self, task_id: str) -> Optional[Dict[str, Any]]:
        task = self._tasks.pop(task_id, None)
        self.save()
        return task

    def all(self) -> List[Dict[str, Any]]:
        """Newest first, like the server listing."""
        return sorted(self._tasks.values(), key=lambda t: t.get("created_at") or "", reverse=True)

    def apply_optimistic(
        self,
        task_id: str,
        updates: Dict[str, Any],
        commit: Callable[[], Optional[Dict[str, Any]]],
    ) -> Optional[Dict[str, Any]]:
        """
        Apply ``updates`` locally, then run ``commit``.

        On success the local copy is replaced by the record ``commit``
        returns (when it returns one). If ``commit`` raises, the previous
        record is restored and the exception propagates.
        """
        previous = self._tasks.get(task_id)
        if previous is not None:
            self._tasks[task_id] = {**previous, **updates}
        try:
            result = commit()
        except Exception:
            if previous is not None:
                self._tasks[task_id] = previous
            raise
        if result is not None:
            self._tasks[result["id"]] = dict(result)
        self.save()
        return self.get(task_id)

    def remove_optimistic(self, task_id: str, commit: Callable[[], Any]) -> None:
        """Drop a task locally, run ``commit``; put it back if that raises."""
        previous = self._tasks.pop(task_id, None)
        try:
            commit()
        except Exception:
            if previous is not None:
                self._tasks[task_id] = previous
            raise
        self.save()

    # ── Views ────────────────────────────────────────────────────────────────

    def by_status(self, status: Any) -> List[Dict[str, Any]]:
        wanted = TaskStatus.from_str(status).value
        return [t for t in self.all() if t.get("status") == wanted]

    def by_priority(self, priority: Any) -> List[Dict[str, Any]]:
        wanted = TaskPriority.from_str(priority).value
        return [t for t in self.all() if t.get("priority") == wanted]

    def overdue(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Open tasks whose due date has passed."""
        now = now or utc_now()
        result = []
        for task in self.all():
            if task.get("status") == TaskStatus.COMPLETED.value:
                continue
            due = parse_datetime(task.get("due_date"))
            if due is not None and due < now:
                result.append(task)
        return result
