"""
HTTP client for the board API.

Every read refreshes the local TaskCache; every write goes through it, so
the cache shows the change at once and rolls back when the server refuses.

Usage:
    cache = TaskCache("~/.cache/taskboard/tasks.json")
    board = BoardClient("http://localhost:3000", api_key, cache)
    board.refresh()
    board.move("task-...", "in-progress")
"""
import logging
from typing import Any, Dict, List, Optional

import requests

from .cache import TaskCache
from .errors import ExternalServiceError, NotFound, TaskboardError, Unauthorized, ValidationError
from .schema import TaskStatus

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10


class BoardClient:
    """Thin requests wrapper around /api/tasks that keeps a TaskCache current."""

    def __init__(self, base_url: str, api_key: str, cache: Optional[TaskCache] = None,
                 timeout: float = DEFAULT_TIMEOUT, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.cache = cache if cache is not None else TaskCache()
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"X-API-Key": api_key})

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"{method} {path} failed: {e}")
            raise ExternalServiceError(f"Board server unreachable: {e}")

        if resp.status_code >= 400:
            try:
                message = resp.json().get("error") or resp.reason
            except ValueError:
                message = resp.reason or f"HTTP {resp.status_code}"
            if resp.status_code == 401:
                raise Unauthorized(message)
            if resp.status_code == 404:
                raise NotFound("Task")
            if resp.status_code == 400:
                raise ValidationError(message)
            if resp.status_code in (502, 503, 504):
                raise ExternalServiceError(message)
            raise TaskboardError(message)
        return resp.json() if resp.content else None

    # ── Reads ────────────────────────────────────────────────────────────────

    def refresh(self) -> List[Dict[str, Any]]:
        """Pull every task from the server into the cache."""
        tasks = self._request("GET", "/api/tasks")["tasks"]
        self.cache.replace_all(tasks)
        return self.cache.all()

    def list(self, status: Optional[str] = None, priority: Optional[str] = None,
             tags: Optional[List[str]] = None, search: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"status": status, "priority": priority, "search": search}
        if tags:
            params["tags"] = ",".join(tags)
        params = {k: v for k, v in params.items() if v}
        tasks = self._request("GET", "/api/tasks", params=params)["tasks"]
        for task in tasks:
            self.cache.upsert(task)
        return tasks

    def derive(self, text: str) -> Dict[str, Any]:
        return self._request("POST", "/api/tasks/derive", json={"natural_language": text})["draft"]

    # ── Writes ───────────────────────────────────────────────────────────────

    def create(self, **fields) -> Dict[str, Any]:
        task = self._request("POST", "/api/tasks", json=fields)["task"]
        self.cache.upsert(task)
        return task

    def create_from_text(self, text: str) -> Dict[str, Any]:
        return self.create(natural_language=text)

    def update(self, task_id: str, **changes) -> Dict[str, Any]:
        return self.cache.apply_optimistic(
            task_id,
            changes,
            lambda: self._request("PUT", f"/api/tasks/{task_id}", json=changes)["task"],
        )

    def move(self, task_id: str, status: str) -> Dict[str, Any]:
        value = TaskStatus.from_str(status).value
        return self.cache.apply_optimistic(
            task_id,
            {"status": value},
            lambda: self._request("POST", f"/api/tasks/{task_id}/move", json={"status": value})["task"],
        )

    def toggle(self, task_id: str) -> Dict[str, Any]:
        current = self.cache.get(task_id)
        updates = {}
        if current is not None:
            completed = current.get("status") == TaskStatus.COMPLETED.value
            updates["status"] = TaskStatus.BACKLOG.value if completed else TaskStatus.COMPLETED.value
        return self.cache.apply_optimistic(
            task_id,
            updates,
            lambda: self._request("POST", f"/api/tasks/{task_id}/toggle")["task"],
        )

    def delete(self, task_id: str) -> None:
        self.cache.remove_optimistic(
            task_id,
            lambda: self._request("DELETE", f"/api/tasks/{task_id}"),
        )
