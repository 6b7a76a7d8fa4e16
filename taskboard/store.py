"""
Task board storage backend (SQLite).

Every query is scoped by ``owner_id``. A lookup that matches nothing owned
by the caller returns None / False instead of raising, so "missing" and
"someone else's" look the same to the service layer.
"""
import json
import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .canvas import CanvasDrawing, serialize_shapes
from .schema import Task, TaskPriority, TaskStatus, _iso
from .voice import VoiceRecording

logger = logging.getLogger(__name__)

OAUTH_STATE_TTL = timedelta(minutes=10)


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection with FK enforcement and WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


class TaskStore:
    """SQLite-backed store for tasks, drawings, recordings and calendar credentials."""

    def __init__(self, db_path: str):
        """Initialize store and create tables if needed."""
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self):
        """Create tables if they don't exist."""
        with _connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    task_id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    status TEXT NOT NULL DEFAULT 'backlog',
                    priority TEXT NOT NULL DEFAULT 'medium',
                    due_date TEXT,
                    tags TEXT,  -- JSON list
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            self._migrate_columns(conn)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS canvas_drawings (
                    drawing_id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    task_id TEXT,
                    name TEXT NOT NULL,
                    data TEXT NOT NULL,  -- serialized shape list
                    preview TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS voice_recordings (
                    recording_id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    task_id TEXT,
                    transcription TEXT NOT NULL,
                    audio_data TEXT NOT NULL,  -- base64
                    audio_format TEXT DEFAULT 'webm',
                    audio_size INTEGER DEFAULT 0,
                    duration INTEGER,
                    language TEXT DEFAULT 'en',
                    confidence REAL,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS calendar_credentials (
                    owner_id TEXT PRIMARY KEY,
                    access_token TEXT NOT NULL,
                    refresh_token TEXT,
                    expiry TEXT,
                    sync_enabled INTEGER DEFAULT 1,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS oauth_states (
                    state TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_owner_status ON tasks(owner_id, status)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_owner_due ON tasks(owner_id, due_date)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_owner_priority ON tasks(owner_id, priority)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_drawings_owner_task ON canvas_drawings(owner_id, task_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_recordings_owner ON voice_recordings(owner_id, created_at)")
            conn.commit()

    def _migrate_columns(self, conn):
        """Add columns introduced after the first release (no-op when present)."""
        new_columns = [
            ("ai_generated", "INTEGER DEFAULT 0"),
            ("calendar_event_id", "TEXT"),
        ]
        existing = {row["name"] for row in conn.execute("PRAGMA table_info(tasks)")}
        for col_name, col_type in new_columns:
            if col_name not in existing:
                conn.execute(f"ALTER TABLE tasks ADD COLUMN {col_name} {col_type}")

    # ── Tasks ────────────────────────────────────────────────────────────────

    def _task_params(self, task: Task) -> Tuple:
        data = task.to_dict()
        return (
            data["title"],
            data["description"],
            data["status"],
            data["priority"],
            data["due_date"],
            json.dumps(data["tags"]),
            1 if data["ai_generated"] else 0,
            data["calendar_event_id"],
            data["updated_at"],
        )

    def insert_task(self, task: Task) -> Task:
        with _connect(self.db_path) as conn:
            conn.execute("""
                INSERT INTO tasks
                (title, description, status, priority, due_date, tags,
                 ai_generated, calendar_event_id, updated_at,
                 task_id, owner_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, self._task_params(task) + (task.task_id, task.owner_id, _iso(task.created_at)))
            conn.commit()
        return task

    def update_task(self, task: Task) -> bool:
        """Write back a mutated task. False when the owner has no such task."""
        with _connect(self.db_path) as conn:
            cur = conn.execute("""
                UPDATE tasks SET
                    title = ?, description = ?, status = ?, priority = ?, due_date = ?,
                    tags = ?, ai_generated = ?, calendar_event_id = ?, updated_at = ?
                WHERE task_id = ? AND owner_id = ?
            """, self._task_params(task) + (task.task_id, task.owner_id))
            conn.commit()
            return cur.rowcount > 0

    def get_task(self, owner_id: str, task_id: str) -> Optional[Task]:
        with _connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM tasks WHERE task_id = ? AND owner_id = ?",
                (task_id, owner_id),
            ).fetchone()
        return self._row_to_task(row) if row else None

    def list_tasks(
        self,
        owner_id: str,
        status: Optional[TaskStatus] = None,
        priority: Optional[TaskPriority] = None,
        tags: Optional[List[str]] = None,
        search: Optional[str] = None,
        created_since: Optional[datetime] = None,
        limit: int = 500,
    ) -> List[Task]:
        """List an owner's tasks, newest first."""
        query = "SELECT * FROM tasks WHERE owner_id = ?"
        params: List[Any] = [owner_id]
        if status:
            query += " AND status = ?"
            params.append(status.value)
        if priority:
            query += " AND priority = ?"
            params.append(priority.value)
        if search:
            query += " AND (LOWER(title) LIKE ? OR LOWER(COALESCE(description, '')) LIKE ?)"
            needle = f"%{search.lower()}%"
            params.extend([needle, needle])
        if tags:
            # any-match against the JSON list column
            marks = ", ".join("?" for _ in tags)
            query += (
                " AND EXISTS (SELECT 1 FROM json_each(CASE WHEN json_valid(tasks.tags)"
                f" THEN tasks.tags ELSE '[]' END) WHERE json_each.value IN ({marks}))"
            )
            params.extend(tags)
        if created_since:
            query += " AND created_at >= ?"
            params.append(created_since.astimezone(timezone.utc).isoformat())
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        with _connect(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_task(row) for row in rows]

    def delete_task(self, owner_id: str, task_id: str) -> bool:
        with _connect(self.db_path) as conn:
            cur = conn.execute(
                "DELETE FROM tasks WHERE task_id = ? AND owner_id = ?",
                (task_id, owner_id),
            )
            conn.commit()
            return cur.rowcount > 0

    def get_stats(self, owner_id: str) -> Dict[str, Any]:
        """Board statistics grouped by status and priority."""
        stats: Dict[str, Any] = {"by_status": {}, "by_priority": {}, "total": 0}
        with _connect(self.db_path) as conn:
            for row in conn.execute(
                "SELECT status, COUNT(*) FROM tasks WHERE owner_id = ? GROUP BY status", (owner_id,)
            ):
                stats["by_status"][row[0]] = row[1]
                stats["total"] += row[1]
            for row in conn.execute(
                "SELECT priority, COUNT(*) FROM tasks WHERE owner_id = ? AND status != 'completed' "
                "GROUP BY priority", (owner_id,)
            ):
                stats["by_priority"][row[0]] = row[1]
        return stats

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        """Convert a database row to a Task."""
        data = dict(row)
        try:
            data["tags"] = json.loads(data.get("tags") or "[]")
        except (json.JSONDecodeError, TypeError):
            data["tags"] = []
        data["id"] = data.pop("task_id")
        data["ai_generated"] = bool(data.get("ai_generated", 0))
        return Task.from_dict(data)

    # ── Canvas drawings ──────────────────────────────────────────────────────

    def insert_drawing(self, drawing: CanvasDrawing) -> CanvasDrawing:
        with _connect(self.db_path) as conn:
            conn.execute("""
                INSERT INTO canvas_drawings
                (drawing_id, owner_id, task_id, name, data, preview, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                drawing.drawing_id,
                drawing.owner_id,
                drawing.task_id,
                drawing.name,
                serialize_shapes(drawing.shapes),
                drawing.preview,
                _iso(drawing.created_at),
                _iso(drawing.updated_at),
            ))
            conn.commit()
        return drawing

    def update_drawing(self, drawing: CanvasDrawing) -> bool:
        with _connect(self.db_path) as conn:
            cur = conn.execute("""
                UPDATE canvas_drawings SET name = ?, data = ?, preview = ?, task_id = ?, updated_at = ?
                WHERE drawing_id = ? AND owner_id = ?
            """, (
                drawing.name,
                serialize_shapes(drawing.shapes),
                drawing.preview,
                drawing.task_id,
                _iso(drawing.updated_at),
                drawing.drawing_id,
                drawing.owner_id,
            ))
            conn.commit()
            return cur.rowcount > 0

    def get_drawing(self, owner_id: str, drawing_id: str) -> Optional[CanvasDrawing]:
        with _connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM canvas_drawings WHERE drawing_id = ? AND owner_id = ?",
                (drawing_id, owner_id),
            ).fetchone()
        return CanvasDrawing.from_row(dict(row)) if row else None

    def list_drawings(self, owner_id: str, task_id: Optional[str] = None) -> List[CanvasDrawing]:
        """List drawings, newest first, optionally only those linked to ``task_id``."""
        query = "SELECT * FROM canvas_drawings WHERE owner_id = ?"
        params: List[Any] = [owner_id]
        if task_id:
            query += " AND task_id = ?"
            params.append(task_id)
        query += " ORDER BY created_at DESC"
        with _connect(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
        return [CanvasDrawing.from_row(dict(r)) for r in rows]

    def delete_drawing(self, owner_id: str, drawing_id: str) -> bool:
        with _connect(self.db_path) as conn:
            cur = conn.execute(
                "DELETE FROM canvas_drawings WHERE drawing_id = ? AND owner_id = ?",
                (drawing_id, owner_id),
            )
            conn.commit()
            return cur.rowcount > 0

    def delete_drawings_for_task(self, owner_id: str, task_id: str) -> int:
        with _connect(self.db_path) as conn:
            cur = conn.execute(
                "DELETE FROM canvas_drawings WHERE task_id = ? AND owner_id = ?",
                (task_id, owner_id),
            )
            conn.commit()
            return cur.rowcount

    # ── Voice recordings ─────────────────────────────────────────────────────

    def insert_recording(self, rec: VoiceRecording) -> VoiceRecording:
        with _connect(self.db_path) as conn:
            conn.execute("""
                INSERT INTO voice_recordings
                (recording_id, owner_id, task_id, transcription, audio_data, audio_format,
                 audio_size, duration, language, confidence, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                rec.recording_id,
                rec.owner_id,
                rec.task_id,
                rec.transcription,
                rec.audio_data,
                rec.audio_format,
                rec.audio_size,
                rec.duration,
                rec.language,
                rec.confidence,
                _iso(rec.created_at),
            ))
            conn.commit()
        return rec

    def list_recordings(self, owner_id: str, limit: int = 10, offset: int = 0) -> Tuple[List[VoiceRecording], int]:
        """Page through recordings (newest first). Audio bytes are not loaded."""
        with _connect(self.db_path) as conn:
            rows = conn.execute("""
                SELECT recording_id, owner_id, task_id, transcription, audio_format,
                       audio_size, duration, language, confidence, created_at
                FROM voice_recordings WHERE owner_id = ?
                ORDER BY created_at DESC LIMIT ? OFFSET ?
            """, (owner_id, limit, offset)).fetchall()
            total = conn.execute(
                "SELECT COUNT(*) FROM voice_recordings WHERE owner_id = ?", (owner_id,)
            ).fetchone()[0]
        return [VoiceRecording.from_row(dict(r)) for r in rows], total

    # ── Calendar credentials & OAuth state ───────────────────────────────────

    def save_credentials(self, owner_id: str, creds: Dict[str, Any]) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with _connect(self.db_path) as conn:
            conn.execute("""
                INSERT INTO calendar_credentials (owner_id, access_token, refresh_token, expiry, sync_enabled, updated_at)
                VALUES (?, ?, ?, ?, 1, ?)
                ON CONFLICT(owner_id) DO UPDATE SET
                    access_token = excluded.access_token,
                    refresh_token = COALESCE(excluded.refresh_token, calendar_credentials.refresh_token),
                    expiry = excluded.expiry,
                    sync_enabled = 1,
                    updated_at = excluded.updated_at
            """, (owner_id, creds["access_token"], creds.get("refresh_token"), creds.get("expiry"), now))
            conn.commit()

    def get_credentials(self, owner_id: str) -> Optional[Dict[str, Any]]:
        with _connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT access_token, refresh_token, expiry, sync_enabled FROM calendar_credentials "
                "WHERE owner_id = ?", (owner_id,)
            ).fetchone()
        if not row or not row["sync_enabled"]:
            return None
        return {"access_token": row["access_token"], "refresh_token": row["refresh_token"], "expiry": row["expiry"]}

    def delete_credentials(self, owner_id: str) -> bool:
        with _connect(self.db_path) as conn:
            cur = conn.execute("DELETE FROM calendar_credentials WHERE owner_id = ?", (owner_id,))
            conn.commit()
            return cur.rowcount > 0

    def save_oauth_state(self, state: str, owner_id: str) -> None:
        now = datetime.now(timezone.utc)
        with _connect(self.db_path) as conn:
            conn.execute(
                "DELETE FROM oauth_states WHERE created_at < ?",
                ((now - OAUTH_STATE_TTL).isoformat(),),
            )
            conn.execute(
                "INSERT OR REPLACE INTO oauth_states (state, owner_id, created_at) VALUES (?, ?, ?)",
                (state, owner_id, now.isoformat()),
            )
            conn.commit()

    def pop_oauth_state(self, state: str) -> Optional[str]:
        """Consume a state value; returns its owner if it exists and is fresh."""
        cutoff = (datetime.now(timezone.utc) - OAUTH_STATE_TTL).isoformat()
        with _connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT owner_id, created_at FROM oauth_states WHERE state = ?", (state,)
            ).fetchone()
            conn.execute("DELETE FROM oauth_states WHERE state = ?", (state,))
            conn.commit()
        if not row or row["created_at"] < cutoff:
            return None
        return row["owner_id"]
