#!/usr/bin/env python3
"""
Taskboard Server
----------------
JSON API for the personal task board: tasks on a three-column kanban,
AI-assisted capture (typed or spoken), sketches attached to tasks and
optional Google Calendar sync. Backed by a single SQLite file.

Usage:
    python board_server.py
    python board_server.py --config taskboard.yaml --port 3000

Auth:
    Every /api/* route needs an X-API-Key header listed under ``users:`` in
    the config. The OAuth callback is the exception: it is tied to a user
    through the one-time ``state`` value issued by /api/calendar/auth.

API:
    GET  /health                    → liveness
    GET  /api/board                 → { columns, stats }
    GET  /api/tasks                 → { tasks, count }   ?status ?priority ?tags ?search
    POST /api/tasks                 → { task }           fields or { natural_language }
    GET|PUT|DELETE /api/tasks/<id>
    POST /api/tasks/<id>/move       → { status }
    POST /api/tasks/<id>/toggle
    POST /api/tasks/derive          → { draft }          nothing is saved
    POST /api/ai                    → { type: suggestions | summary, period }
    GET  /api/ai/test
    GET|POST /api/canvas            ?task_id
    GET|PUT|DELETE /api/canvas/<id>
    GET  /api/calendar/auth         → { auth_url }
    GET  /api/calendar/callback     → redirect to the app
    POST /api/calendar/disconnect
    GET  /api/calendar/events
    POST|DELETE /api/calendar/sync  → { task_id }
    POST|GET /api/voice/transcribe
"""

import hmac
import logging
import secrets
from functools import wraps
from typing import Optional

from flask import Flask, g, jsonify, redirect, request
from werkzeug.exceptions import HTTPException

from taskboard.assistant import check_connection
from taskboard.calendar_sync import GoogleCalendarSync
from taskboard.config import Config
from taskboard.errors import ConfigError, TaskboardError, Unauthorized, ValidationError
from taskboard.genai import GeminiClient
from taskboard.service import TaskService
from taskboard.store import TaskStore
from taskboard.voice import WhisperTranscriber, transcribe_upload

MAX_RECORDINGS_PAGE = 100


def _truthy(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def create_app(config: Optional[Config] = None, store=None, generator=None,
               calendar=None, transcriber=None) -> Flask:
    """Build the app. Collaborators not passed in are built from ``config``."""
    config = config or Config.load()
    store = store or TaskStore(config.db_path)
    if generator is None and config.gemini_api_key:
        generator = GeminiClient.from_config(config)
    if calendar is None:
        calendar = GoogleCalendarSync.from_config(config)
    if transcriber is None:
        transcriber = WhisperTranscriber.from_config(config)

    service = TaskService(store, generator=generator, calendar=calendar)

    app = Flask(__name__)
    app.config["TASKBOARD"] = config

    # ── Auth ─────────────────────────────────────────────────────────────────

    def require_user(f):
        """Decorator: resolve X-API-Key to a user id, or reply 401."""
        @wraps(f)
        def decorated(*args, **kwargs):
            provided = request.headers.get("X-API-Key", "").strip()
            if not provided:
                raise Unauthorized()
            user_id = None
            for key, owner in config.users.items():
                if hmac.compare_digest(provided, key):
                    user_id = owner
            if user_id is None:
                raise Unauthorized()
            g.user_id = user_id
            return f(*args, **kwargs)
        return decorated

    def json_body() -> dict:
        data = request.get_json(force=True, silent=True)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        return data

    # ── Errors ───────────────────────────────────────────────────────────────

    @app.errorhandler(TaskboardError)
    def handle_taskboard_error(e):
        if e.status_code >= 500:
            app.logger.warning(f"{request.method} {request.path}: {e}")
        return jsonify({"error": str(e)}), e.status_code

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        if isinstance(e, HTTPException):
            return jsonify({"error": e.description}), e.code
        app.logger.exception(f"Unhandled error on {request.method} {request.path}")
        return jsonify({"error": "Internal server error"}), 500

    # ── Routes: tasks ────────────────────────────────────────────────────────

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "db": config.db_path})

    @app.route("/api/board")
    @require_user
    def api_board():
        return jsonify(service.board(g.user_id))

    @app.route("/api/tasks", methods=["GET"])
    @require_user
    def api_list_tasks():
        tags = [t.strip() for t in request.args.get("tags", "").split(",") if t.strip()]
        tasks = service.list_tasks(
            g.user_id,
            status=request.args.get("status"),
            priority=request.args.get("priority"),
            tags=tags,
            search=request.args.get("search"),
        )
        return jsonify({"tasks": [t.to_dict() for t in tasks], "count": len(tasks)})

    @app.route("/api/tasks", methods=["POST"])
    @require_user
    def api_create_task():
        task = service.create_task(g.user_id, json_body())
        return jsonify({"task": task.to_dict(), "id": task.task_id}), 201

    @app.route("/api/tasks/derive", methods=["POST"])
    @require_user
    def api_derive_task():
        draft = service.derive_draft(json_body().get("natural_language"))
        return jsonify({"draft": draft})

    @app.route("/api/tasks/<task_id>", methods=["GET"])
    @require_user
    def api_get_task(task_id):
        return jsonify({"task": service.get_task(g.user_id, task_id).to_dict()})

    @app.route("/api/tasks/<task_id>", methods=["PUT"])
    @require_user
    def api_update_task(task_id):
        task = service.update_task(g.user_id, task_id, json_body())
        return jsonify({"task": task.to_dict()})

    @app.route("/api/tasks/<task_id>", methods=["DELETE"])
    @require_user
    def api_delete_task(task_id):
        removed = service.delete_task(g.user_id, task_id)
        return jsonify({"deleted": task_id, "drawings_deleted": removed})

    @app.route("/api/tasks/<task_id>/move", methods=["POST"])
    @require_user
    def api_move_task(task_id):
        status = json_body().get("status")
        if not status:
            raise ValidationError("status is required")
        task = service.move_task(g.user_id, task_id, status)
        return jsonify({"task": task.to_dict()})

    @app.route("/api/tasks/<task_id>/toggle", methods=["POST"])
    @require_user
    def api_toggle_task(task_id):
        task = service.toggle_task(g.user_id, task_id)
        return jsonify({"task": task.to_dict()})

    # ── Routes: assistant ────────────────────────────────────────────────────

    @app.route("/api/ai", methods=["POST"])
    @require_user
    def api_ai():
        data = json_body()
        kind = data.get("type")
        if kind == "suggestions":
            return jsonify({"suggestions": service.suggestions(g.user_id)})
        if kind == "summary":
            period = data.get("period") or "daily"
            return jsonify({"summary": service.summary(g.user_id, period), "period": period})
        raise ValidationError("type must be 'suggestions' or 'summary'")

    @app.route("/api/ai/test")
    @require_user
    def api_ai_test():
        return jsonify(check_connection(generator))

    # ── Routes: canvas ───────────────────────────────────────────────────────

    @app.route("/api/canvas", methods=["GET"])
    @require_user
    def api_list_drawings():
        drawings = service.list_drawings(g.user_id, task_id=request.args.get("task_id"))
        return jsonify({"drawings": [d.to_dict() for d in drawings]})

    @app.route("/api/canvas", methods=["POST"])
    @require_user
    def api_create_drawing():
        drawing = service.create_drawing(g.user_id, json_body())
        return jsonify({"drawing": drawing.to_dict()}), 201

    @app.route("/api/canvas/<drawing_id>", methods=["GET"])
    @require_user
    def api_get_drawing(drawing_id):
        return jsonify({"drawing": service.get_drawing(g.user_id, drawing_id).to_dict()})

    @app.route("/api/canvas/<drawing_id>", methods=["PUT"])
    @require_user
    def api_update_drawing(drawing_id):
        drawing = service.update_drawing(g.user_id, drawing_id, json_body())
        return jsonify({"drawing": drawing.to_dict()})

    @app.route("/api/canvas/<drawing_id>", methods=["DELETE"])
    @require_user
    def api_delete_drawing(drawing_id):
        service.delete_drawing(g.user_id, drawing_id)
        return jsonify({"deleted": drawing_id})

    # ── Routes: calendar ─────────────────────────────────────────────────────

    def require_calendar():
        if calendar is None:
            raise ConfigError("Google Calendar is not configured")
        return calendar

    @app.route("/api/calendar/auth")
    @require_user
    def api_calendar_auth():
        cal = require_calendar()
        state = secrets.token_urlsafe(24)
        store.save_oauth_state(state, g.user_id)
        return jsonify({"auth_url": cal.authorization_url(state)})

    @app.route("/api/calendar/callback")
    def api_calendar_callback():
        cal = require_calendar()
        app_url = config.app_url.rstrip("/")
        if request.args.get("error"):
            return redirect(f"{app_url}/?calendar=denied")

        owner_id = store.pop_oauth_state(request.args.get("state", ""))
        if owner_id is None:
            raise Unauthorized("Invalid or expired OAuth state")
        code = request.args.get("code")
        if not code:
            raise ValidationError("Missing authorization code")

        store.save_credentials(owner_id, cal.exchange_code(code))
        app.logger.info(f"Calendar connected for {owner_id}")
        return redirect(f"{app_url}/?calendar=connected")

    @app.route("/api/calendar/disconnect", methods=["POST"])
    @require_user
    def api_calendar_disconnect():
        return jsonify({"disconnected": store.delete_credentials(g.user_id)})

    @app.route("/api/calendar/events")
    @require_user
    def api_calendar_events():
        require_calendar()
        return jsonify({"events": service.list_events(g.user_id)})

    @app.route("/api/calendar/sync", methods=["POST"])
    @require_user
    def api_calendar_link():
        require_calendar()
        task_id = json_body().get("task_id")
        if not task_id:
            raise ValidationError("task_id is required")
        task = service.link_calendar(g.user_id, task_id)
        return jsonify({"task": task.to_dict()})

    @app.route("/api/calendar/sync", methods=["DELETE"])
    @require_user
    def api_calendar_unlink():
        require_calendar()
        task_id = request.args.get("task_id") or json_body().get("task_id")
        if not task_id:
            raise ValidationError("task_id is required")
        task = service.unlink_calendar(g.user_id, task_id)
        return jsonify({"task": task.to_dict()})

    # ── Routes: voice ────────────────────────────────────────────────────────

    @app.route("/api/voice/transcribe", methods=["POST"])
    @require_user
    def api_transcribe():
        upload = request.files.get("audio")
        audio = upload.read() if upload else None
        recording = transcribe_upload(
            store,
            transcriber,
            g.user_id,
            audio,
            upload.mimetype if upload else None,
            language=request.form.get("language") or "en",
        )
        result = {"transcription": recording.transcription, "recording": recording.to_dict()}
        if _truthy(request.form.get("create_task")):
            task = service.create_task(g.user_id, {"natural_language": recording.transcription})
            result["task"] = task.to_dict()
        return jsonify(result)

    @app.route("/api/voice/transcribe", methods=["GET"])
    @require_user
    def api_list_recordings():
        try:
            limit = min(int(request.args.get("limit", 10)), MAX_RECORDINGS_PAGE)
            offset = int(request.args.get("offset", 0))
        except ValueError:
            raise ValidationError("limit and offset must be integers")
        if limit < 1 or offset < 0:
            raise ValidationError("limit must be positive and offset non-negative")
        recordings, total = store.list_recordings(g.user_id, limit=limit, offset=offset)
        return jsonify({
            "recordings": [r.to_dict() for r in recordings],
            "total": total,
            "has_more": offset + len(recordings) < total,
        })

    return app


# ── Main ─────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Taskboard Server")
    parser.add_argument("--config", help="Path to taskboard.yaml (overrides TASKBOARD_CONFIG)")
    parser.add_argument("--host", help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int)
    parser.add_argument("--db", help="Path to the SQLite file (overrides TASKBOARD_DB)")
    args = parser.parse_args()

    cfg = Config.load(args.config)
    if args.db:
        cfg.db_path = args.db
    host = args.host or cfg.host
    port = args.port or cfg.port

    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not cfg.users:
        logging.warning("No users configured: every /api/* request will be rejected")

    print(f"""
╔═══════════════════════════════════════╗
║  Taskboard Server                     ║
╠═══════════════════════════════════════╣
║  URL:  http://{host}:{port:<20}║
║  DB:   {cfg.db_path:<31}║
╚═══════════════════════════════════════╝
""")

    create_app(cfg).run(host=host, port=port, debug=False, threaded=True)
