"""
Google Calendar integration.

Tasks with a due date can be pushed to the user's primary calendar. The link
is one-way: this service creates, updates and deletes events; it never reads
calendar-side edits back into tasks.

Each event description carries a ``taskboard_task_id:<id>`` marker line so
events created here can be recognised in the calendar.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import google_auth_httplib2
import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .errors import ConfigError, ExternalServiceError

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/calendar.events",
]
AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"
MARKER_KEY = "taskboard_task_id:"


def with_marker(task_id: str, notes: Optional[str]) -> str:
    base = (notes or "").strip()
    marker = f"{MARKER_KEY}{task_id}"
    return f"{base}\n{marker}" if base else marker


def parse_task_id_from_description(desc: Optional[str]) -> Optional[str]:
    if not desc:
        return None
    for line in desc.splitlines():
        line = line.strip()
        if line.startswith(MARKER_KEY):
            return line[len(MARKER_KEY):].strip() or None
    return None


class GoogleCalendarSync:
    """OAuth flow plus event CRUD against Google Calendar v3."""

    def __init__(self, client_id: str, client_secret: str, redirect_uri: str,
                 calendar_id: str = "primary", event_minutes: int = 60, timeout: float = 12.0):
        if not client_id or not client_secret:
            raise ConfigError("GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET are required for calendar sync")
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.calendar_id = calendar_id
        self.event_minutes = event_minutes
        self.timeout = timeout

    @classmethod
    def from_config(cls, cfg) -> Optional["GoogleCalendarSync"]:
        if not cfg.google_client_id or not cfg.google_client_secret:
            return None
        return cls(
            cfg.google_client_id,
            cfg.google_client_secret,
            cfg.oauth_redirect_uri,
            calendar_id=cfg.calendar_id,
            event_minutes=cfg.event_duration_minutes,
            timeout=cfg.calendar_timeout_seconds,
        )

    # ----- OAuth -----

    def _flow(self, state: Optional[str] = None) -> Flow:
        client_config = {
            "web": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "auth_uri": AUTH_URI,
                "token_uri": TOKEN_URI,
                "redirect_uris": [self.redirect_uri],
            }
        }
        # The callback arrives on a new request, so no PKCE verifier can be carried over
        return Flow.from_client_config(
            client_config,
            scopes=SCOPES,
            redirect_uri=self.redirect_uri,
            state=state,
            autogenerate_code_verifier=False,
        )

    def authorization_url(self, state: str) -> str:
        url, _ = self._flow(state).authorization_url(
            access_type="offline",
            prompt="consent",
            include_granted_scopes="true",
        )
        return url

    def exchange_code(self, code: str) -> Dict[str, Any]:
        """Trade an authorization code for tokens."""
        flow = self._flow()
        try:
            flow.fetch_token(code=code)
        except Exception as e:  # oauthlib raises its own hierarchy
            logger.error(f"OAuth code exchange failed: {e}")
            raise ExternalServiceError("Google authorization failed")
        creds = flow.credentials
        return {
            "access_token": creds.token,
            "refresh_token": creds.refresh_token,
            "expiry": creds.expiry.replace(tzinfo=timezone.utc).isoformat() if creds.expiry else None,
        }

    # ----- Events -----

    def _service(self, tokens: Dict[str, Any]):
        creds = Credentials(
            token=tokens.get("access_token"),
            refresh_token=tokens.get("refresh_token"),
            token_uri=TOKEN_URI,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scopes=SCOPES,
        )
        http = google_auth_httplib2.AuthorizedHttp(creds, http=httplib2.Http(timeout=self.timeout))
        return build("calendar", "v3", http=http, cache_discovery=False)

    def _event_body(self, task) -> Dict[str, Any]:
        start = task.due_date.astimezone(timezone.utc)
        end = start + timedelta(minutes=self.event_minutes)
        return {
            "summary": task.title,
            "description": with_marker(task.task_id, task.description),
            "start": {"dateTime": start.isoformat()},
            "end": {"dateTime": end.isoformat()},
        }

    def _execute(self, request, what: str):
        try:
            return request.execute()
        except (HttpError, GoogleAuthError, httplib2.HttpLib2Error, OSError) as e:
            logger.error(f"Calendar {what} failed: {e}")
            raise ExternalServiceError(f"Calendar {what} failed")

    def create_event(self, tokens: Dict[str, Any], task) -> str:
        svc = self._service(tokens)
        event = self._execute(
            svc.events().insert(calendarId=self.calendar_id, body=self._event_body(task)),
            "create",
        )
        return event["id"]

    def update_event(self, tokens: Dict[str, Any], event_id: str, task) -> None:
        svc = self._service(tokens)
        self._execute(
            svc.events().patch(calendarId=self.calendar_id, eventId=event_id, body=self._event_body(task)),
            "update",
        )

    def delete_event(self, tokens: Dict[str, Any], event_id: str) -> None:
        svc = self._service(tokens)
        try:
            svc.events().delete(calendarId=self.calendar_id, eventId=event_id).execute()
        except HttpError as e:
            if getattr(e, "resp", None) is not None and getattr(e.resp, "status", None) in (404, 410):
                return
            logger.error(f"Calendar delete failed: {e}")
            raise ExternalServiceError("Calendar delete failed")
        except (GoogleAuthError, httplib2.HttpLib2Error, OSError) as e:
            logger.error(f"Calendar delete failed: {e}")
            raise ExternalServiceError("Calendar delete failed")

    def list_events(self, tokens: Dict[str, Any], time_min: Optional[datetime] = None,
                    time_max: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Events from a week ago to a month ahead, flattened for the API."""
        now = datetime.now(timezone.utc)
        time_min = time_min or now - timedelta(days=7)
        time_max = time_max or now + timedelta(days=30)
        svc = self._service(tokens)
        res = self._execute(
            svc.events().list(
                calendarId=self.calendar_id,
                timeMin=time_min.isoformat(),
                timeMax=time_max.isoformat(),
                maxResults=50,
                singleEvents=True,
                orderBy="startTime",
            ),
            "list",
        )
        events = []
        for item in res.get("items", []):
            start = item.get("start") or {}
            end = item.get("end") or {}
            events.append({
                "id": item.get("id"),
                "title": item.get("summary"),
                "start": start.get("dateTime") or start.get("date"),
                "end": end.get("dateTime") or end.get("date"),
                "description": item.get("description"),
                "location": item.get("location"),
                "attendees": [a.get("email") for a in item.get("attendees", [])],
                "task_id": parse_task_id_from_description(item.get("description")),
            })
        return events
