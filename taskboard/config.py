# Taskboard — configuration
# Override paths, credentials and endpoints via taskboard.yaml or environment.

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from .errors import ConfigError

CONFIG_PATH = Path(__file__).parent.parent / "taskboard.yaml"

DEFAULT_GEMINI_MODELS = [
    "gemini-1.5-flash",
    "gemini-1.5-pro",
    "gemini-pro",
]

# env var -> attribute
ENV_OVERRIDES = {
    "TASKBOARD_DB": "db_path",
    "TASKBOARD_APP_URL": "app_url",
    "GEMINI_API_KEY": "gemini_api_key",
    "OPENAI_API_KEY": "openai_api_key",
    "GOOGLE_CLIENT_ID": "google_client_id",
    "GOOGLE_CLIENT_SECRET": "google_client_secret",
}


@dataclass
class Config:
    """Runtime configuration for the board server."""

    # Storage
    db_path: str = "~/.local/share/taskboard/taskboard.db"

    # Server
    host: str = "127.0.0.1"
    port: int = 3000
    app_url: str = "http://localhost:3000"
    log_level: str = "INFO"

    # API key -> user id
    users: Dict[str, str] = field(default_factory=dict)

    # Text generation (Gemini)
    gemini_api_key: str = ""
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_models: List[str] = field(default_factory=lambda: list(DEFAULT_GEMINI_MODELS))
    genai_timeout_seconds: float = 12.0

    # Speech-to-text (OpenAI Whisper)
    openai_api_key: str = ""
    whisper_model: str = "whisper-1"
    transcribe_timeout_seconds: float = 15.0

    # Google Calendar
    google_client_id: str = ""
    google_client_secret: str = ""
    calendar_id: str = "primary"
    event_duration_minutes: int = 60
    calendar_timeout_seconds: float = 10.0

    @property
    def oauth_redirect_uri(self) -> str:
        return f"{self.app_url.rstrip('/')}/api/calendar/callback"

    def resolve(self) -> "Config":
        """Apply environment overrides, expand ~ and check types."""
        for env_name, attr in ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                setattr(self, attr, value)

        self.db_path = str(Path(self.db_path).expanduser())

        if not isinstance(self.users, dict):
            raise ConfigError("'users' must map API keys to user ids")
        self.users = {str(k): str(v) for k, v in self.users.items()}

        if isinstance(self.gemini_models, str):
            self.gemini_models = [m.strip() for m in self.gemini_models.split(",") if m.strip()]
        if not self.gemini_models:
            raise ConfigError("'gemini_models' must list at least one model")

        try:
            self.port = int(self.port)
            self.genai_timeout_seconds = float(self.genai_timeout_seconds)
            self.transcribe_timeout_seconds = float(self.transcribe_timeout_seconds)
            self.calendar_timeout_seconds = float(self.calendar_timeout_seconds)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid numeric setting: {e}")
        return self

    def user_for_key(self, api_key: str) -> Optional[str]:
        return self.users.get(api_key)

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load config from YAML file, falling back to defaults."""
        cfg_path = Path(path or os.environ.get("TASKBOARD_CONFIG") or CONFIG_PATH)
        data = {}
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Cannot parse {cfg_path}: {e}")
            if not isinstance(data, dict):
                raise ConfigError(f"{cfg_path} must contain a mapping")
        cfg = cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})
        return cfg.resolve()
