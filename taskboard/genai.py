"""
Text-generation client (Google Gemini REST API).

The configured model names are tried in order; the first model that answers
wins and is remembered for the next call. The whole probe shares one
deadline: each request gets whatever is left of ``timeout`` as its requests
timeout, and no new request starts once the deadline has passed. That
timeout bounds the connect and each wait between received bytes, not the
full transfer, so a reply that keeps trickling in can overrun the deadline.
Nothing is retried: an exhausted probe list raises ExternalServiceError and
callers fall back to deterministic logic.
"""
import json
import logging
import time
from typing import Any, List, Optional

import requests

from .errors import ExternalServiceError

logger = logging.getLogger(__name__)

# HTTP statuses that will fail the same way for every model
_FATAL_STATUSES = {401, 403}


class GeminiClient:
    """Minimal generateContent client with a candidate-model probe list."""

    def __init__(
        self,
        api_key: str,
        models: List[str],
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 12.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.models = list(models)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.model: Optional[str] = None  # last model that answered

    @classmethod
    def from_config(cls, cfg) -> "GeminiClient":
        return cls(
            api_key=cfg.gemini_api_key,
            models=cfg.gemini_models,
            base_url=cfg.gemini_base_url,
            timeout=cfg.genai_timeout_seconds,
        )

    def _candidates(self) -> List[str]:
        if self.model and self.model in self.models:
            return [self.model] + [m for m in self.models if m != self.model]
        return list(self.models)

    def _call(self, model: str, prompt: str, timeout: float) -> str:
        name = model if model.startswith("models/") else f"models/{model}"
        r = self.session.post(
            f"{self.base_url}/{name}:generateContent",
            headers={"x-goog-api-key": self.api_key, "Content-Type": "application/json"},
            json={"contents": [{"parts": [{"text": prompt}]}]},
            timeout=timeout,
        )
        if r.status_code in _FATAL_STATUSES:
            raise PermissionError(f"Gemini rejected the API key (HTTP {r.status_code})")
        r.raise_for_status()
        data = r.json()
        try:
            parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError):
            raise ValueError("Gemini response has no candidates")
        if not isinstance(parts, list):
            raise ValueError("Gemini response parts are not a list")
        texts = [p.get("text") for p in parts if isinstance(p, dict)]
        if not any(isinstance(t, str) for t in texts):
            raise ValueError("Gemini response has no text")
        return "".join(t for t in texts if isinstance(t, str))

    def generate(self, prompt: str) -> str:
        """Return the model's text for ``prompt`` or raise ExternalServiceError."""
        if not self.api_key:
            raise ExternalServiceError("GEMINI_API_KEY is not configured")

        deadline = time.monotonic() + self.timeout
        last_error: Optional[Exception] = None
        for model in self._candidates():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                last_error = TimeoutError("text generation deadline exceeded")
                break
            try:
                text = self._call(model, prompt, remaining)
            except PermissionError as e:
                last_error = e
                break
            except (requests.RequestException, ValueError) as e:
                logger.warning(f"Model {model} not available, trying next: {e}")
                last_error = e
                continue
            self.model = model
            return text

        raise ExternalServiceError(f"No Gemini model answered: {last_error}")


def extract_json(text: str, opener: str = "{") -> Optional[Any]:
    """
    Return the first balanced JSON object (``{``) or array (``[``) found
    anywhere in ``text``, or None.

    Model replies often wrap JSON in prose or markdown fences, so the scan
    walks candidate start positions and skips ones that fail to parse.
    """
    if not text:
        return None
    closer = "}" if opener == "{" else "]"
    start = text.find(opener)
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == opener:
                depth += 1
            elif ch == closer:
                depth -= 1
                if depth == 0:
                    try:
                        return json.loads(text[start:i + 1])
                    except json.JSONDecodeError:
                        break
        start = text.find(opener, start + 1)
    return None
