"""
Natural-language task deriver.

Turns a phrase such as "finish the quarterly report by Friday, urgent" into
a task draft (title, description, due date, priority, tags) by asking the
text-generation backend for a JSON object.

The deriver never fails because of the backend: when the call errors, times
out, or returns nothing usable, a deterministic draft built from the input
text is returned instead. Only empty input is rejected.
"""
import logging
from typing import Any, Dict, Optional

from .errors import ExternalServiceError, InvalidInput, ValidationError
from .genai import extract_json
from .schema import TaskPriority, clean_tags, parse_datetime

logger = logging.getLogger(__name__)

TITLE_LIMIT = 50

DERIVE_PROMPT = """Parse the following natural language input into a structured todo item.
Return ONLY a valid JSON object with title, description, dueDate (ISO string), priority (low/medium/high), and tags (array of strings).

Input: "{text}"

Rules:
- ALWAYS include a title (required field)
- Extract a clear, concise title from the input
- Identify due dates from text like "by Friday", "tomorrow", "next week", etc.
- Determine priority based on urgency words (urgent, ASAP, important, etc.)
- Extract relevant tags based on context
- If no due date is mentioned, omit the dueDate field
- If input is unclear, use the input text as the title

Example output:
{{"title": "Buy groceries", "description": "Buy groceries for the week including fruits and vegetables", "priority": "medium", "tags": ["shopping", "weekly"]}}

Return only the JSON object, no other text:"""


def build_derive_prompt(text: str) -> str:
    return DERIVE_PROMPT.format(text=text.replace('"', "'"))


def fallback_draft(text: str) -> Dict[str, Any]:
    """Deterministic draft used whenever the backend cannot help."""
    title = text if len(text) <= TITLE_LIMIT else text[:TITLE_LIMIT] + "..."
    return {
        "title": title,
        "description": text,
        "priority": TaskPriority.MEDIUM.value,
        "tags": [],
        "due_date": None,
    }


def parse_derivation_response(response: str, text: str) -> Optional[Dict[str, Any]]:
    """
    Normalize the model's reply into a draft.

    Returns None when the reply holds no JSON object or the object has no
    usable title, so the caller can fall back.
    """
    result = extract_json(response, "{")
    if not isinstance(result, dict):
        return None

    title = result.get("title")
    if not isinstance(title, str) or not title.strip():
        return None

    description = result.get("description")
    if not isinstance(description, str) or not description.strip():
        description = text

    priority = str(result.get("priority") or "").strip().lower()
    if priority not in {p.value for p in TaskPriority}:
        priority = TaskPriority.MEDIUM.value

    raw_tags = result.get("tags")
    try:
        tags = clean_tags(raw_tags) if isinstance(raw_tags, list) else []
    except ValidationError:
        tags = []

    try:
        due_date = parse_datetime(result.get("dueDate") or result.get("due_date"))
    except ValidationError:
        due_date = None

    return {
        "title": title.strip(),
        "description": description.strip(),
        "priority": priority,
        "tags": tags,
        "due_date": due_date.isoformat() if due_date else None,
    }


def derive_task(text: Optional[str], generator=None) -> Dict[str, Any]:
    """
    Derive a task draft from free text.

    Args:
        text: the user's phrase (typed or transcribed)
        generator: object with ``generate(prompt) -> str``; None means the
            backend is unavailable

    Returns:
        dict with title, description, priority, tags, due_date (ISO or None).
        The caller marks the persisted task as AI-generated.

    Raises:
        InvalidInput when ``text`` is empty or missing.
    """
    if not isinstance(text, str) or not text.strip():
        raise InvalidInput("Natural-language input is required")
    text = text.strip()

    if generator is None:
        logger.info("No text generator configured, using fallback parsing")
        return fallback_draft(text)

    try:
        response = generator.generate(build_derive_prompt(text))
    except ExternalServiceError as e:
        logger.warning(f"Task derivation failed, using fallback: {e}")
        return fallback_draft(text)

    draft = parse_derivation_response(response, text)
    if draft is None:
        logger.warning("No usable JSON in derivation response, using fallback")
        return fallback_draft(text)
    return draft
