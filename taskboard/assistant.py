"""
Assistant features built on the text-generation backend: follow-up task
suggestions, daily/weekly productivity summaries and a connectivity check.
All of them degrade to a fixed answer instead of raising.
"""
import logging
from typing import Any, Dict, List

from .errors import ExternalServiceError
from .genai import extract_json
from .schema import AISuggestion, Task, TaskStatus

logger = logging.getLogger(__name__)

SUMMARY_PERIODS = {"daily": 1, "weekly": 7}

SUGGESTIONS_PROMPT = """Based on the user's recent todo items, suggest 3-5 new tasks that would be helpful.
Consider patterns, incomplete items, and logical follow-ups.

Recent todos:
{context}

Return ONLY a valid JSON array with this exact format:
[
  {{
    "type": "task",
    "title": "Suggested task title",
    "description": "Why this task is suggested",
    "confidence": 0.8,
    "metadata": {{"suggestedPriority": "medium", "suggestedTags": ["work"]}}
  }}
]

Return only the JSON array, no other text:"""

SUMMARY_PROMPT = """Generate a {period} summary of productivity based on these tasks:

Completed ({completed_count}):
{completed}

Pending ({pending_count}):
{pending}

Create a motivational summary highlighting achievements and suggesting focus areas.
Keep it concise and encouraging (2-3 paragraphs max).
Do not use markdown formatting."""

SUMMARY_UNAVAILABLE = "Unable to generate summary at this time. Please check your Gemini API key configuration."


def generate_suggestions(recent_tasks: List[Task], generator=None) -> List[AISuggestion]:
    """Suggest follow-up tasks from the user's recent ones; [] on any failure."""
    if not recent_tasks or generator is None:
        return []

    context = "\n".join(
        f"{t.title} - {t.status.value} - Priority: {t.priority.value}" for t in recent_tasks
    )
    try:
        response = generator.generate(SUGGESTIONS_PROMPT.format(context=context))
    except ExternalServiceError as e:
        logger.warning(f"AI suggestion error: {e}")
        return []

    entries = extract_json(response, "[")
    if not isinstance(entries, list):
        return []
    suggestions = [AISuggestion.from_dict(e) for e in entries]
    return [s for s in suggestions if s is not None]


def generate_summary(tasks: List[Task], period: str, generator=None) -> str:
    if not tasks:
        return (
            f"No tasks found for your {period} summary. "
            "Start by creating some tasks to track your productivity!"
        )
    if generator is None:
        return SUMMARY_UNAVAILABLE

    completed = [t for t in tasks if t.status == TaskStatus.COMPLETED]
    pending = [t for t in tasks if t.status != TaskStatus.COMPLETED]
    prompt = SUMMARY_PROMPT.format(
        period=period,
        completed_count=len(completed),
        completed="\n".join(f"- {t.title}" for t in completed),
        pending_count=len(pending),
        pending="\n".join(f"- {t.title} ({t.priority.value} priority)" for t in pending),
    )
    try:
        text = generator.generate(prompt).strip()
    except ExternalServiceError as e:
        logger.warning(f"AI summary error: {e}")
        return SUMMARY_UNAVAILABLE
    return text or "No summary available."


def check_connection(generator=None) -> Dict[str, Any]:
    """Check that the backend answers; never raises."""
    if generator is None:
        return {"success": False, "message": "Text generation is not configured"}
    try:
        message = generator.generate('Say "Hello, Gemini API is working!"')
    except ExternalServiceError as e:
        return {"success": False, "message": str(e)}
    return {"success": True, "message": message, "model": getattr(generator, "model", None)}
