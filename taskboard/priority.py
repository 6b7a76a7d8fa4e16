"""
Priority inference for tasks created without an explicit priority.

Keyword rules run first and short-circuit; only when no rule matches is the
text-generation backend asked for a single word. Any backend trouble ends in
"medium".
"""
import logging
from typing import Optional

from .errors import ExternalServiceError
from .schema import TaskPriority

logger = logging.getLogger(__name__)

HIGH_PRIORITY_KEYWORDS = ["urgent", "asap", "critical", "important", "deadline", "emergency"]
LOW_PRIORITY_KEYWORDS = ["someday", "maybe", "nice to have", "optional", "when possible"]

PRIORITY_PROMPT = """Analyze this task and determine its priority level (low, medium, high):
Title: {title}
Description: {description}

Consider factors like urgency, importance, deadlines, and impact.
Respond with only one word: low, medium, or high"""


def priority_by_rules(title: str, description: str = "") -> Optional[TaskPriority]:
    """Keyword heuristic. Returns None when no keyword matches."""
    text = f"{title} {description or ''}".lower()
    if any(w in text for w in HIGH_PRIORITY_KEYWORDS):
        return TaskPriority.HIGH
    if any(w in text for w in LOW_PRIORITY_KEYWORDS):
        return TaskPriority.LOW
    return None


def infer_priority(title: str, description: str = "", generator=None) -> TaskPriority:
    """Keyword rules, then one model call, then medium."""
    by_rules = priority_by_rules(title, description)
    if by_rules is not None:
        return by_rules

    if generator is None:
        return TaskPriority.MEDIUM

    prompt = PRIORITY_PROMPT.format(title=title, description=description or "No description")
    try:
        answer = generator.generate(prompt).strip().lower()
    except ExternalServiceError as e:
        logger.warning(f"AI priority prediction failed, using medium: {e}")
        return TaskPriority.MEDIUM

    if answer in {p.value for p in TaskPriority}:
        return TaskPriority(answer)
    logger.debug(f"Ignoring priority answer {answer[:40]!r}")
    return TaskPriority.MEDIUM
