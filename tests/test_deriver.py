"""
Tests for natural-language task derivation and priority inference.
"""
from unittest.mock import MagicMock

import pytest
import requests

from taskboard.deriver import TITLE_LIMIT, derive_task, fallback_draft
from taskboard.errors import InvalidInput
from taskboard.genai import GeminiClient
from taskboard.priority import infer_priority, priority_by_rules
from taskboard.schema import TaskPriority
from taskboard.service import TaskService

from fakes import FakeGenerator, FakeResponse


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Deriver Tests
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@pytest.mark.parametrize("text", [None, "", "   "])
def test_empty_input_rejected(text):
    with pytest.raises(InvalidInput):
        derive_task(text, FakeGenerator())


def test_backend_unavailable_uses_fallback():
    text = "Buy groceries tomorrow, urgent"
    draft = derive_task(text, FakeGenerator(fail=True))
    assert draft["title"] == text
    assert draft["description"] == text
    assert draft["priority"] == "medium"
    assert draft["tags"] == []
    assert draft["due_date"] is None


def test_no_generator_uses_fallback():
    assert derive_task("Call mom", None)["title"] == "Call mom"


def test_fallback_truncates_long_titles():
    text = "x" * 80
    draft = fallback_draft(text)
    assert draft["title"] == "x" * TITLE_LIMIT + "..."
    assert draft["description"] == text


def test_json_wrapped_in_prose_is_extracted():
    reply = (
        "Sure! Here it is:\n```json\n"
        '{"title": "Finish report", "description": "Quarterly numbers", '
        '"dueDate": "2025-03-07T17:00:00Z", "priority": "HIGH", "tags": ["work", "work"]}\n```'
    )
    draft = derive_task("finish the quarterly report by friday", FakeGenerator(reply))
    assert draft["title"] == "Finish report"
    assert draft["priority"] == "high"
    assert draft["tags"] == ["work"]
    assert draft["due_date"] == "2025-03-07T17:00:00+00:00"


def test_bad_fields_are_normalized():
    reply = '{"title": "Walk dog", "priority": "critical", "tags": "not-a-list", "dueDate": "soon"}'
    draft = derive_task("walk the dog", FakeGenerator(reply))
    assert draft["title"] == "Walk dog"
    assert draft["priority"] == "medium"
    assert draft["due_date"] is None
    assert draft["description"] == "walk the dog"
    assert draft["tags"] == []


def test_reply_without_title_falls_back():
    draft = derive_task("water plants", FakeGenerator('{"description": "no title here"}'))
    assert draft == fallback_draft("water plants")


def test_reply_without_json_falls_back():
    draft = derive_task("water plants", FakeGenerator("I cannot help with that."))
    assert draft == fallback_draft("water plants")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Priority Tests
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_high_keyword_skips_backend():
    gen = FakeGenerator("low")
    assert infer_priority("Submit report ASAP", "", gen) == TaskPriority.HIGH
    assert gen.prompts == []


def test_low_keyword():
    gen = FakeGenerator("high")
    assert infer_priority("Organize bookshelf", "someday project", gen) == TaskPriority.LOW
    assert gen.prompts == []


def test_high_beats_low():
    assert priority_by_rules("maybe urgent") == TaskPriority.HIGH


def test_backend_answer_used_when_exact():
    assert infer_priority("Review PR", "", FakeGenerator("  High\n")) == TaskPriority.HIGH


def test_backend_chatter_means_medium():
    assert infer_priority("Review PR", "", FakeGenerator("I think high")) == TaskPriority.MEDIUM


def test_backend_failure_means_medium():
    assert infer_priority("Review PR", "", FakeGenerator(fail=True)) == TaskPriority.MEDIUM
    assert infer_priority("Review PR", "", None) == TaskPriority.MEDIUM


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Gemini Failure Tests
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _gemini(*replies):
    session = MagicMock()
    session.post.side_effect = list(replies)
    return GeminiClient("key", ["m-one", "m-two"], session=session)


def _parts(parts):
    return FakeResponse(200, {"candidates": [{"content": {"parts": parts}}]})


@pytest.mark.parametrize("replies", [
    (_parts([{"text": None}]), _parts(None)),
    (requests.Timeout("slow"), requests.Timeout("slow")),
])
def test_derive_falls_back_on_gemini_trouble(replies):
    text = "Buy groceries tomorrow, urgent"
    assert derive_task(text, _gemini(*replies)) == fallback_draft(text)


@pytest.mark.parametrize("replies", [
    (_parts(None), _parts([{"text": None}])),
    (requests.Timeout("slow"), requests.Timeout("slow")),
])
def test_priority_is_medium_on_gemini_trouble(replies):
    assert infer_priority("Review PR", "", _gemini(*replies)) == TaskPriority.MEDIUM


def test_gemini_timeout_on_create_falls_back(store):
    gemini = _gemini(*[requests.Timeout("slow")] * 4)
    task = TaskService(store, generator=gemini).create_task("alice", {"natural_language": "Water the plants"})
    assert task.title == "Water the plants"
    assert task.priority == TaskPriority.MEDIUM
    assert task.ai_generated is True
