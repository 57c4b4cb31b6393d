from types import SimpleNamespace

import pytest

from janeproxy.service.crisis import SAFETY_SCRIPT, is_crisis


@pytest.mark.parametrize(
    "text",
    [
        "I think about SUICIDE a lot",
        "sometimes I want to Kill Myself",
        "I could kill them",
        "I want to end my life",
        "I've been self-harming again",
        "thinking about selfharm",
        "took an overdose last year",
        "I can't go on like this",
        "I can’t go on",
        "honestly I want to die",
    ],
)
def test_crisis_phrases_detected(text):
    assert is_crisis([{"role": "user", "content": text}])


def test_clean_conversation_not_flagged():
    messages = [
        {"role": "user", "content": "I keep forgetting my appointments"},
        {"role": "assistant", "content": "Let's set one reminder together."},
        {"role": "user", "content": "I'm dying to try that new planner"},
    ]
    assert not is_crisis(messages)


def test_any_message_in_history_counts():
    messages = [
        {"role": "user", "content": "I feel like I can't go on"},
        {"role": "assistant", "content": "I'm here."},
        {"role": "user", "content": "ok"},
    ]
    assert is_crisis(messages)


def test_accepts_objects_and_ignores_missing_content():
    assert is_crisis([SimpleNamespace(role="user", content="overdose")])
    assert not is_crisis([{"role": "user"}, SimpleNamespace(role="user", content=None)])
    assert not is_crisis([])


def test_safety_script_lists_crisis_lines():
    assert "9-8-8" in SAFETY_SCRIPT
    assert "1-855-242-3310" in SAFETY_SCRIPT
    assert "911" in SAFETY_SCRIPT
