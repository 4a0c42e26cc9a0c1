"""Tests for spec_council/parsing.py."""

import pytest

from spec_council.parsing import (
    CompletionSignal,
    ToolCall,
    Unparseable,
    clamp_int,
    extract_json,
    extract_object,
    parse_agent_reply,
    str_list,
)


def test_extract_json_from_fenced_block():
    text = 'Here you go:\n```json\n{"a": 1}\n```\nThanks'
    assert extract_json(text) == {"a": 1}


def test_extract_json_from_surrounding_prose():
    assert extract_json('Sure! {"questions": []} Hope that helps.') == {"questions": []}


def test_extract_json_bare_list():
    assert extract_json('Result: [1, 2, 3]') == [1, 2, 3]


def test_extract_json_nothing():
    assert extract_json("no json here") is None
    assert extract_object("[1, 2]") is None


@pytest.mark.parametrize(
    ("value", "expected"),
    [(5, 5), ("7", 7), (7.6, 8), (42, 10), (-3, 1), (None, 4), ("high", 4), (True, 4)],
)
def test_clamp_int(value, expected):
    assert clamp_int(value, 1, 10, 4) == expected


def test_str_list():
    assert str_list(["a", "", None, 3]) == ("a", "3")
    assert str_list("single") == ("single",)
    assert str_list({"not": "a list"}) == ()


def test_parse_completion_signal():
    reply = parse_agent_reply('{"complete": true, "confidence": 85, "findings": "Use Postgres."}')
    assert reply == CompletionSignal(findings="Use Postgres.", confidence=85)


def test_parse_completion_default_confidence():
    reply = parse_agent_reply('{"complete": true, "findings": "Done."}')
    assert isinstance(reply, CompletionSignal)
    assert reply.confidence == 70


def test_completion_without_findings_is_unparseable():
    reply = parse_agent_reply('{"complete": true, "findings": "  "}')
    assert isinstance(reply, Unparseable)


def test_parse_tool_call():
    reply = parse_agent_reply('Let me search. {"tool": "web_search", "params": {"query": "habit apps"}}')
    assert reply == ToolCall(tool="web_search", params={"query": "habit apps"})


def test_tool_call_without_params():
    assert parse_agent_reply('{"tool": "market_data"}') == ToolCall(tool="market_data", params={})


def test_tool_call_with_bad_params():
    reply = parse_agent_reply('{"tool": "web_search", "params": "habit apps"}')
    assert isinstance(reply, Unparseable)
    assert "params" in reply.reason


def test_text_that_mentions_complete_is_not_a_signal():
    """Substring matches do not count; only the JSON shape does."""
    reply = parse_agent_reply('I am not "complete": true yet, still working.')
    assert isinstance(reply, Unparseable)


def test_other_json_is_unparseable():
    reply = parse_agent_reply('{"answer": 42}')
    assert isinstance(reply, Unparseable)
    assert reply.raw == '{"answer": 42}'
