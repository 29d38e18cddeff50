"""Reply parsing: code fences, flow/resync/description payloads, error previews."""

from __future__ import annotations

import pytest

from semantic_flow.errors import ParseError, SemanticValidationError
from semantic_flow.parsing import (
    parse_description_reply,
    parse_flow_reply,
    parse_json_reply,
    parse_resync_reply,
    unwrap_code_fence,
)


class TestUnwrapCodeFence:
    def test_json_fence(self):
        assert unwrap_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_bare_fence(self):
        assert unwrap_code_fence('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_surrounding_whitespace(self):
        assert unwrap_code_fence('  \n```json\n{"a": 1}\n```\n ') == '{"a": 1}'

    def test_no_fence(self):
        assert unwrap_code_fence(' {"a": 1} ') == '{"a": 1}'


class TestParseJsonReply:
    def test_fenced_and_bare_parse_equal(self):
        assert parse_json_reply('```json\n{"flow": []}\n```') == parse_json_reply('{"flow": []}')

    def test_invalid_json_preview_is_bounded(self):
        content = "not json " * 100
        with pytest.raises(ParseError) as exc:
            parse_json_reply(content)
        assert exc.value.preview == content[:200]
        assert str(exc.value) == f"AI returned invalid JSON. Response preview: {content[:200]}"


class TestParseFlowReply:
    def test_flow_and_name(self):
        flow, name = parse_flow_reply('{"flowName": "Hello Logger", "flow": [{"id": "n1", "type": "debug"}]}')
        assert flow == [{"id": "n1", "type": "debug"}]
        assert name == "Hello Logger"

    def test_missing_flow_is_empty(self):
        assert parse_flow_reply('{"flowName": "x"}') == ([], "x")

    def test_non_object_reply_is_empty(self):
        assert parse_flow_reply("[1, 2]") == ([], "")

    def test_non_dict_entries_dropped(self):
        flow, _ = parse_flow_reply('{"flow": [{"id": "a"}, "junk", 3]}')
        assert flow == [{"id": "a"}]


class TestParseResyncReply:
    def test_whole_object_is_node(self):
        assert parse_resync_reply('{"id": "n1", "func": "return msg;"}') == {"id": "n1", "func": "return msg;"}

    def test_array_rejected(self):
        with pytest.raises(SemanticValidationError):
            parse_resync_reply("[]")


class TestParseDescriptionReply:
    def test_trimmed(self):
        assert parse_description_reply('{"name": "  Logger ", "description": " Logs hello "}') == (
            "Logger",
            "Logs hello",
        )

    @pytest.mark.parametrize("reply", ['{"name": "x"}', '{"description": "y"}', '{"name": " ", "description": "y"}'])
    def test_missing_field(self, reply):
        with pytest.raises(SemanticValidationError, match="AI response missing name or description"):
            parse_description_reply(reply)
