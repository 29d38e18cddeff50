"""CLI commands against flow files, with the connector swapped for a mocked one."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from conftest import Recorder, json_response, make_connector, openai_reply
from semantic_flow import cli
from semantic_flow.connectors import OpenAIConnector

FLOW_JSON = json.dumps({"flowName": "Hello Logger", "flow": [{"id": "n1", "type": "debug", "info": "**logs** hello"}]})


def _patched(reply: str):
    connector = make_connector(OpenAIConnector, Recorder(json_response(openai_reply(reply))), AI_API_KEY="sk-test")
    return patch.object(cli, "create_connector", lambda *args, **kwargs: connector)


class TestBuildCommand:
    def test_writes_new_tab(self, tmp_path, capsys):
        out = tmp_path / "out.json"
        with _patched(FLOW_JSON), pytest.raises(SystemExit) as exc:
            cli.main(["build", "create a flow that logs hello", "--out", str(out)])
        assert exc.value.code == 0

        nodes = json.loads(out.read_text())
        tab = next(n for n in nodes if n["type"] == "tab")
        assert tab["label"] == "Hello Logger"
        assert any(n["id"] == "n1" and n["z"] == tab["id"] for n in nodes)
        printed = capsys.readouterr().out
        assert "Flow created successfully! Generated 1 nodes" in printed
        assert "+ n1  logs hello" in printed

    def test_failure_exit_code(self, tmp_path, capsys):
        with _patched(json.dumps({"flow": []})), pytest.raises(SystemExit) as exc:
            cli.main(["build", "add nothing"])
        assert exc.value.code == 1
        assert "AI returned empty flow" in capsys.readouterr().out


class TestResyncCommand:
    def test_logic_to_info_in_place(self, tmp_path):
        flow = tmp_path / "flows.json"
        flow.write_text(json.dumps([
            {"id": "t1", "type": "tab", "label": "Main"},
            {"id": "fn", "type": "function", "z": "t1", "func": "return msg;", "wires": []},
        ]))
        reply = json.dumps({"name": "Passthrough", "description": "Forwards messages."})
        with _patched(reply), pytest.raises(SystemExit) as exc:
            cli.main(["resync", "fn", "--flow", str(flow), "--direction", "logic-to-info"])
        assert exc.value.code == 0
        node = next(n for n in json.loads(flow.read_text()) if n["id"] == "fn")
        assert node["info"] == "Forwards messages."


class TestCheckCommand:
    def test_incomplete_config(self, capsys):
        with pytest.raises(SystemExit) as exc:
            cli.main(["check"])
        assert exc.value.code == 1
        assert "Missing required field: api_key" in capsys.readouterr().out
