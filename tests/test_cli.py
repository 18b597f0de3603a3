from __future__ import annotations

import json
from pathlib import Path

import pytest

from streamcall import cli

ROOT = Path(__file__).resolve().parents[1]


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    # configure_logging replaces root handlers; keep pytest's capture intact.
    monkeypatch.setattr(cli, "configure_logging", lambda level="INFO": None)


def test_run_replays_turn_with_fake_tools(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    turn = tmp_path / "turn.txt"
    turn.write_text('Reading code.\n{"tool":"get_code","params":{}}', encoding="utf-8")

    code = cli.main(["--config", str(ROOT / "configs" / "app.yaml"), "run", "--response-file", str(turn), "--fake"])

    assert code == 0
    out = json.loads(capsys.readouterr().out)
    assert out["display_text"] == "Reading code."
    assert out["outcome"]["kind"] == "start_continuation"
    assert "Tool get_code executed successfully" in out["outcome"]["summary"]
    assert out["tool_calls"] == [{"tool": "get_code", "params": {}, "status": "executed", "error": None}]


def test_run_plan_mode(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    turn = tmp_path / "plan.json"
    turn.write_text(
        json.dumps({"plan": {"description": "Add BMI", "steps": [{"number": 1, "description": "Read code"}]}}),
        encoding="utf-8",
    )

    code = cli.main(["run", "--response-file", str(turn), "--mode", "plan", "--fake"])

    assert code == 0
    out = json.loads(capsys.readouterr().out)
    assert out["outcome"] == {"kind": "done"}
    assert out["plan"]["description"] == "Add BMI"
    assert out["plan"]["steps"] == [{"number": 1, "description": "Read code", "status": "pending"}]


def test_bad_config_exits_2(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    bad = tmp_path / "bad.yaml"
    bad.write_text("engine:\n  default_mode: chat\n", encoding="utf-8")

    code = cli.main(["--config", str(bad), "print-config"])

    assert code == 2
    assert "ConfigError" in capsys.readouterr().err


def test_print_config_redacts_secrets(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    cfg = tmp_path / "app.yaml"
    cfg.write_text(
        """
mcp:
  enabled: true
  servers:
    search:
      transport: http
      url: http://127.0.0.1:8765/mcp
      headers:
        Authorization: Bearer abc
""".lstrip(),
        encoding="utf-8",
    )

    code = cli.main(["--config", str(cfg), "print-config"])

    assert code == 0
    out = json.loads(capsys.readouterr().out)
    assert out["mcp"]["servers"]["search"]["headers"]["Authorization"] == "<redacted>"
    assert out["tools"]["timeout_ms"] == 25000


def test_prompt_command(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["prompt", "--mode", "plan"]) == 0

    assert "PLAN MODE" in capsys.readouterr().out
