from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, AsyncIterator, Sequence

from .core.config import AppConfig, ConfigError, load_config
from .core.types import Mode
from .observability.logging import configure_logging, get_logger
from .orchestrator import ConversationContext, StartContinuation, StreamResponseOrchestrator, TurnReport
from .tools.catalog import ToolCatalog
from .tools.invoker import HandlerToolInvoker, ToolInvoker
from .tools.result_codec import to_json_friendly


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="streamcall",
        description="Replay a recorded model turn through the tool-call engine",
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to a YAML config file")
    parser.add_argument("--log-level", default=None, help="Logging level (overrides logging.level)")

    sub = parser.add_subparsers(dest="command")

    run_p = sub.add_parser("run", help="Process one model turn read from a file or stdin")
    run_p.add_argument("--response-file", type=Path, default=None, help="Model output to replay (default: stdin)")
    run_p.add_argument("--mode", choices=["plan", "act"], default=None, help="Operating mode for the turn")
    run_p.add_argument("--chunk-size", type=int, default=64, help="Replay the text in chunks of this many chars")
    run_p.add_argument("--fake", action="store_true", help="Echo tool invoker (offline, no MCP)")

    prompt_p = sub.add_parser("prompt", help="Print the mode-specific system prompt")
    prompt_p.add_argument("--mode", choices=["plan", "act"], default="act")

    sub.add_parser("print-config", help="Load and print the expanded config")
    return parser


def _load(path: Path | None) -> AppConfig:
    if path is None:
        return AppConfig()
    return load_config(path)


def _fake_invoker(catalog: ToolCatalog) -> HandlerToolInvoker:
    invoker = HandlerToolInvoker()
    for name in catalog.names():
        invoker.register(name, lambda params, _name=name: {"tool": _name, "params": params, "ok": True})
    return invoker


async def _build_invoker(cfg: AppConfig, catalog: ToolCatalog, *, fake: bool) -> ToolInvoker:
    if fake or not cfg.mcp.enabled:
        return _fake_invoker(catalog)

    from .tools.mcp_gateway import McpGateway

    gateway = McpGateway(servers=cfg.mcp.servers)
    await gateway.load()
    catalog.extend(gateway.specs())
    return gateway


async def _chunks(text: str, size: int) -> AsyncIterator[str]:
    size = max(1, size)
    for i in range(0, len(text), size):
        yield text[i : i + size]
        await asyncio.sleep(0)


def _report_payload(report: TurnReport) -> dict[str, Any]:
    outcome: dict[str, Any] = {"kind": report.outcome.kind}
    if isinstance(report.outcome, StartContinuation):
        outcome["summary"] = report.outcome.summary
        outcome["corrective"] = report.outcome.corrective

    plan = None
    if report.plan_update is not None:
        plan = {
            "id": report.plan_update.id,
            "description": report.plan_update.description,
            "steps": [{"number": s.number, "description": s.description, "status": s.status} for s in report.plan_update.steps],
        }

    return {
        "display_text": report.display_text,
        "outcome": outcome,
        "tool_calls": [
            {
                "tool": ev.call.tool_name,
                "params": to_json_friendly(ev.call.params),
                "status": ev.status,
                "error": ev.result.error if ev.result is not None else None,
            }
            for ev in report.tool_call_events
        ],
        "plan": plan,
        "contract_error": report.contract_error,
        "progress": report.progress,
    }


async def _run(cfg: AppConfig, ns: argparse.Namespace) -> TurnReport:
    if ns.response_file is not None:
        text = ns.response_file.read_text(encoding="utf-8")
    else:
        text = sys.stdin.read()

    catalog = ToolCatalog.default(plan_safe=cfg.tools.plan_safe, plan_blocked=cfg.tools.plan_blocked)
    invoker = await _build_invoker(cfg, catalog, fake=bool(ns.fake))
    orch = StreamResponseOrchestrator.from_config(cfg, invoker=invoker, catalog=catalog)

    mode: Mode = ns.mode or cfg.engine.default_mode  # type: ignore[assignment]
    task = orch.start_turn(_chunks(text, ns.chunk_size), ConversationContext(conversation_id=orch.conversation_id, mode=mode))
    return await task


def main(argv: Sequence[str] | None = None) -> int:
    argv_list = list(argv) if argv is not None else sys.argv[1:]
    # Default to `run` when no subcommand is given.
    if not any(a in {"run", "prompt", "print-config"} for a in argv_list):
        argv_list = [*argv_list, "run"]

    ns = _build_parser().parse_args(argv_list)

    try:
        cfg = _load(ns.config)
    except ConfigError as e:
        configure_logging(level=ns.log_level or "INFO")
        get_logger("streamcall.cli").error("config_error", error=str(e))
        sys.stderr.write(f"ConfigError: {e}\n")
        return 2

    configure_logging(level=(ns.log_level or cfg.logging.level).upper())
    log = get_logger("streamcall.cli")

    if ns.command == "print-config":
        sys.stdout.write(json.dumps(to_json_friendly(_config_dict(cfg)), ensure_ascii=False, indent=2))
        sys.stdout.write("\n")
        return 0

    if ns.command == "prompt":
        orch = StreamResponseOrchestrator.from_config(cfg, invoker=HandlerToolInvoker())
        sys.stdout.write(orch.system_prompt(ns.mode))
        return 0

    try:
        report = asyncio.run(_run(cfg, ns))
    except Exception as e:  # noqa: BLE001
        log.exception("fatal_error")
        sys.stderr.write(f"Fatal error: {e}\n")
        return 1

    sys.stdout.write(json.dumps(_report_payload(report), ensure_ascii=False, indent=2))
    sys.stdout.write("\n")
    return 0


def _config_dict(cfg: AppConfig) -> dict[str, Any]:
    return _redact_secrets(asdict(cfg))


def _redact_secrets(obj: Any) -> Any:
    """Keep MCP tokens and headers out of `print-config` output."""

    if isinstance(obj, dict):
        out: dict[str, Any] = {}
        for k, v in obj.items():
            if isinstance(k, str) and any(p in k.lower() for p in ("api_key", "token", "secret", "password", "authorization")):
                out[k] = "<redacted>"
            else:
                out[k] = _redact_secrets(v)
        return out
    if isinstance(obj, list):
        return [_redact_secrets(x) for x in obj]
    return obj
