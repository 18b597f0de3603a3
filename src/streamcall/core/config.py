from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .errors import ConfigError

# re-export for contract/tests
__all__ = [
    "AppConfig",
    "ConfigError",
    "EngineConfig",
    "LoggingConfig",
    "McpConfig",
    "ToolsConfig",
    "load_config",
]


_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_MODES = {"plan", "act"}


def _expand_env_in_str(value: str, *, path: str) -> str:
    def repl(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in os.environ or os.environ[key] == "":
            raise ConfigError(f"environment variable {key!r} is not set", path=path)
        return os.environ[key]

    return _ENV_PATTERN.sub(repl, value)


def _expand_env(obj: Any, *, path: str) -> Any:
    if isinstance(obj, str):
        return _expand_env_in_str(obj, path=path)
    if isinstance(obj, list):
        return [_expand_env(v, path=path) for v in obj]
    if isinstance(obj, dict):
        return {k: _expand_env(v, path=f"{path}.{k}" if path else str(k)) for k, v in obj.items()}
    return obj


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError("must be a mapping", path=key)
    return value


def _str_list(raw: dict[str, Any], key: str, *, path: str) -> list[str]:
    value = raw.get(key, [])
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(x, str) for x in value):
        raise ConfigError("must be a list of strings", path=f"{path}.{key}")
    return list(value)


@dataclass(frozen=True)
class EngineConfig:
    default_mode: str = "act"
    max_contract_corrections: int = 3
    max_plan_steps: int = 12


@dataclass(frozen=True)
class ToolsConfig:
    timeout_ms: int = 25000
    max_retries: int = 1
    retry_backoff_ms: int = 0
    summary_char_limit: int = 2000
    # Extra names for remote tools that carry no plan-safety metadata.
    plan_safe: list[str] = field(default_factory=list)
    plan_blocked: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class McpConfig:
    """Client-side MCP configuration.

    This project uses `langchain-mcp-adapters` to manage MCP connections.
    """

    enabled: bool = False
    # server_name -> server_config, passed to MultiServerMCPClient as-is.
    servers: dict[str, dict[str, Any]] = field(default_factory=dict)


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class AppConfig:
    engine: EngineConfig = field(default_factory=EngineConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    mcp: McpConfig = field(default_factory=McpConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _load_engine(raw: dict[str, Any]) -> EngineConfig:
    engine_raw = _section(raw, "engine")
    mode = str(engine_raw.get("default_mode", EngineConfig.default_mode))
    if mode not in _MODES:
        raise ConfigError(f"unsupported mode: {mode!r}", path="engine.default_mode")

    engine = EngineConfig(
        default_mode=mode,
        max_contract_corrections=int(
            engine_raw.get("max_contract_corrections", EngineConfig.max_contract_corrections)
        ),
        max_plan_steps=int(engine_raw.get("max_plan_steps", EngineConfig.max_plan_steps)),
    )
    if engine.max_contract_corrections < 0:
        raise ConfigError("must be an integer >= 0", path="engine.max_contract_corrections")
    if not 1 <= engine.max_plan_steps <= 12:
        raise ConfigError("must be between 1 and 12", path="engine.max_plan_steps")
    return engine


def _load_tools(raw: dict[str, Any]) -> ToolsConfig:
    tools_raw = _section(raw, "tools")
    tools = ToolsConfig(
        timeout_ms=int(tools_raw.get("timeout_ms", ToolsConfig.timeout_ms)),
        max_retries=int(tools_raw.get("max_retries", ToolsConfig.max_retries)),
        retry_backoff_ms=int(tools_raw.get("retry_backoff_ms", ToolsConfig.retry_backoff_ms)),
        summary_char_limit=int(tools_raw.get("summary_char_limit", ToolsConfig.summary_char_limit)),
        plan_safe=_str_list(tools_raw, "plan_safe", path="tools"),
        plan_blocked=_str_list(tools_raw, "plan_blocked", path="tools"),
    )
    if tools.timeout_ms <= 0:
        raise ConfigError("must be an integer > 0", path="tools.timeout_ms")
    if tools.max_retries < 0:
        raise ConfigError("must be an integer >= 0", path="tools.max_retries")
    if tools.retry_backoff_ms < 0:
        raise ConfigError("must be an integer >= 0", path="tools.retry_backoff_ms")
    if tools.summary_char_limit <= 0:
        raise ConfigError("must be an integer > 0", path="tools.summary_char_limit")
    overlap = set(tools.plan_safe) & set(tools.plan_blocked)
    if overlap:
        raise ConfigError(f"listed as both plan_safe and plan_blocked: {sorted(overlap)}", path="tools")
    return tools


def _load_mcp(raw: dict[str, Any]) -> McpConfig:
    mcp_raw = _section(raw, "mcp")
    enabled = bool(mcp_raw.get("enabled", McpConfig.enabled))
    servers_raw = mcp_raw.get("servers", {})
    if servers_raw is None:
        servers_raw = {}
    if not isinstance(servers_raw, dict):
        raise ConfigError("must be dict[str,dict]", path="mcp.servers")

    servers: dict[str, dict[str, Any]] = {}
    for k, v in servers_raw.items():
        if not isinstance(k, str) or not k:
            raise ConfigError("server name must be a non-empty string", path="mcp.servers")
        if not isinstance(v, dict):
            raise ConfigError("server config must be a mapping", path=f"mcp.servers.{k}")
        servers[k] = dict(v)

    if enabled and not servers:
        raise ConfigError("mcp.servers is required when MCP is enabled", path="mcp.servers")

    if enabled:
        for name, scfg in servers.items():
            t = str(scfg.get("transport", ""))
            if t not in {"stdio", "streamable_http", "http"}:
                raise ConfigError(f"unsupported transport: {t!r}", path=f"mcp.servers.{name}.transport")
            if t == "stdio":
                cmd = scfg.get("command")
                if not isinstance(cmd, str) or not cmd.strip():
                    raise ConfigError("stdio requires command", path=f"mcp.servers.{name}.command")
                args = scfg.get("args", [])
                if not isinstance(args, list) or not all(isinstance(x, str) for x in args):
                    raise ConfigError("must be a list of strings", path=f"mcp.servers.{name}.args")
            else:
                u = scfg.get("url")
                if not isinstance(u, str) or not u.strip():
                    raise ConfigError("http requires url", path=f"mcp.servers.{name}.url")

    return McpConfig(enabled=enabled, servers=servers)


def config_from_dict(raw: dict[str, Any]) -> AppConfig:
    """Build a validated AppConfig from an already expanded mapping."""

    logging_raw = _section(raw, "logging")
    return AppConfig(
        engine=_load_engine(raw),
        tools=_load_tools(raw),
        mcp=_load_mcp(raw),
        logging=LoggingConfig(level=str(logging_raw.get("level", LoggingConfig.level)).upper()),
    )


def load_config(path: str | Path) -> AppConfig:
    """Load YAML config and expand ${ENV_VAR}."""

    # Local dev: allow injecting secrets (MCP tokens) from .env.
    load_dotenv(override=False)

    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError("config file does not exist", path=str(config_path))

    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except Exception as e:  # noqa: BLE001
        raise ConfigError(f"YAML parse failed: {e}", path=str(config_path)) from e

    if not isinstance(raw, dict):
        raise ConfigError("top level must be a YAML mapping", path=str(config_path))

    return config_from_dict(_expand_env(raw, path=""))
