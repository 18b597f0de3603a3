from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from langchain_mcp_adapters.client import MultiServerMCPClient

from ..core.errors import InvocationError
from ..observability.logging import get_logger
from .catalog import ParamKind, ToolSpec

_KINDS: dict[str, ParamKind] = {"string": "string", "integer": "integer", "object": "object"}


@dataclass(frozen=True, slots=True)
class McpToolBinding:
    server_key: str
    name: str
    tool: Any


def _plan_safe_from(tool: Any) -> bool | None:
    """Read the MCP `readOnlyHint` annotation (surfaced as tool metadata)."""

    meta = getattr(tool, "metadata", None) or {}
    if not isinstance(meta, dict):
        return None
    for key in ("allowedInPlanMode", "readOnlyHint"):
        value = meta.get(key)
        if isinstance(value, bool):
            return value
    return None


def _required_from(tool: Any) -> dict[str, ParamKind]:
    schema = getattr(tool, "args_schema", None)
    if not isinstance(schema, dict):
        return {}
    props = schema.get("properties") if isinstance(schema.get("properties"), dict) else {}
    required = schema.get("required") if isinstance(schema.get("required"), list) else []
    out: dict[str, ParamKind] = {}
    for name in required:
        if not isinstance(name, str):
            continue
        prop = props.get(name) if isinstance(props.get(name), dict) else {}
        out[name] = _KINDS.get(str(prop.get("type", "")), "any")
    return out


class McpGateway:
    """Remote tools over MCP, built on langchain-mcp-adapters.

    Responsibilities:
    - Load tools from the MCP servers defined in config.
    - Describe them as catalog ToolSpecs (plan safety, required params).
    - Invoke them as a ToolInvoker.
    """

    def __init__(self, *, servers: dict[str, dict[str, Any]]) -> None:
        self._servers = dict(servers)
        self._log = get_logger("streamcall.mcp")
        self._bindings: dict[str, McpToolBinding] = {}
        self._loaded = False

    def bindings(self) -> list[McpToolBinding]:
        return list(self._bindings.values())

    async def load(self) -> None:
        if self._loaded:
            return
        if not self._servers:
            raise ValueError("mcp.servers is empty")

        bindings: dict[str, McpToolBinding] = {}
        for server_key, server_cfg in self._servers.items():
            cfg = dict(server_cfg)
            if str(cfg.get("transport", "")) == "http":
                cfg["transport"] = "streamable_http"

            # One client per server keeps an explicit server_key -> tools mapping.
            client = MultiServerMCPClient({server_key: cfg})  # type: ignore[arg-type]
            tools = await client.get_tools()

            for t in tools:
                name = getattr(t, "name", None)
                if not isinstance(name, str) or not name:
                    continue
                if name in bindings:
                    raise RuntimeError(f"duplicate MCP tool name across servers: {name!r}")
                bindings[name] = McpToolBinding(server_key=server_key, name=name, tool=t)

        self._bindings = bindings
        self._loaded = True
        self._log.info("mcp_tools_loaded", servers=len(self._servers), tools=len(bindings))

    def specs(self) -> list[ToolSpec]:
        return [
            ToolSpec(
                name=b.name,
                description=str(getattr(b.tool, "description", "") or ""),
                plan_safe=_plan_safe_from(b.tool),
                required_params=_required_from(b.tool),
                source=f"mcp:{b.server_key}",
            )
            for b in self._bindings.values()
        ]

    async def invoke(self, tool_name: str, params: dict[str, Any]) -> Any:
        await self.load()

        binding = self._bindings.get(tool_name)
        if binding is None:
            raise InvocationError(f"tool not registered: {tool_name}", status=404)

        try:
            return await binding.tool.ainvoke(params)
        except asyncio.CancelledError:
            raise
        except (TimeoutError, ConnectionError):
            raise
        except Exception as e:  # noqa: BLE001
            status = getattr(e, "status_code", None)
            raise InvocationError(str(e) or type(e).__name__, status=status if isinstance(status, int) else None) from e
