"""Tool catalog, capability policy, and the invocation boundary.

Remote MCP tools live in `streamcall.tools.mcp_gateway`, imported on demand.
"""

from __future__ import annotations

from .catalog import BUILTIN_TOOLS, ToolCatalog, ToolSpec
from .invoker import HandlerToolInvoker, ToolInvoker
from .policy import CapabilityPolicy, PolicyDecision

__all__ = [
    "BUILTIN_TOOLS",
    "CapabilityPolicy",
    "HandlerToolInvoker",
    "PolicyDecision",
    "ToolCatalog",
    "ToolInvoker",
    "ToolSpec",
]
