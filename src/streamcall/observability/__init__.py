from __future__ import annotations

from .context import add_error, bind_context, call_scope, set_state
from .logging import configure_logging, get_logger

__all__ = ["add_error", "bind_context", "call_scope", "configure_logging", "get_logger", "set_state"]
