"""Streaming tool-call orchestration engine.

Turns streamed model text into validated, deduplicated, retried tool
invocations and decides when to resume the model with the results.
"""

from __future__ import annotations

__all__ = [
    "__version__",
]

__version__ = "0.1.0"
