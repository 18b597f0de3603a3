from __future__ import annotations

import hashlib
import secrets


def new_trace_id() -> str:
    return secrets.token_hex(16)


def new_conversation_id() -> str:
    return secrets.token_hex(12)


def content_hash(text: str) -> str:
    """Stable digest of a fully assembled model turn."""

    return hashlib.sha256(text.encode("utf-8")).hexdigest()
