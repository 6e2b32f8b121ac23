"""Document id generation."""

from __future__ import annotations

import uuid


def generate_id() -> str:
    """Return a new opaque document id (32 lowercase hex characters)."""
    return uuid.uuid4().hex
