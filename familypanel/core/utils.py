"""
Shared utility functions for the family panel.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone


def generate_id(prefix: str = "") -> str:
    """
    Generate a unique ID with optional prefix.

    Args:
        prefix: Optional prefix (e.g., "usr", "chore", "tok")

    Returns:
        A unique ID like "usr_a1b2c3d4e5f6"
    """
    uid = uuid.uuid4().hex[:12]
    return f"{prefix}_{uid}" if prefix else uid


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def is_safe_redirect(path: str | None) -> bool:
    """True for same-site relative paths like "/chores?day=mon"."""
    if not path or not path.startswith("/"):
        return False
    # "//evil.example" and "/\evil.example" are protocol-relative in browsers
    return not path.startswith("//") and not path.startswith("/\\")
