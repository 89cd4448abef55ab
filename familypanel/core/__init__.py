"""
Core module - fundamental data models and helpers.

This module contains:
- models: Principal, Role and the household rows (Chore, ChoreAssignment)
- utils: Shared utility functions
"""

from familypanel.core.models import (
    Chore,
    ChoreAssignment,
    Principal,
    PrincipalResponse,
    Role,
)
from familypanel.core.utils import generate_id, is_safe_redirect, utc_now

__all__ = [
    # Models
    "Chore",
    "ChoreAssignment",
    "Principal",
    "PrincipalResponse",
    "Role",
    # Utils
    "generate_id",
    "is_safe_redirect",
    "utc_now",
]
