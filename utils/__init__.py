"""
Shared utility functions for the backend.
"""
from .periods import (
    parse_period,
    period_of,
    period_bounds,
    previous_period,
    iter_dates,
    is_sunday,
)
from .preview_tokens import create_preview_token, verify_preview_token

__all__ = [
    "parse_period",
    "period_of",
    "period_bounds",
    "previous_period",
    "iter_dates",
    "is_sunday",
    "create_preview_token",
    "verify_preview_token",
]
