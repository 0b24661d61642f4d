"""Utility helpers."""

from lms_core.utils.dates import ensure_utc_aware, utcnow


__all__ = ["ensure_utc_aware", "utcnow"]
