"""LMS core: enrollment ledger, progress store and their consistency rules."""

__version__ = "0.1.0"
