"""Kora operator rent tracker - sponsorship discovery and safe rent reclaim."""

__version__ = "0.1.0"
