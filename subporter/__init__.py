"""Subporter: export and re-import video platform subscriptions."""

__version__ = "0.3.0"
