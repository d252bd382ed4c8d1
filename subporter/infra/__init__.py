"""Infra layer utilities (persistence)."""

from .storage import SQLiteManager, StateStore

__all__ = ["SQLiteManager", "StateStore"]
