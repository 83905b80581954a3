"""Persistence layer."""

from .sqlite import SqliteCrmRepository

__all__ = ["SqliteCrmRepository"]
