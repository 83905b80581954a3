"""Mailbox credential handling."""

from .tokens import TokenStoreAccessor

__all__ = ["TokenStoreAccessor"]
