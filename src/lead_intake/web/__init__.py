"""HTTP surface for push notifications and triage review."""

from .app import create_app

__all__ = ["create_app"]
