"""Shared-secret checks for the webhook and the review API."""

import secrets
from dataclasses import dataclass

from fastapi import HTTPException, Request, status


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


def _matches(expected: str, supplied: str | None) -> bool:
    if not supplied:
        return False
    return secrets.compare_digest(expected.encode("utf-8"), supplied.encode("utf-8"))


@dataclass(frozen=True, slots=True)
class WebhookTokenGuard:
    """Accept push deliveries carrying the configured verification token."""

    token: str | None = None
    query_param: str = "token"

    def accepts(self, request: Request) -> bool:
        """Return whether ``request`` may be processed."""
        if not self.token:
            return True
        supplied = request.query_params.get(self.query_param) or _bearer_token(request)
        return _matches(self.token, supplied)


@dataclass(frozen=True, slots=True)
class ApiTokenGuard:
    """Require a bearer token on administrative routes when one is configured."""

    token: str | None = None

    def __call__(self, request: Request) -> None:
        """FastAPI dependency raising 401 on a missing or wrong token."""
        if not self.token:
            return
        if not _matches(self.token, _bearer_token(request)):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or missing API token.",
                headers={"WWW-Authenticate": "Bearer"},
            )


__all__ = ["ApiTokenGuard", "WebhookTokenGuard"]
