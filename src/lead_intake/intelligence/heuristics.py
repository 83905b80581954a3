"""Cheap header-based rejection of automated senders."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping

_AUTOMATED_LOCAL_PARTS = (
    re.compile(r"^no-?reply@", re.IGNORECASE),
    re.compile(r"^do-?not-?reply@", re.IGNORECASE),
    re.compile(r"^mailer-daemon@", re.IGNORECASE),
    re.compile(r"^postmaster@", re.IGNORECASE),
    re.compile(r"^bounces?@", re.IGNORECASE),
    re.compile(r"^notifications?@", re.IGNORECASE),
    re.compile(r"^alerts?@", re.IGNORECASE),
)
_BULK_PRECEDENCE = frozenset({"bulk", "list"})


def is_obviously_not_a_lead(
    sender_email: str,
    headers: Mapping[str, str],
    *,
    blocked_domains: Iterable[str] = (),
) -> bool:
    """Return ``True`` when the sender is almost certainly automated.

    The checks only look at the address and a couple of headers; message
    content is never inspected so that a real person is not filtered out.
    """
    email = sender_email.strip().lower()
    if any(pattern.search(email) for pattern in _AUTOMATED_LOCAL_PARTS):
        return True

    lowered = {name.lower(): value for name, value in headers.items()}
    if lowered.get("list-unsubscribe", "").strip():
        return True
    if lowered.get("precedence", "").strip().lower() in _BULK_PRECEDENCE:
        return True

    _, _, domain = email.rpartition("@")
    blocked = {item.strip().lower() for item in blocked_domains if item.strip()}
    return bool(domain) and domain in blocked


__all__ = ["is_obviously_not_a_lead"]
