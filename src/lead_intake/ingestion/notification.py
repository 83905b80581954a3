"""Decoding of Pub/Sub push envelopes carrying Gmail change notifications."""

from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Mapping
from typing import Any

from ..core.interfaces import MalformedNotification
from ..core.models import MailboxNotification


def decode_notification(envelope: Any) -> MailboxNotification:
    """Return the mailbox notification inside a push ``envelope``.

    Raises :class:`MalformedNotification` when ``message.data`` is missing,
    not base64 JSON, or lacks ``emailAddress``/``historyId``.
    """
    if not isinstance(envelope, Mapping):
        raise MalformedNotification("Push body is not a JSON object")
    message = envelope.get("message")
    if not isinstance(message, Mapping):
        raise MalformedNotification("Push body has no message")
    data = message.get("data")
    if not isinstance(data, str) or not data:
        raise MalformedNotification("Push message has no data")

    try:
        decoded = base64.b64decode(data + "=" * (-len(data) % 4), altchars=b"-_")
        payload = json.loads(decoded.decode("utf-8"))
    except (binascii.Error, ValueError) as exc:
        raise MalformedNotification("Push data is not base64 encoded JSON") from exc

    if not isinstance(payload, Mapping):
        raise MalformedNotification("Push data is not a JSON object")
    email_address = payload.get("emailAddress")
    history_id = payload.get("historyId")
    if not isinstance(email_address, str) or not email_address.strip():
        raise MalformedNotification("Notification is missing emailAddress")
    if history_id is None or str(history_id).strip() == "":
        raise MalformedNotification("Notification is missing historyId")

    delivery_id = message.get("messageId") or message.get("message_id")
    publish_time = message.get("publishTime") or message.get("publish_time")
    return MailboxNotification(
        email_address=email_address.strip().lower(),
        history_id=str(history_id).strip(),
        delivery_id=str(delivery_id) if delivery_id else None,
        publish_time=str(publish_time) if publish_time else None,
    )


__all__ = ["decode_notification"]
