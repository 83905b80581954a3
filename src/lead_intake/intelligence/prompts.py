"""Prompt templates for sender classification."""

from __future__ import annotations

from textwrap import dedent

BODY_PREFIX_CHARS = 500

_INSTRUCTIONS = dedent(
    """
    Classify as ONE of:
    - "lead": A real person expressing interest, asking questions, requesting info, or responding to outreach
    - "spam": Unsolicited sales pitch, phishing, or scam
    - "promotional": Newsletter, marketing email, or automated notification
    - "transactional": Receipt, shipping notification, password reset, service alert
    - "unknown": Cannot determine with confidence

    Respond in JSON only: {"classification": "...", "confidence": 0.0-1.0, "reason": "one sentence"}
    """
).strip()


def build_classification_prompt(
    *, sender_email: str, sender_name: str, subject: str, body: str
) -> str:
    """Compose a JSON-only classification prompt for an unknown sender."""
    name = sender_name or sender_email
    lines = [
        "You are an email classifier for a B2B lead management CRM.",
        "Classify this inbound email from an unknown sender.",
        "",
        f"Sender: {name} <{sender_email}>",
        f"Subject: {subject}",
        f"Body (first {BODY_PREFIX_CHARS} chars): {body[:BODY_PREFIX_CHARS]}",
        "",
        _INSTRUCTIONS,
    ]
    return "\n".join(lines)


__all__ = ["BODY_PREFIX_CHARS", "build_classification_prompt"]
