"""Classification of unknown senders and the triage status policy."""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass

from lead_intake.core.config import ClassifierSettings
from lead_intake.core.interfaces import ClassifierUnreachable
from lead_intake.core.models import Classification, ClassificationResult, PendingStatus

from .llm import LLMClient
from .prompts import build_classification_prompt

LOGGER = logging.getLogger(__name__)

_DISMISSIBLE = frozenset(
    {Classification.SPAM, Classification.PROMOTIONAL, Classification.TRANSACTIONAL}
)


@dataclass(frozen=True, slots=True)
class StatusPolicy:
    """Confidence thresholds mapping a verdict to a triage status."""

    lead_threshold: float = 0.6
    dismiss_threshold: float = 0.85

    @classmethod
    def from_settings(cls, settings: ClassifierSettings) -> StatusPolicy:
        """Build the policy from classifier settings."""
        return cls(
            lead_threshold=settings.lead_threshold,
            dismiss_threshold=settings.dismiss_threshold,
        )

    def status_for(self, result: ClassificationResult) -> PendingStatus:
        """Return the triage status implied by ``result``."""
        if (
            result.classification is Classification.LEAD
            and result.confidence >= self.lead_threshold
        ):
            return PendingStatus.LIKELY_LEAD
        if (
            result.classification in _DISMISSIBLE
            and result.confidence >= self.dismiss_threshold
        ):
            return PendingStatus.AUTO_DISMISSED
        return PendingStatus.NEEDS_REVIEW


class SenderClassifier:
    """Ask the model for a verdict; soft-fail to ``None`` on any problem."""

    def __init__(self, llm_client: LLMClient | None) -> None:
        self._llm_client = llm_client

    def classify(
        self, sender_email: str, sender_name: str, subject: str, body: str
    ) -> ClassificationResult | None:
        """Return the model verdict or ``None`` when unavailable or malformed."""
        if self._llm_client is None:
            LOGGER.debug("Classifier not configured; skipping %s", sender_email)
            return None
        prompt = build_classification_prompt(
            sender_email=sender_email,
            sender_name=sender_name,
            subject=subject,
            body=body,
        )
        try:
            raw_output = self._llm_client.generate(prompt)
        except ClassifierUnreachable as exc:
            LOGGER.warning("Classification unavailable for %s: %s", sender_email, exc)
            return None
        result = parse_classification(raw_output)
        if result is None:
            LOGGER.warning(
                "Discarding malformed classification for %s: %.200s",
                sender_email,
                raw_output,
            )
        return result


def parse_classification(raw_output: str) -> ClassificationResult | None:
    """Parse a JSON verdict, rejecting unknown labels or bad confidences."""
    try:
        payload = json.loads(_strip_code_fence(raw_output))
    except (TypeError, ValueError):
        return None
    if not isinstance(payload, dict):
        return None
    try:
        classification = Classification(str(payload.get("classification", "")).lower())
    except ValueError:
        return None
    confidence = payload.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, int | float):
        return None
    confidence = float(confidence)
    if math.isnan(confidence) or not 0.0 <= confidence <= 1.0:
        return None
    reason = payload.get("reason")
    return ClassificationResult(
        classification=classification,
        confidence=confidence,
        reason=str(reason).strip() if reason else "",
    )


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.strip("`")
        if stripped.lower().startswith("json"):
            stripped = stripped[4:]
    return stripped.strip()


__all__ = ["SenderClassifier", "StatusPolicy", "parse_classification"]
