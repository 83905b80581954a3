"""Sender resolution, triage records and their review."""

from .pending import PendingEmailWriter, TriageOutcome, TriageResult
from .resolver import (
    EntityResolver,
    FileOutcome,
    MatchedLead,
    MatchedProspect,
    NoMatch,
    PromotionResult,
)
from .review import LeadNotFound, PendingEmailNotFound, PendingReviewService

__all__ = [
    "EntityResolver",
    "FileOutcome",
    "LeadNotFound",
    "MatchedLead",
    "MatchedProspect",
    "NoMatch",
    "PendingEmailNotFound",
    "PendingEmailWriter",
    "PendingReviewService",
    "PromotionResult",
    "TriageOutcome",
    "TriageResult",
]
