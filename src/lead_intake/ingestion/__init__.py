"""Ingestion pipeline components."""

from .history import HistoryFetcher
from .normalizer import MessageNormalizer
from .notification import decode_notification
from .pipeline import InboundPipeline, build_pipeline
from .watch import RenewalReport, WatchManager

__all__ = [
    "HistoryFetcher",
    "InboundPipeline",
    "MessageNormalizer",
    "RenewalReport",
    "WatchManager",
    "build_pipeline",
    "decode_notification",
]
