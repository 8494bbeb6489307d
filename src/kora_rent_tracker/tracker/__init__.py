"""Tracker - Sponsorship classification, ingestion and status refresh."""

from kora_rent_tracker.tracker.classifier import SponsorshipClassifier
from kora_rent_tracker.tracker.ingest import SponsorshipIngestor
from kora_rent_tracker.tracker.models import (
    AccountKind,
    AccountStatus,
    Confidence,
    HistoryGap,
    IngestResult,
    RefreshResult,
    TrackedAccount,
)
from kora_rent_tracker.tracker.refresher import StatusRefresher, derive_status

__all__ = [
    "AccountKind",
    "AccountStatus",
    "Confidence",
    "HistoryGap",
    "IngestResult",
    "RefreshResult",
    "SponsorshipClassifier",
    "SponsorshipIngestor",
    "StatusRefresher",
    "TrackedAccount",
    "derive_status",
]
