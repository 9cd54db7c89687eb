"""Data Transfer Objects for gradeline business logic."""

from .grading import (
    CandidateItem,
    ExpectedManifest,
    GradedItem,
    GradingReport,
    GradingResult,
    LetterGrade,
    ManifestEntry,
    ReconciliationResult,
)

__all__ = [
    # Enums
    "LetterGrade",
    # Extraction
    "CandidateItem",
    "GradedItem",
    # Manifest and reconciliation
    "ManifestEntry",
    "ExpectedManifest",
    "ReconciliationResult",
    # Results
    "GradingResult",
    "GradingReport",
]
