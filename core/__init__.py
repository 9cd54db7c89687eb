"""
Gradeline Core - grading narrative extraction and reconciliation.

Main components:
- NarrativeExtractor: Ordered grammar rules turning a narrative into candidate items
- GradingEngine: Extract, de-duplicate, reconcile, gap-fill and aggregate
- GapFillCoordinator: Follow-up request for questions the narrative skipped
"""

from core.gap_fill import GapFillCoordinator, GradingContext
from core.grading_engine import GradingEngine
from core.identifiers import normalize_label
from core.manifest import read_manifest
from core.narrative_parser import NarrativeExtractor
from core.reconciler import reconcile
from core.scoring import aggregate, letter_grade

__all__ = [
    "NarrativeExtractor",
    "GradingEngine",
    "GapFillCoordinator",
    "GradingContext",
    "normalize_label",
    "read_manifest",
    "reconcile",
    "aggregate",
    "letter_grade",
]
