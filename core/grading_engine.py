"""
GradingEngine - narrative to verified score breakdown.

Runs one grading narrative through the pipeline:

    extract -> de-duplicate -> read manifest -> reconcile -> gap-fill -> aggregate

The engine is stateless and synchronous. It never raises for problems with
the shape of the narrative; every such case degrades to a usable result.
"""

import logging
from typing import Iterable, List, Optional

from core.deduplicator import deduplicate
from core.dto.grading import GradedItem, GradingReport, ManifestEntry
from core.gap_fill import GapFillCoordinator, GradingContext
from core.manifest import read_manifest
from core.narrative_parser import NarrativeExtractor, placeholder_item
from core.reconciler import find_missing, reconcile
from core.scoring import aggregate

logger = logging.getLogger(__name__)

GAP_FILL_SEPARATOR = "\n\n--- Additional grading for missed questions ---\n\n"


class GradingEngine:
    """Extraction and reconciliation engine for grading narratives.

    Usage:
        engine = GradingEngine(gap_filler=GapFillCoordinator(llm))
        report = engine.grade(narrative, context)
        print(report.result.total_awarded, report.result.grade.value)

    Without a gap_filler (or without a context) missing questions are
    reported on the GradingReport but not requested again.
    """

    def __init__(
        self,
        gap_filler: Optional[GapFillCoordinator] = None,
        extractor: Optional[NarrativeExtractor] = None,
    ):
        self._gap_filler = gap_filler
        self._extractor = extractor or NarrativeExtractor()

    def grade(self, narrative: str, context: Optional[GradingContext] = None) -> GradingReport:
        """Grade one fully assembled narrative.

        Args:
            narrative: Complete narrative from the generation service
            context: Original grading inputs; required for gap-fill

        Returns:
            GradingReport whose result holds at least one item
        """
        extraction = self._extractor.extract(narrative)
        items = deduplicate(extraction.items)
        rule = extraction.rule
        logger.debug(f"Extracted {len(items)} unique items with rule {rule}")

        manifest = read_manifest(narrative)
        missing: List[ManifestEntry] = []
        phantom_labels: List[str] = []
        attempted = False
        recovered: List[str] = []
        full_narrative = narrative

        if manifest is not None:
            reconciliation = reconcile(items, manifest)
            items = reconciliation.filtered_items
            missing = reconciliation.missing_entries
            phantom_labels = [item.label for item in reconciliation.phantom_items]

            if missing and self._gap_filler is not None and context is not None:
                attempted = True
                outcome = self._gap_filler.fill(items, missing, context)
                items = outcome.items
                recovered = outcome.recovered
                if outcome.addendum:
                    full_narrative = narrative + GAP_FILL_SEPARATOR + outcome.addendum
                missing = find_missing(items, manifest)

        if not items:
            items = self._placeholder(narrative)
            rule = "placeholder"

        result = aggregate(items)
        logger.info(
            f"Graded {len(result.items)} items: {result.total_awarded:g}/{result.total_possible:g} "
            f"({result.percentage:.1f}%, {result.grade.value})"
        )

        return GradingReport(
            result=result,
            narrative=full_narrative,
            manifest=manifest,
            missing_entries=missing,
            phantom_labels=phantom_labels,
            extraction_rule=rule,
            gap_fill_attempted=attempted,
            gap_fill_recovered=recovered,
        )

    def grade_fragments(
        self, fragments: Iterable[str], context: Optional[GradingContext] = None
    ) -> GradingReport:
        """Assemble streamed fragments in order, then grade the whole narrative."""
        return self.grade("".join(fragments), context)

    @staticmethod
    def _placeholder(narrative: str) -> List[GradedItem]:
        logger.warning("No graded items found in narrative, using placeholder item")
        return [placeholder_item(narrative).to_graded()]
