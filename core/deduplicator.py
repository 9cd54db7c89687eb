"""
De-duplication of extracted grading items.

Generators sometimes report the same question twice (a summary table after
the detailed breakdown, or a restated answer). The first occurrence in
narrative order wins; later ones are dropped.
"""

import logging
from typing import Iterable, List, Set

from core.dto.grading import CandidateItem, GradedItem
from core.identifiers import normalize_label

logger = logging.getLogger(__name__)


def deduplicate_candidates(candidates: Iterable[CandidateItem]) -> List[CandidateItem]:
    """Keep the first candidate per normalized label, in narrative order."""
    ordered = sorted(candidates, key=lambda item: item.source_offset)
    seen: Set[str] = set()
    kept: List[CandidateItem] = []

    for item in ordered:
        key = normalize_label(item.label)
        if key in seen:
            logger.debug(f"Dropping duplicate report of '{item.label}' at offset {item.source_offset}")
            continue
        seen.add(key)
        kept.append(item)

    return kept


def deduplicate(candidates: Iterable[CandidateItem]) -> List[GradedItem]:
    """De-duplicate candidates and promote them to GradedItems."""
    return [item.to_graded() for item in deduplicate_candidates(candidates)]


def merge_items(existing: List[GradedItem], additions: Iterable[GradedItem]) -> List[GradedItem]:
    """Append additions whose normalized label is not already present.

    Merging the same additions twice returns the same list.
    """
    merged = list(existing)
    seen = {normalize_label(item.label) for item in merged}

    for item in additions:
        key = normalize_label(item.label)
        if key in seen:
            logger.debug(f"Skipping '{item.label}', already graded")
            continue
        seen.add(key)
        merged.append(item)

    return merged
