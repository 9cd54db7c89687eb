"""
Completeness reconciliation against the mark scheme summary.

Given de-duplicated items and the manifest parsed from the same narrative:

- items whose key matches no manifest entry are dropped as phantoms
  (logged only, never raised);
- manifest entries that no retained item matches exactly are reported as
  missing, so the gap-fill step can ask for them.

Matching uses keys_overlap() (equality or containment) for phantom
filtering and strict equality for missing detection.
"""

import logging
from typing import List

from core.dto.grading import ExpectedManifest, GradedItem, ManifestEntry, ReconciliationResult
from core.identifiers import keys_overlap, normalize_label

logger = logging.getLogger(__name__)


def find_missing(items: List[GradedItem], manifest: ExpectedManifest) -> List[ManifestEntry]:
    """Manifest entries with no item of exactly the same key, in manifest order."""
    item_keys = {normalize_label(item.label) for item in items}
    return [entry for entry in manifest.entries if normalize_label(entry.label) not in item_keys]


def reconcile(items: List[GradedItem], manifest: ExpectedManifest) -> ReconciliationResult:
    """Filter phantom items and detect missing manifest entries.

    Args:
        items: De-duplicated items in narrative order
        manifest: Expected questions parsed from the narrative

    Returns:
        ReconciliationResult with retained items (order preserved), missing
        entries and the dropped phantom items
    """
    entry_keys = [normalize_label(entry.label) for entry in manifest.entries]

    filtered: List[GradedItem] = []
    phantoms: List[GradedItem] = []
    for item in items:
        key = normalize_label(item.label)
        if any(keys_overlap(key, entry_key) for entry_key in entry_keys):
            filtered.append(item)
        else:
            phantoms.append(item)
            logger.warning(f"Dropping phantom item '{item.label}': not in mark scheme summary")

    missing = find_missing(filtered, manifest)
    if missing:
        labels = ", ".join(entry.label for entry in missing)
        logger.info(f"{len(missing)} expected question(s) not graded: {labels}")

    return ReconciliationResult(
        filtered_items=filtered,
        missing_entries=missing,
        phantom_items=phantoms,
    )
