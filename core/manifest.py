"""
Mark scheme summary (manifest) parsing.

The grading prompt asks the generator to close its narrative with a block
listing every question it should have graded:

    [MARK SCHEME SUMMARY]
    Questions: 1(a)(2), 1(b)(3), 2(5)
    Total: 10
    [END SUMMARY]

A missing or empty block is not an error: read_manifest() returns None and
reconciliation is skipped.
"""

import logging
import re
from typing import List, Optional, Set

from core.dto.grading import ExpectedManifest, ManifestEntry
from core.identifiers import normalize_label
from core.narrative_parser import strip_markdown

logger = logging.getLogger(__name__)

MANIFEST_START = "[MARK SCHEME SUMMARY]"
MANIFEST_END = "[END SUMMARY]"

_BLOCK_PATTERN = re.compile(
    r"\[\s*MARK\s+SCHEME\s+SUMMARY\s*\](?P<body>.*?)(?:\[\s*END\s+SUMMARY\s*\]|\Z)",
    re.IGNORECASE | re.DOTALL,
)

# label(maxMarks); the lookahead lets labels carry their own "(a)(ii)" groups
_ENTRY_PATTERN = re.compile(
    r"(?P<label>[A-Za-z0-9][A-Za-z0-9 ().\-]*?)\s*"
    r"\(\s*(?P<marks>-?\d+(?:\.\d+)?)\s*(?:marks?)?\s*\)"
    r"(?=\s*(?:[,;\n]|$))",
    re.IGNORECASE | re.MULTILINE,
)

_TOTAL_PATTERN = re.compile(
    r"^\s*(?:-\s*)?total(?:\s+marks)?\s*[:=]\s*(?P<total>\d+(?:\.\d+)?)",
    re.IGNORECASE | re.MULTILINE,
)

GENERIC_LABELS = {"total", "total marks", "grand total", "summary", "overall", "questions"}


def _is_generic(label: str) -> bool:
    return label.strip().rstrip(":").lower() in GENERIC_LABELS


def find_manifest_block(narrative: str) -> Optional[str]:
    """Return the text between the summary markers, or None.

    An unterminated block (e.g. a truncated stream) runs to the end of the text.
    """
    match = _BLOCK_PATTERN.search(strip_markdown(narrative))
    if not match:
        return None
    return match.group("body")


def parse_manifest_entries(block: str) -> List[ManifestEntry]:
    """Parse label(maxMarks) tokens, keeping the first entry per label."""
    entries: List[ManifestEntry] = []
    seen: Set[str] = set()

    for match in _ENTRY_PATTERN.finditer(block):
        label = match.group("label").strip()
        max_marks = float(match.group("marks"))

        if _is_generic(label):
            logger.debug(f"Skipping generic manifest entry '{label}'")
            continue
        if max_marks <= 0:
            logger.debug(f"Skipping manifest entry '{label}' with non-positive marks")
            continue

        key = normalize_label(label)
        if key in seen:
            continue
        seen.add(key)
        entries.append(ManifestEntry(label=label, max_marks=max_marks))

    return entries


def read_manifest(narrative: str) -> Optional[ExpectedManifest]:
    """Parse the expected-question manifest embedded in a narrative.

    Returns:
        ExpectedManifest, or None when there is no block or it lists no
        usable entries. declared_total falls back to the sum of entries when
        the block states no total.
    """
    block = find_manifest_block(narrative)
    if block is None:
        logger.debug("No mark scheme summary block in narrative")
        return None

    # Keep "Total: N" lines out of the entry scan
    entries = parse_manifest_entries(_TOTAL_PATTERN.sub("", block))
    if not entries:
        logger.info("Mark scheme summary block has no usable entries, skipping reconciliation")
        return None

    total_match = _TOTAL_PATTERN.search(block)
    if total_match:
        declared_total = float(total_match.group("total"))
    else:
        declared_total = sum(entry.max_marks for entry in entries)

    logger.debug(f"Manifest lists {len(entries)} questions, declared total {declared_total}")
    return ExpectedManifest(entries=entries, declared_total=declared_total)


def render_entries(entries: List[ManifestEntry]) -> str:
    """Render entries as a comma-separated label(maxMarks) list."""
    return ", ".join(entry.render() for entry in entries)
