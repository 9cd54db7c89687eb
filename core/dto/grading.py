"""Grading-related Data Transfer Objects.

These DTOs carry a grading narrative through extraction, reconciliation and
aggregation, and are what the result store and CLI consume. They hold no
behaviour beyond small derived properties and dict conversion.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class LetterGrade(Enum):
    """Letter grade derived from the recomputed percentage."""

    A = "A"
    B = "B"
    C = "C"
    D = "D"
    F = "F"


@dataclass(frozen=True)
class CandidateItem:
    """Tentative graded item produced by one extraction pass.

    Attributes:
        label: Question label as written in the narrative (e.g. "1(a)", "Section B 3")
        awarded: Marks awarded
        possible: Marks available
        explanation: Whitespace-collapsed, length-bounded explanation
        source_offset: Position in the narrative, used only for ordering
    """

    label: str
    awarded: float
    possible: float
    explanation: str
    source_offset: int

    def to_graded(self) -> "GradedItem":
        return GradedItem(
            label=self.label,
            awarded=self.awarded,
            possible=self.possible,
            explanation=self.explanation,
        )


@dataclass(frozen=True)
class GradedItem:
    """Public, de-duplicated form of a CandidateItem."""

    label: str
    awarded: float
    possible: float
    explanation: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "awarded": self.awarded,
            "possible": self.possible,
            "explanation": self.explanation,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GradedItem":
        return cls(
            label=str(data["label"]),
            awarded=float(data.get("awarded", 0)),
            possible=float(data.get("possible", 0)),
            explanation=data.get("explanation", ""),
        )


@dataclass(frozen=True)
class ManifestEntry:
    """One expected question from the mark scheme summary block."""

    label: str
    max_marks: float

    def render(self) -> str:
        """Render as the label(maxMarks) token used in prompts."""
        return f"{self.label}({_format_number(self.max_marks)})"


@dataclass(frozen=True)
class ExpectedManifest:
    """Full expected set of questions parsed from the narrative trailer.

    Attributes:
        entries: Expected questions in the order listed
        declared_total: Total stated in the block, or the sum of entries
            when the block states none
    """

    entries: List[ManifestEntry]
    declared_total: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entries": [
                {"label": e.label, "max_marks": e.max_marks} for e in self.entries
            ],
            "declared_total": self.declared_total,
        }


@dataclass
class ReconciliationResult:
    """Outcome of checking extracted items against a manifest.

    Attributes:
        filtered_items: Items that match some manifest entry
        missing_entries: Manifest entries no retained item matches exactly
        phantom_items: Items dropped because nothing in the manifest matches
    """

    filtered_items: List[GradedItem]
    missing_entries: List[ManifestEntry]
    phantom_items: List[GradedItem] = field(default_factory=list)


@dataclass(frozen=True)
class GradingResult:
    """Verified score breakdown for one grading request."""

    items: List[GradedItem]
    total_awarded: float
    total_possible: float
    grade: LetterGrade

    @property
    def percentage(self) -> float:
        if self.total_possible <= 0:
            return 0.0
        return self.total_awarded * 100 / self.total_possible

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "total_awarded": self.total_awarded,
            "total_possible": self.total_possible,
            "percentage": round(self.percentage, 2),
            "grade": self.grade.value,
        }


@dataclass
class GradingReport:
    """GradingResult plus everything kept for audit and display.

    Attributes:
        result: The verified score breakdown
        narrative: Full narrative, including any gap-fill addendum
        manifest: Parsed manifest, or None when the narrative had none
        missing_entries: Manifest entries still missing after gap-fill
        phantom_labels: Labels dropped because no manifest entry matched
        extraction_rule: Name of the grammar rule that produced the items
        gap_fill_attempted: Whether a follow-up request was issued
        gap_fill_recovered: Labels added by the follow-up request
    """

    result: GradingResult
    narrative: str
    manifest: Optional[ExpectedManifest] = None
    missing_entries: List[ManifestEntry] = field(default_factory=list)
    phantom_labels: List[str] = field(default_factory=list)
    extraction_rule: Optional[str] = None
    gap_fill_attempted: bool = False
    gap_fill_recovered: List[str] = field(default_factory=list)

    @property
    def percentage(self) -> float:
        return self.result.percentage

    @property
    def is_complete(self) -> bool:
        """True when no manifest entry is left unaccounted for."""
        return not self.missing_entries

    def to_dict(self) -> Dict[str, Any]:
        return {
            "result": self.result.to_dict(),
            "narrative": self.narrative,
            "manifest": self.manifest.to_dict() if self.manifest else None,
            "missing_entries": [e.render() for e in self.missing_entries],
            "phantom_labels": list(self.phantom_labels),
            "extraction_rule": self.extraction_rule,
            "gap_fill_attempted": self.gap_fill_attempted,
            "gap_fill_recovered": list(self.gap_fill_recovered),
        }


def _format_number(value: float) -> str:
    """Format marks without a trailing .0 for whole numbers."""
    if float(value).is_integer():
        return str(int(value))
    return str(value)
