"""
Gap-fill for questions the grading narrative skipped.

When reconciliation reports missing manifest entries, GapFillCoordinator
issues one follow-up request scoped to exactly those entries, extracts items
from the reply and merges the ones that answer a missing entry. A failed
follow-up never fails the grading: the pre-gap-fill items are kept.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol

from config import Config
from core.deduplicator import deduplicate, merge_items
from core.dto.grading import GradedItem, ManifestEntry
from core.identifiers import is_section_reference, keys_overlap, normalize_label
from core.manifest import render_entries
from core.narrative_parser import NarrativeExtractor

logger = logging.getLogger(__name__)


GAP_FILL_SYSTEM = (
    "You are an experienced examiner completing a grading report. "
    "Grade only the questions you are asked about."
)

GAP_FILL_PROMPT = """The grading report below skipped some questions. Grade ONLY these questions,
using the mark scheme and the student's answers:

{missing}

MARK SCHEME:
{mark_scheme}

STUDENT EXAM:
{student_exam}
{comments}
For each question write exactly one line in this format:
<question label> Mark: <awarded>/<possible> - <short explanation>

Use the question labels exactly as listed above. Do not grade any other question
and do not add a summary or total.
"""


class LLMInterface(Protocol):
    """Protocol for the text-generation client.

    LLMManager satisfies it, as does any object whose generate() returns
    plain text or an object with .text and .success.
    """

    def generate(
        self,
        prompt: str,
        model: Optional[str] = None,
        system: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
    ) -> Any:
        ...


class GapFillError(Exception):
    """Follow-up request returned an unusable response."""


@dataclass(frozen=True)
class GradingContext:
    """Original grading inputs, needed to re-ask about specific questions."""

    mark_scheme_text: str
    student_exam_text: str
    additional_comments: str = ""


@dataclass
class GapFillOutcome:
    """Result of one gap-fill attempt.

    Attributes:
        items: Items after the merge (unchanged on failure)
        addendum: Raw follow-up narrative, empty on failure
        recovered: Labels added by the merge
        error: Failure message when the follow-up could not be used
    """

    items: List[GradedItem]
    addendum: str = ""
    recovered: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


def response_text(response: Any) -> str:
    """Text of a generate() result, raising GapFillError for failed responses."""
    if isinstance(response, str):
        return response
    if not getattr(response, "success", True):
        raise GapFillError(getattr(response, "error", None) or "generation failed")
    return getattr(response, "text", "") or ""


def build_gap_fill_prompt(missing: List[ManifestEntry], context: GradingContext) -> str:
    comments = ""
    if context.additional_comments.strip():
        comments = f"\nADDITIONAL COMMENTS FROM THE TEACHER:\n{context.additional_comments.strip()}\n"
    return GAP_FILL_PROMPT.format(
        missing=render_entries(missing),
        mark_scheme=context.mark_scheme_text,
        student_exam=context.student_exam_text,
        comments=comments,
    )


class GapFillCoordinator:
    """Re-asks the generation service about missing questions.

    Usage:
        coordinator = GapFillCoordinator(llm_manager)
        outcome = coordinator.fill(items, missing_entries, context)
        items = outcome.items
    """

    def __init__(
        self,
        llm: LLMInterface,
        extractor: Optional[NarrativeExtractor] = None,
        model: Optional[str] = None,
    ):
        self._llm = llm
        self._extractor = extractor or NarrativeExtractor()
        self._model = model

    def fill(
        self,
        items: List[GradedItem],
        missing: List[ManifestEntry],
        context: GradingContext,
    ) -> GapFillOutcome:
        """Ask for the missing entries and merge what comes back.

        Args:
            items: Reconciled items
            missing: Manifest entries with no matching item (may be empty)
            context: Original grading inputs

        Returns:
            GapFillOutcome; on any failure its items are the input items
        """
        if not missing:
            return GapFillOutcome(items=list(items))

        prompt = build_gap_fill_prompt(missing, context)
        logger.info(f"Requesting gap-fill for {render_entries(missing)}")

        try:
            response = self._llm.generate(
                prompt,
                model=self._model,
                system=GAP_FILL_SYSTEM,
                temperature=Config.GRADING_TEMPERATURE,
                max_tokens=Config.GAP_FILL_MAX_TOKENS,
            )
            addendum = response_text(response)
        except Exception as e:
            logger.warning(f"Gap-fill request failed, keeping current result: {e}")
            return GapFillOutcome(items=list(items), error=str(e))

        additions = [
            item for item in self.select_additions(addendum, missing)
            if not graded_under_section(item, items)
        ]
        merged = merge_items(items, additions)
        recovered = [item.label for item in merged[len(items):]]

        still_missing = len(missing) - len(recovered)
        if still_missing:
            logger.info(f"Gap-fill recovered {len(recovered)}, {still_missing} still missing")
        else:
            logger.info(f"Gap-fill recovered all {len(recovered)} missing question(s)")

        return GapFillOutcome(items=merged, addendum=addendum, recovered=recovered)

    def select_additions(self, addendum: str, missing: List[ManifestEntry]) -> List[GradedItem]:
        """Items from the follow-up narrative that answer a missing entry."""
        extracted = deduplicate(self._extractor.extract(addendum).items)
        missing_keys = [normalize_label(entry.label) for entry in missing]

        additions = []
        for item in extracted:
            key = normalize_label(item.label)
            if any(keys_overlap(key, missing_key) for missing_key in missing_keys):
                additions.append(item)
            else:
                logger.debug(f"Ignoring gap-fill item '{item.label}', not requested")
        return additions


def graded_under_section(item: GradedItem, existing: List[GradedItem]) -> bool:
    """Check whether a section-qualified item already grades this label.

    "Section A 1a" is kept against a bare "1a" manifest entry but still
    leaves "1a" missing, so a gap-fill reply for "1a" would count it twice.
    """
    key = normalize_label(item.label)
    for other in existing:
        other_key = normalize_label(other.label)
        if other_key != key and is_section_reference(other.label) and other_key.endswith(key):
            logger.debug(f"Ignoring gap-fill item '{item.label}', graded as '{other.label}'")
            return True
    return False
