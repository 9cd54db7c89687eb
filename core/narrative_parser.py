"""
Grading narrative extraction for Gradeline.

Turns a free-form grading report into CandidateItems. Generators do not follow
one fixed layout, so extraction runs an ordered list of grammar rules and keeps
the result of the first rule that yields anything:

1. MarkLineGrammar - "<label> Mark: <awarded>/<possible> - <explanation>"
2. StructuredFieldGrammar - "QUESTION: ... MARKS_AWARDED: ... MARKS_POSSIBLE: ..."
3. LineScanGrammar - line-by-line scan tracking the current question header

Every rule yields items lazily over non-overlapping matches; calling
candidates() again restarts the scan from the beginning of the text.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence

from config import Config
from core.dto.grading import CandidateItem
from core.identifiers import is_section_reference

logger = logging.getLogger(__name__)

MAX_LABEL_LENGTH = 50

# Words that show a "label" is really a sentence from the instructions
INSTRUCTIONAL_WORDS = (
    "according",
    "scheme",
    "evaluate",
    "criteria",
    "rubric",
    "instruction",
    "marking",
    "following",
)

PLACEHOLDER_LABEL = "1"

_EMPHASIS = re.compile(r"\*{1,3}|_{2,3}|`+")
_WHITESPACE = re.compile(r"\s+")
_NUMBER = r"\d+(?:\.\d+)?"


def strip_markdown(text: str) -> str:
    """Remove markdown emphasis markers (bold, italic, inline code)."""
    return _EMPHASIS.sub("", text)


def clean_explanation(text: str, limit: Optional[int] = None) -> str:
    """Collapse whitespace and bound the length of an explanation."""
    limit = limit if limit is not None else Config.MAX_EXPLANATION_CHARS
    cleaned = _WHITESPACE.sub(" ", text).strip()
    cleaned = cleaned.strip("-–—=#|").strip()
    return cleaned[:limit]


def is_plausible_label(label: str) -> bool:
    """Reject label captures that are clearly not question identifiers."""
    if not label or len(label) > MAX_LABEL_LENGTH:
        return False
    lowered = label.lower()
    if any(word in lowered for word in INSTRUCTIONAL_WORDS):
        return False
    if not any(ch.isdigit() for ch in label) and not is_section_reference(label):
        return False
    return True


def placeholder_item(narrative: str, limit: Optional[int] = None) -> CandidateItem:
    """Single zero-mark item standing in for an unparseable narrative."""
    limit = limit if limit is not None else Config.PLACEHOLDER_CHARS
    text = narrative.strip()
    explanation = text[:limit] + ("..." if len(text) > limit else "")
    return CandidateItem(
        label=PLACEHOLDER_LABEL,
        awarded=0.0,
        possible=0.0,
        explanation=_WHITESPACE.sub(" ", explanation).strip(),
        source_offset=0,
    )


class CandidateStream:
    """Lazy, restartable view over the candidates a rule finds in a text."""

    def __init__(self, rule: "GrammarRule", text: str):
        self._rule = rule
        self._text = text

    def __iter__(self) -> Iterator[CandidateItem]:
        return self._rule._scan(self._text)


class GrammarRule:
    """One candidate grammar for grading narratives."""

    name = "base"

    def __init__(self, max_explanation_chars: Optional[int] = None):
        self.max_explanation_chars = max_explanation_chars

    def candidates(self, text: str) -> CandidateStream:
        return CandidateStream(self, text)

    def _scan(self, text: str) -> Iterator[CandidateItem]:
        raise NotImplementedError

    def _build(
        self, label: str, awarded: str, possible: str, explanation: str, offset: int
    ) -> Optional[CandidateItem]:
        label = _WHITESPACE.sub(" ", label).strip(" \t,:;-")
        if not is_plausible_label(label):
            logger.debug(f"[{self.name}] Rejected label {label!r} at offset {offset}")
            return None
        return CandidateItem(
            label=label,
            awarded=float(awarded),
            possible=float(possible),
            explanation=clean_explanation(explanation, self.max_explanation_chars),
            source_offset=offset,
        )


# ---------------------------------------------------------------------------
# Rule 1: "<label> Mark: a/b - explanation"
# ---------------------------------------------------------------------------

# Alphanumeric runs joined by "." or "-", then optional "(a)(ii)" groups.
_LABEL_BODY = r"[A-Za-z0-9]+(?:[.\-][A-Za-z0-9]+)*(?:[ \t]?\([A-Za-z0-9]{1,5}\))*"
# A section qualifier only joins a label on the same line.
_SECTION_CONTEXT = (
    r"(?:section|part|option)(?![a-z])[ \t]*[A-Za-z0-9]{1,3}\b"
    r"(?:[ \t:,\-–]*" + _LABEL_BODY + r")?"
)


def _mark_head(capture: bool) -> str:
    def group(name: str, pattern: str) -> str:
        return f"(?P<{name}>{pattern})" if capture else f"(?:{pattern})"

    return (
        r"(?<![\w.(])"
        r"(?:(?:question|q)\.?\s*)?"
        + group("label", f"{_SECTION_CONTEXT}|{_LABEL_BODY}")
        + r"[\s,:;|\-–—]*"
        r"marks?\b(?:\s+awarded)?\s*[:=\-–]?\s*"
        + group("awarded", _NUMBER)
        + r"\s*(?:/|out\s+of)\s*"
        + group("possible", _NUMBER)
    )


# The next item starts a line or follows a sentence end, so "1 mark 1/2"
# inside an explanation does not cut it short.
_MARK_END = (
    r"(?=(?:(?<=[.!?;\n])|[ \t]*\n)[\s\-*•|]*" + _mark_head(capture=False)
    + r"|\b(?-i:Total|Percentage|Grade)\b\s*[:\s]"
    r"|\b(?-i:Feedback|Strengths)\s*:"
    r"|\b(?-i:Areas)\b"
    r"|\[MARK\s+SCHEME\s+SUMMARY\]"
    r"|\Z)"
)

MARK_LINE_PATTERN = re.compile(
    _mark_head(capture=True)
    + r"(?:\s*marks?\b)?"
    + r"\s*[-–—:.,]?\s*"
    + r"(?P<explanation>.*?)"
    + _MARK_END,
    re.IGNORECASE | re.DOTALL,
)


class MarkLineGrammar(GrammarRule):
    """Primary grammar: the "<label> Mark: X/Y - explanation" convention."""

    name = "mark_line"

    def _scan(self, text: str) -> Iterator[CandidateItem]:
        for match in MARK_LINE_PATTERN.finditer(text):
            item = self._build(
                match.group("label"),
                match.group("awarded"),
                match.group("possible"),
                match.group("explanation"),
                match.start(),
            )
            if item is not None:
                yield item


# ---------------------------------------------------------------------------
# Rule 2: QUESTION: / MARKS_AWARDED: / MARKS_POSSIBLE: / EXPLANATION: blocks
# ---------------------------------------------------------------------------

STRUCTURED_PATTERN = re.compile(
    r"QUESTION:\s*(?P<label>[^\n]+?)\s*"
    r"MARKS_AWARDED:\s*(?P<awarded>" + _NUMBER + r")\s*"
    r"MARKS_POSSIBLE:\s*(?P<possible>" + _NUMBER + r")\s*"
    r"(?:EXPLANATION:\s*(?P<explanation>.*?))?"
    r"(?=QUESTION:|\[MARK\s+SCHEME\s+SUMMARY\]|\Z)",
    re.IGNORECASE | re.DOTALL,
)


class StructuredFieldGrammar(GrammarRule):
    """Upper-case field blocks, as produced when the model is asked for fields."""

    name = "structured_fields"

    def _scan(self, text: str) -> Iterator[CandidateItem]:
        for match in STRUCTURED_PATTERN.finditer(text):
            item = self._build(
                match.group("label"),
                match.group("awarded"),
                match.group("possible"),
                match.group("explanation") or "",
                match.start(),
            )
            if item is not None:
                yield item


# ---------------------------------------------------------------------------
# Rule 3: line scan with a "current question" accumulator
# ---------------------------------------------------------------------------

_HEADER_PATTERNS = [
    # "Question 3", "Q2(b):", "Part 4 -"
    re.compile(
        r"^\s*(?:#+\s*)?(?:question|q\.?|part)\s*[:\s]?\s*"
        r"(?P<label>\d+[a-z]?(?:\s?\([a-z0-9]{1,5}\))*)",
        re.IGNORECASE,
    ),
    # "1(a)(i) - Identify one reason", "2. Explain..."
    re.compile(
        r"^\s*(?:#+\s*)?(?P<label>\d+[a-z]?(?:\([a-z0-9]{1,5}\))*)\s*[.)\-–:]\s*\S",
        re.IGNORECASE,
    ),
]

_MARK_TOKEN_PATTERNS = [
    # "Mark: 2/3 - explanation" carries its own explanation
    re.compile(
        r"marks?\s*[:\-]?\s*(?P<awarded>" + _NUMBER + r")\s*/\s*(?P<possible>" + _NUMBER + r")"
        r"\s*[-–—:]?\s*(?P<explanation>.*)",
        re.IGNORECASE,
    ),
    re.compile(
        r"(?P<awarded>" + _NUMBER + r")\s*(?:/|out\s+of)\s*(?P<possible>" + _NUMBER + r")"
        r"\s*(?:marks?|points?|pts?)\b",
        re.IGNORECASE,
    ),
    re.compile(
        r"award(?:ed)?\s*[:\s]\s*(?P<awarded>" + _NUMBER + r")\s*(?:out\s+of|/|of)\s*"
        r"(?P<possible>" + _NUMBER + r")",
        re.IGNORECASE,
    ),
]

_CLOSING_LINE = re.compile(
    r"^\s*(?:#+\s*)?(?:(?:Total|Percentage|Grade|Overall|Feedback|Strengths|Areas)\b"
    r"|\[MARK\s+SCHEME\s+SUMMARY\])"
)
_SEPARATOR_LINE = re.compile(r"^[-=*#\s]+$")


@dataclass
class PendingItem:
    """Question being accumulated while scanning lines.

    Marks stay None until a mark token is seen; explanation text is kept
    line by line and joined when the item is emitted.
    """

    label: str
    source_offset: int
    awarded: Optional[float] = None
    possible: Optional[float] = None
    explanation_parts: List[str] = field(default_factory=list)

    @property
    def is_scored(self) -> bool:
        return self.possible is not None and self.possible > 0


class LineScanGrammar(GrammarRule):
    """Fallback for narratives that put headers and marks on separate lines."""

    name = "line_scan"

    def _scan(self, text: str) -> Iterator[CandidateItem]:
        pending: Optional[PendingItem] = None
        collecting = False
        offset = 0

        for line in text.splitlines(keepends=True):
            line_offset = offset
            offset += len(line)
            stripped = line.strip()

            header = self._match_header(stripped)
            if header is not None:
                item = self._emit(pending)
                if item is not None:
                    yield item
                pending = PendingItem(label=header, source_offset=line_offset)
                collecting = True
                self._apply_mark_token(pending, stripped)
                continue

            if pending is None:
                continue

            if _CLOSING_LINE.match(stripped):
                item = self._emit(pending)
                if item is not None:
                    yield item
                pending = None
                collecting = False
                continue

            if self._apply_mark_token(pending, stripped):
                continue

            if collecting and len(stripped) > 5 and not _SEPARATOR_LINE.match(stripped):
                pending.explanation_parts.append(stripped)

        item = self._emit(pending)
        if item is not None:
            yield item

    @staticmethod
    def _match_header(line: str) -> Optional[str]:
        for pattern in _HEADER_PATTERNS:
            match = pattern.match(line)
            if match:
                return match.group("label")
        return None

    @staticmethod
    def _apply_mark_token(pending: PendingItem, line: str) -> bool:
        """Attach the first mark token found on a line; later ones are ignored."""
        if pending.possible is not None:
            return False
        for pattern in _MARK_TOKEN_PATTERNS:
            match = pattern.search(line)
            if match:
                pending.awarded = float(match.group("awarded"))
                pending.possible = float(match.group("possible"))
                explanation = match.groupdict().get("explanation")
                if explanation:
                    pending.explanation_parts = [explanation]
                return True
        return False

    def _emit(self, pending: Optional[PendingItem]) -> Optional[CandidateItem]:
        if pending is None or not pending.is_scored:
            return None
        return self._build(
            pending.label,
            str(pending.awarded or 0),
            str(pending.possible),
            " ".join(pending.explanation_parts),
            pending.source_offset,
        )


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------


@dataclass
class ExtractionResult:
    """Candidates from one extraction pass and the rule that produced them."""

    items: List[CandidateItem]
    rule: Optional[str] = None

    @property
    def is_placeholder(self) -> bool:
        return self.rule == "placeholder"


def default_rules(max_explanation_chars: Optional[int] = None) -> List[GrammarRule]:
    return [
        MarkLineGrammar(max_explanation_chars),
        StructuredFieldGrammar(max_explanation_chars),
        LineScanGrammar(max_explanation_chars),
    ]


class NarrativeExtractor:
    """Applies grammar rules in order until one yields candidates.

    Usage:
        extractor = NarrativeExtractor()
        result = extractor.extract(narrative)
        for item in result.items:
            print(item.label, item.awarded, item.possible)
    """

    def __init__(self, rules: Optional[Sequence[GrammarRule]] = None):
        self.rules = list(rules) if rules is not None else default_rules()

    def extract(self, narrative: str) -> ExtractionResult:
        """Extract candidates; the result is empty when no rule matches."""
        text = strip_markdown(narrative)
        for rule in self.rules:
            items = list(rule.candidates(text))
            if items:
                logger.debug(f"Rule '{rule.name}' extracted {len(items)} candidates")
                return ExtractionResult(items=items, rule=rule.name)
            logger.debug(f"Rule '{rule.name}' found nothing, trying next rule")
        return ExtractionResult(items=[], rule=None)

    def extract_with_fallback(self, narrative: str) -> ExtractionResult:
        """Extract candidates, substituting a placeholder item when none are found."""
        result = self.extract(narrative)
        if result.items:
            return result
        logger.warning("No graded items found in narrative, using placeholder item")
        return ExtractionResult(items=[placeholder_item(narrative)], rule="placeholder")


def extract_candidates(narrative: str) -> List[CandidateItem]:
    """Convenience wrapper: candidates from the default rule chain."""
    return NarrativeExtractor().extract(narrative).items
