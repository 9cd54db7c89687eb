"""
Question label normalization.

Grading narratives refer to the same question in many ways ("Question 2",
"Q2", "q.2", "2"). normalize_label() maps those to one comparison key while
keeping section/part/option context, so Section A "2a" and Section C "2a"
stay distinct. Keys are for equality checks only and are never displayed.
"""

import re

_QUESTION_PREFIX = re.compile(r"^question\s*")
# "q." / "q 2" / "q2" but not words that merely start with q
_Q_PREFIX = re.compile(r"^q(?:\.\s*|\s+|(?=\d))")
_WHITESPACE = re.compile(r"\s+")
# "Part B", "section2" but not "partial"
_SECTION_PREFIX = re.compile(r"^(?:section|part|option)(?![a-z])")


def normalize_label(label: str) -> str:
    """Canonicalize a raw question label into a comparison key.

    Examples:
        >>> normalize_label("Question 2")
        '2'
        >>> normalize_label("Q. 1(a)")
        '1(a)'
        >>> normalize_label("Section A 1(a)")
        'sectiona1(a)'
    """
    key = label.strip().lower()
    key = _QUESTION_PREFIX.sub("", key)
    key = _Q_PREFIX.sub("", key)
    return _WHITESPACE.sub("", key)


def is_section_reference(label: str) -> bool:
    """Check whether a label starts with a section/part/option keyword."""
    return bool(_SECTION_PREFIX.match(label.strip().lower()))


def keys_overlap(key_a: str, key_b: str) -> bool:
    """Equality-or-containment match between two normalized keys.

    Lets "sectiona1a" match "1a" when one side carries section context and the
    other does not. Short numeric keys can collide ("1" is inside "11"); see
    DESIGN.md before tightening this.
    """
    if not key_a or not key_b:
        return False
    return key_a == key_b or key_a in key_b or key_b in key_a
