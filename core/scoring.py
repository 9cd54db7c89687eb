"""Score aggregation and letter grades."""

from typing import List, Optional, Sequence, Tuple

from config import Config
from core.dto.grading import GradedItem, GradingResult, LetterGrade


def letter_grade(
    percentage: float, thresholds: Optional[Sequence[Tuple[str, float]]] = None
) -> LetterGrade:
    """Map a percentage to a letter grade. Thresholds are inclusive lower bounds.

    Examples:
        >>> letter_grade(90.0).value
        'A'
        >>> letter_grade(89.99).value
        'B'
    """
    for grade, minimum in thresholds or Config.GRADE_THRESHOLDS:
        if percentage >= minimum:
            return LetterGrade(grade)
    return LetterGrade.F


def aggregate(items: List[GradedItem]) -> GradingResult:
    """Recompute totals and grade from the final item list.

    Totals the narrative states for itself are never consulted.
    """
    total_awarded = sum(item.awarded for item in items)
    total_possible = sum(item.possible for item in items)
    percentage = total_awarded * 100 / total_possible if total_possible > 0 else 0.0

    return GradingResult(
        items=list(items),
        total_awarded=total_awarded,
        total_possible=total_possible,
        grade=letter_grade(percentage),
    )
