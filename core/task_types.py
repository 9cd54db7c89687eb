"""
Task Type Definitions for Provider Routing.

Gradeline sends two kinds of request to the generation service, and a
provider profile can route them differently: the full grading narrative
needs the strongest model available, while the short gap-fill follow-up
can go to a cheaper one.
"""

from enum import Enum


class TaskType(Enum):
    """Task categories for provider routing.

    Usage:
        from core.task_types import TaskType

        provider = router.route(TaskType.GRADING, profile="default")
    """

    # Full grading narrative for one exam
    # Characteristics: long output, streamed, quality-critical
    GRADING = "grading"

    # Follow-up request for questions the narrative skipped
    # Characteristics: short output, one block, scoped to a few labels
    GAP_FILL = "gap_fill"

    def __str__(self) -> str:
        return self.value

    @property
    def description(self) -> str:
        """Human-readable description of the task type."""
        descriptions = {
            TaskType.GRADING: "Full grading narrative for an exam",
            TaskType.GAP_FILL: "Follow-up grading for questions the narrative skipped",
        }
        return descriptions.get(self, "Unknown task type")

    @classmethod
    def from_string(cls, value: str) -> "TaskType":
        """Convert string to TaskType enum.

        Raises:
            ValueError: If value is not a valid task type
        """
        try:
            return cls(value.strip().lower())
        except ValueError:
            valid_types = [t.value for t in cls]
            raise ValueError(
                f"Invalid task type '{value}'. "
                f"Valid types: {', '.join(valid_types)}"
            )
