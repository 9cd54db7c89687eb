"""
Result storage for Gradeline.
Keeps one JSON document per grading run under Config.RESULTS_PATH.
"""

import json
import logging
import re
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from config import Config
from core.dto.grading import GradingReport

logger = logging.getLogger(__name__)

_RESULT_ID = re.compile(r"^[A-Za-z0-9_-]+$")


class ResultStore:
    """Stores grading reports as JSON documents.

    Each document carries the request metadata (student, file names, teacher
    comments), the verified totals and grade, the per-question breakdown and
    the full narrative.
    """

    def __init__(self, base_path: Optional[Path] = None):
        self.base_path = Path(base_path or Config.RESULTS_PATH)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _path(self, result_id: str) -> Path:
        if not _RESULT_ID.match(result_id):
            raise KeyError(f"Invalid result id: {result_id!r}")
        return self.base_path / f"{result_id}.json"

    @staticmethod
    def _new_id() -> str:
        return f"{datetime.now():%Y%m%d-%H%M%S}-{uuid.uuid4().hex[:8]}"

    def save(
        self,
        report: GradingReport,
        student_name: Optional[str] = None,
        mark_scheme_filename: Optional[str] = None,
        student_exam_filename: Optional[str] = None,
        additional_comments: str = "",
    ) -> str:
        """Persist a report and return its id."""
        result_id = self._new_id()
        result = report.result
        document = {
            "id": result_id,
            "created_at": datetime.now().isoformat(timespec="seconds"),
            "student_name": student_name,
            "mark_scheme_filename": mark_scheme_filename,
            "student_exam_filename": student_exam_filename,
            "additional_comments": additional_comments,
            "total_marks": result.total_awarded,
            "total_possible_marks": result.total_possible,
            "percentage": round(result.percentage, 2),
            "grade": result.grade.value,
            "grade_breakdown": [item.to_dict() for item in result.items],
            "content": report.narrative,
            "report": report.to_dict(),
        }

        path = self._path(result_id)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, ensure_ascii=False)
        tmp_path.replace(path)

        logger.info(f"Saved grading result {result_id} to {path}")
        return result_id

    def load(self, result_id: str) -> Dict[str, Any]:
        """Load a stored document.

        Raises:
            KeyError: If no result with this id exists
        """
        path = self._path(result_id)
        if not path.exists():
            raise KeyError(f"Result not found: {result_id}")
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def list_results(self) -> List[Dict[str, Any]]:
        """Summaries of all stored results, newest first.

        Unreadable documents are logged and skipped.
        """
        summaries = []
        for path in self.base_path.glob("*.json"):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    document = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping unreadable result file {path.name}: {e}")
                continue

            summaries.append(
                {
                    "id": document.get("id", path.stem),
                    "created_at": document.get("created_at", ""),
                    "student_name": document.get("student_name"),
                    "total_marks": document.get("total_marks"),
                    "total_possible_marks": document.get("total_possible_marks"),
                    "percentage": document.get("percentage"),
                    "grade": document.get("grade"),
                }
            )

        summaries.sort(key=lambda summary: (summary["created_at"], summary["id"]), reverse=True)
        return summaries

    def delete(self, result_id: str):
        """Delete a stored result.

        Raises:
            KeyError: If no result with this id exists
        """
        path = self._path(result_id)
        if not path.exists():
            raise KeyError(f"Result not found: {result_id}")
        path.unlink()
        logger.info(f"Deleted grading result {result_id}")
