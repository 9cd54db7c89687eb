"""
GradingService - Service Layer for Gradeline

Stateless entry point for one grading run: sends the mark scheme and the
student's exam to the generation service, collects the grading narrative
(streamed or in one block), turns it into a verified GradingReport and
optionally stores it.

Usage:
    service = GradingService(provider="anthropic")
    result = service.grade_exam(mark_scheme_text, student_exam_text)
    if result.success:
        report = result.data["report"]

Service methods return ServiceResult rather than raising, so the CLI (or a
web layer) only has to render success or error.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from config import Config
from core.dto.grading import GradingReport
from core.gap_fill import GapFillCoordinator, GradingContext
from core.grading_engine import GradingEngine
from core.manifest import MANIFEST_END, MANIFEST_START
from core.provider_router import ProviderRouter
from core.task_types import TaskType
from models.llm_manager import LLMError, LLMManager
from storage.result_store import ResultStore

logger = logging.getLogger(__name__)


GRADING_SYSTEM = (
    "You are an experienced examiner. You grade student exams strictly against "
    "the mark scheme you are given and explain every mark you award."
)

GRADING_PROMPT = """Grade the student's exam below against the mark scheme.

MARK SCHEME:
{mark_scheme}

STUDENT EXAM:
{student_exam}
{comments}
Grade every question and sub-question in the mark scheme, in order. For each one
write exactly one line in this format:
<question label> Mark: <awarded>/<possible> - <explanation>

For example:
1(a) Mark: 2/2 - Correct definition with a relevant example.

After the breakdown you may add overall feedback, strengths and areas to improve.

Finish with this block listing every question in the mark scheme with its
maximum marks, even the ones the student did not attempt:
{manifest_start}
Questions: <label>(<max marks>), <label>(<max marks>), ...
Total: <total marks available>
{manifest_end}
"""

# Phrases a model uses when it could not read the submitted material
REFUSAL_PHRASES = ("cannot read", "cannot see", "please share", "could you please provide")


@dataclass
class ServiceResult:
    """Generic result wrapper for service operations.

    Provides consistent response format across all service methods.
    """

    success: bool
    message: str = ""
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


def build_grading_prompt(context: GradingContext) -> str:
    comments = ""
    if context.additional_comments.strip():
        comments = f"\nADDITIONAL COMMENTS FROM THE TEACHER:\n{context.additional_comments.strip()}\n"
    return GRADING_PROMPT.format(
        mark_scheme=context.mark_scheme_text,
        student_exam=context.student_exam_text,
        comments=comments,
        manifest_start=MANIFEST_START,
        manifest_end=MANIFEST_END,
    )


def is_refusal(narrative: str) -> bool:
    """True when the narrative says the model could not read the exam material."""
    lowered = narrative.lower()
    return any(phrase in lowered for phrase in REFUSAL_PHRASES)


class GradingService:
    """
    Stateless service layer for grading runs.

    Example:
        service = GradingService(use_routing=True, provider_profile="budget")
        result = service.grade_exam(
            mark_scheme_text,
            student_exam_text,
            on_fragment=lambda text: print(text, end=""),
        )
    """

    def __init__(
        self,
        provider: Optional[str] = None,
        use_routing: bool = False,
        provider_profile: Optional[str] = None,
        gap_fill: Optional[bool] = None,
        store: Optional[ResultStore] = None,
        llm: Optional[Any] = None,
        gap_fill_llm: Optional[Any] = None,
    ):
        """Initialize service with LLM provider.

        Args:
            provider: LLM provider ("anthropic", "deepseek", "ollama").
                Defaults to Config.LLM_PROVIDER. Bypasses routing when given.
            use_routing: Route grading and gap-fill through provider profiles
            provider_profile: Profile name for routing; defaults to Config.PROVIDER_PROFILE
            gap_fill: Ask again for missing questions; defaults to Config.GAP_FILL_ENABLED
            store: ResultStore used when a run is saved
            llm: Client for the grading request (tests pass a mock here)
            gap_fill_llm: Client for the gap-fill request; defaults to llm
        """
        self.provider = provider or Config.LLM_PROVIDER
        self.use_routing = use_routing and provider is None
        self.provider_profile = provider_profile or Config.PROVIDER_PROFILE
        self.gap_fill = Config.GAP_FILL_ENABLED if gap_fill is None else gap_fill
        self._store = store

        self.router = None
        if self.use_routing:
            try:
                self.router = ProviderRouter()
            except (FileNotFoundError, ValueError) as e:
                logger.warning(f"[ROUTING] Failed to initialize ProviderRouter: {e}")
                logger.warning(f"[FALLBACK] Using direct provider: {self.provider}")
                self.use_routing = False

        self.llm = llm or self._get_llm_for_task(TaskType.GRADING)
        if gap_fill_llm is not None:
            self.gap_fill_llm = gap_fill_llm
        elif llm is not None:
            self.gap_fill_llm = llm
        else:
            self.gap_fill_llm = self._get_llm_for_task(TaskType.GAP_FILL)

    def _get_provider_for_task(self, task_type: TaskType) -> str:
        if self.use_routing and self.router:
            try:
                return self.router.route(task_type, self.provider_profile)
            except ValueError as e:
                logger.warning(f"[FALLBACK] Routing failed for {task_type.value}: {e}")
                return self.provider
        return self.provider

    def _get_llm_for_task(self, task_type: TaskType) -> LLMManager:
        return LLMManager(provider=self._get_provider_for_task(task_type))

    @property
    def store(self) -> ResultStore:
        if self._store is None:
            self._store = ResultStore()
        return self._store

    # =========================================================================
    # GRADING
    # =========================================================================

    def request_narrative(
        self,
        context: GradingContext,
        stream: bool = True,
        on_fragment: Optional[Callable[[str], None]] = None,
    ) -> str:
        """Ask the generation service for the grading narrative.

        Raises:
            LLMError: If the request fails
        """
        prompt = build_grading_prompt(context)
        options = dict(
            system=GRADING_SYSTEM,
            temperature=Config.GRADING_TEMPERATURE,
            max_tokens=Config.GRADING_MAX_TOKENS,
        )

        if stream and hasattr(self.llm, "generate_stream"):
            fragments: List[str] = []
            for fragment in self.llm.generate_stream(prompt, **options):
                fragments.append(fragment)
                if on_fragment is not None:
                    on_fragment(fragment)
            return "".join(fragments)

        response = self.llm.generate(prompt, **options)
        if isinstance(response, str):
            text = response
        elif not response.success:
            raise LLMError(response.error or "Generation failed")
        else:
            text = response.text
        if on_fragment is not None and text:
            on_fragment(text)
        return text

    def grade_narrative(
        self, narrative: str, context: Optional[GradingContext] = None
    ) -> GradingReport:
        """Run the engine over a narrative, with gap-fill when enabled and possible."""
        gap_filler = None
        if self.gap_fill and context is not None:
            gap_filler = GapFillCoordinator(self.gap_fill_llm)
        return GradingEngine(gap_filler=gap_filler).grade(narrative, context)

    def grade_exam(
        self,
        mark_scheme_text: str,
        student_exam_text: str,
        additional_comments: str = "",
        stream: bool = True,
        on_fragment: Optional[Callable[[str], None]] = None,
        save: bool = False,
        student_name: Optional[str] = None,
        mark_scheme_filename: Optional[str] = None,
        student_exam_filename: Optional[str] = None,
    ) -> ServiceResult:
        """Grade one student exam end to end.

        Args:
            mark_scheme_text: Mark scheme as text
            student_exam_text: Student's answers as text
            additional_comments: Optional teacher instructions for the grader
            stream: Stream the narrative (on_fragment is called per fragment)
            on_fragment: Progress callback receiving narrative text
            save: Persist the report through the ResultStore
            student_name: Stored with the report
            mark_scheme_filename: Stored with the report
            student_exam_filename: Stored with the report

        Returns:
            ServiceResult whose data holds "report" (GradingReport) and,
            when saved, "result_id"
        """
        if not mark_scheme_text.strip() or not student_exam_text.strip():
            return ServiceResult(
                success=False, error="Both the mark scheme and the student exam need text content"
            )

        context = GradingContext(
            mark_scheme_text=mark_scheme_text,
            student_exam_text=student_exam_text,
            additional_comments=additional_comments or "",
        )

        try:
            narrative = self.request_narrative(context, stream=stream, on_fragment=on_fragment)
        except Exception as e:
            logger.error(f"Grading request failed: {e}")
            return ServiceResult(success=False, error=f"Grading request failed: {e}")

        if not narrative.strip():
            return ServiceResult(success=False, error="The grading service returned no text")

        if is_refusal(narrative):
            logger.error("Grading narrative says the exam material could not be read")
            return ServiceResult(
                success=False,
                error=(
                    "The grader could not read the exam material. "
                    "Check that both files contain readable text and try again."
                ),
                data={"narrative": narrative},
            )

        report = self.grade_narrative(narrative, context)
        data: Dict[str, Any] = {"report": report}

        if save:
            try:
                data["result_id"] = self.store.save(
                    report,
                    student_name=student_name,
                    mark_scheme_filename=mark_scheme_filename,
                    student_exam_filename=student_exam_filename,
                    additional_comments=additional_comments,
                )
            except OSError as e:
                logger.error(f"Failed to save grading result: {e}")
                return ServiceResult(
                    success=False,
                    error=f"Graded, but saving the result failed: {e}",
                    data=data,
                )

        result = report.result
        return ServiceResult(
            success=True,
            message=(
                f"Graded {len(result.items)} questions: "
                f"{result.total_awarded:g}/{result.total_possible:g} ({result.grade.value})"
            ),
            data=data,
            metadata={
                "extraction_rule": report.extraction_rule,
                "gap_fill_attempted": report.gap_fill_attempted,
                "complete": report.is_complete,
            },
        )
