"""
Report orchestrator for XRay Report Assistant.

Sequences the two user actions, Analyze and SubmitFeedback, on top of the
image ingestor, prompt compiler, session engine and knowledge store, and
owns the user-facing status, report and session state.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, List, Optional

from app.core.exceptions import (
    OperationInProgressError,
    PersistenceError,
    ReportEngineError,
    ValidationError,
)
from app.core.image_processor import CandidateFile, ImageProcessor, UploadSet, UploadedImage
from app.core.llm_engine import SessionEngine, SessionHandle
from app.core.prompt_compiler import compile_initial_prompt, compile_refinement_prompt
from app.models.schemas import AnalysisStatus
from app.services.knowledge_store import KnowledgeStore
from app.utils.logger import get_logger

logger = get_logger("report_orchestrator")

NO_IMAGES_MESSAGE = "Please upload at least one X-ray image."
ANALYSIS_FAILED_MESSAGE = "An unexpected error occurred during analysis. Please try again."
REFINEMENT_FAILED_MESSAGE = "An error occurred while refining the report. Please try again."


class ReportOrchestrator:
    """
    Main workflow coordinator.

    Holds exactly one report, one session handle and one pending feedback
    text. Only one action may be in flight at a time; a second one is
    rejected with OperationInProgressError instead of interleaving.
    """

    def __init__(
        self,
        engine: SessionEngine,
        knowledge_store: KnowledgeStore,
        image_processor: ImageProcessor
    ):
        self.engine = engine
        self.knowledge_store = knowledge_store
        self.image_processor = image_processor
        self.uploads = UploadSet()

        self.status = AnalysisStatus.idle()
        self.report = ""
        self.session: Optional[SessionHandle] = None
        self.feedback = ""

        self._busy = False
        self._guard = asyncio.Lock()

    # -------------------------------------------------------------------------
    # In-flight guard
    # -------------------------------------------------------------------------

    @property
    def is_busy(self) -> bool:
        return self._busy

    @asynccontextmanager
    async def _single_flight(self, action: str) -> AsyncIterator[None]:
        async with self._guard:
            if self._busy:
                logger.warning("Action rejected, another is in flight", action=action)
                raise OperationInProgressError(
                    "Another analysis or refinement is already running. Please wait."
                )
            self._busy = True
        try:
            yield
        finally:
            self._busy = False

    # -------------------------------------------------------------------------
    # Uploads
    # -------------------------------------------------------------------------

    async def add_files(self, candidates: Iterable[CandidateFile]) -> List[UploadedImage]:
        """Ingest candidates and merge them into the upload set."""
        images = await self.image_processor.ingest(candidates)
        return self.uploads.add(images)

    def remove_file(self, filename: str) -> bool:
        return self.uploads.remove(filename)

    def reset(self) -> None:
        """Drop uploads, report, session and feedback."""
        self.uploads.clear()
        self._discard_session()
        self.report = ""
        self.feedback = ""
        self.status = AnalysisStatus.idle()

    def _discard_session(self) -> None:
        self.engine.discard(self.session)
        self.session = None

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    def _on_status(self, message: str) -> None:
        self.status = AnalysisStatus.loading(message)

    async def analyze(self) -> str:
        """
        Generate a new report from the current uploads and knowledge base.

        Returns:
            The generated report text

        Raises:
            ValidationError: No images uploaded
            ReportEngineError: The model call failed
        """
        async with self._single_flight("analyze"):
            images = self.uploads.images
            if not images:
                self.status = AnalysisStatus.error(NO_IMAGES_MESSAGE, ValidationError.default_code)
                raise ValidationError(NO_IMAGES_MESSAGE)

            self.status = AnalysisStatus.loading("Starting analysis...")
            self.report = ""
            self._discard_session()
            self.feedback = ""

            try:
                prompt = compile_initial_prompt(self.knowledge_store.list())
                report_text, handle = await self.engine.start(
                    images, prompt, on_status=self._on_status
                )
            except ReportEngineError as e:
                self.status = AnalysisStatus.error(e.message, e.error_code)
                raise
            except Exception:
                logger.error("Analysis failed unexpectedly", exc_info=True)
                self.status = AnalysisStatus.error(ANALYSIS_FAILED_MESSAGE, "INTERNAL_ERROR")
                raise

            self.report = report_text
            self.session = handle
            self.status = AnalysisStatus.success("Report generated successfully.")

            logger.info(
                "Report generated",
                session_id=handle.session_id,
                image_count=len(images),
                knowledge_items=len(self.knowledge_store)
            )
            return report_text

    async def submit_feedback(self, feedback: str) -> Optional[str]:
        """
        Refine the current report and learn from the feedback.

        Returns:
            The refined report, or None when there is nothing to refine

        Raises:
            ReportEngineError: The refinement call failed; feedback is kept
        """
        async with self._single_flight("submit_feedback"):
            self.feedback = feedback
            if not feedback.strip() or self.session is None:
                return None

            self.status = AnalysisStatus.idle()
            prompt = compile_refinement_prompt(feedback)

            try:
                report_text = await self.engine.refine(self.session, prompt)
            except ReportEngineError as e:
                self.status = AnalysisStatus.error(REFINEMENT_FAILED_MESSAGE, e.error_code)
                raise

            self.report = report_text
            self.status = AnalysisStatus.success("Report refined successfully.")

            try:
                self.knowledge_store.add("", feedback)
            except PersistenceError as e:
                logger.warning("Feedback kept in memory only", error=e.message)
                self.status = AnalysisStatus.success(
                    "Report refined. Warning: the knowledge base could not be saved."
                )

            self.feedback = ""
            logger.info("Feedback applied", session_id=self.session.session_id)
            return report_text
