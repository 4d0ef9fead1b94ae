"""
XRay Report Assistant - Conversational Session Engine

Drives a multi-turn conversation with the generative model:
- The first turn sends the analysis prompt together with every image
- Follow-up turns send refinement prompts on the same conversation
- Overload/unavailable failures on the first turn are retried with
  exponential backoff

IMPORTANT: Generated reports are drafts for review by a qualified
radiologist. The engine guarantees delivery semantics, not medical
correctness.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Sequence, Tuple
from uuid import uuid4

from google import genai
from google.genai import types

from app.config import settings
from app.core.exceptions import (
    PermanentServiceError,
    ReportEngineError,
    ServiceOverloadedError,
    SessionStateError,
    TransientServiceError,
)
from app.core.image_processor import UploadedImage
from app.utils.logger import get_logger

logger = get_logger("llm_engine")

OVERLOAD_MARKERS = ("overloaded", "unavailable")
OVERLOADED_MESSAGE = "The model is currently overloaded. Please try again later."

StatusCallback = Callable[[str], None]


def retry_status_message(next_attempt: int, max_attempts: int) -> str:
    """Status text shown while waiting before a retry."""
    return f"Model is busy. Retrying attempt {next_attempt} of {max_attempts}..."


def is_transient_error(error: BaseException) -> bool:
    """
    Classify a model failure as transient (overloaded/unavailable).

    Checks the HTTP code and status carried by google-genai API errors,
    then falls back to scanning the error text for overload markers.
    """
    if isinstance(error, TransientServiceError):
        return True
    if getattr(error, "code", None) == 503:
        return True
    status = getattr(error, "status", None)
    if isinstance(status, str) and status.upper() == "UNAVAILABLE":
        return True
    text = str(error).lower()
    return any(marker in text for marker in OVERLOAD_MARKERS)


# =============================================================================
# Gateway seam
# =============================================================================

@dataclass(frozen=True)
class TurnPart:
    """One element of a turn: either text or inline image bytes."""

    text: Optional[str] = None
    data: Optional[bytes] = None
    mime_type: Optional[str] = None

    @classmethod
    def from_text(cls, text: str) -> "TurnPart":
        return cls(text=text)

    @classmethod
    def from_image(cls, image: UploadedImage) -> "TurnPart":
        return cls(data=image.data, mime_type=image.mime_type)

    @property
    def is_image(self) -> bool:
        return self.data is not None


class ModelGateway(Protocol):
    """The two capabilities the engine needs from a conversational model."""

    async def create_session(self) -> Any: ...

    async def send_turn(self, session: Any, parts: Sequence[TurnPart]) -> str: ...


class GeminiGateway:
    """ModelGateway backed by the google-genai async chat API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[genai.Client] = None
    ):
        self.api_key = api_key if api_key is not None else settings.gemini_api_key
        self.model = model or settings.gemini_model
        self.client = client

    def _get_client(self) -> genai.Client:
        if self.client is None:
            if not self.api_key:
                raise PermanentServiceError(
                    "Gemini API key is not configured. Set GEMINI_API_KEY.",
                    error_code="MODEL_NOT_CONFIGURED"
                )
            self.client = genai.Client(api_key=self.api_key)
            logger.info("Gemini client initialized", model=self.model)
        return self.client

    async def create_session(self) -> Any:
        return self._get_client().aio.chats.create(model=self.model)

    async def send_turn(self, session: Any, parts: Sequence[TurnPart]) -> str:
        message = [
            types.Part.from_bytes(data=part.data, mime_type=part.mime_type)
            if part.is_image
            else types.Part.from_text(text=part.text)
            for part in parts
        ]
        response = await session.send_message(message)
        return response.text or ""


# =============================================================================
# Session state
# =============================================================================

class SessionState(str, Enum):
    """Lifecycle of a conversation."""
    NO_SESSION = "no_session"
    ACTIVE = "active"
    FAILED = "failed"


@dataclass
class Turn:
    """Append-only record of one successful exchange."""

    role: str
    text: str
    image_count: int = 0
    timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass
class SessionHandle:
    """Opaque reference to a live conversation with the model."""

    chat: Any
    session_id: str = field(default_factory=lambda: str(uuid4()))
    state: SessionState = SessionState.ACTIVE
    turns: List[Turn] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_active(self) -> bool:
        return self.state == SessionState.ACTIVE

    def record(self, role: str, text: str, image_count: int = 0) -> None:
        self.turns.append(Turn(role=role, text=text, image_count=image_count))


# =============================================================================
# Engine
# =============================================================================

class SessionEngine:
    """
    Owns the request/response protocol with the model.

    ``start`` opens a conversation and sends the images; it retries
    transient failures up to ``max_attempts`` times with waits of
    ``base_delay * 2**k`` seconds. ``refine`` sends one text turn on an
    existing conversation and never retries.

    Callers must not run ``start``/``refine`` concurrently on one engine.
    """

    def __init__(
        self,
        gateway: ModelGateway,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.gateway = gateway
        self.max_attempts = max_attempts or settings.retry_max_attempts
        self.base_delay = settings.retry_base_delay_seconds if base_delay is None else base_delay
        self._sleep = sleep
        self.state = SessionState.NO_SESSION

    def backoff_delay(self, attempt: int) -> float:
        """Wait before the retry that follows zero-based ``attempt``."""
        return self.base_delay * (2 ** attempt)

    async def start(
        self,
        images: Sequence[UploadedImage],
        prompt_text: str,
        on_status: Optional[StatusCallback] = None
    ) -> Tuple[str, SessionHandle]:
        """
        Open a conversation and request the initial report.

        Args:
            images: Ingested images, sent in order after the prompt
            prompt_text: Compiled analysis prompt
            on_status: Receives a message before each backoff wait

        Returns:
            Tuple of (report text, new session handle)

        Raises:
            ServiceOverloadedError: Every attempt failed transiently
            PermanentServiceError: A non-transient failure occurred
        """
        self.state = SessionState.NO_SESSION
        parts = [TurnPart.from_text(prompt_text)] + [TurnPart.from_image(image) for image in images]

        logger.info(
            "Starting analysis session",
            image_count=len(images),
            max_attempts=self.max_attempts
        )

        for attempt in range(self.max_attempts):
            try:
                chat = await self.gateway.create_session()
                report_text = await self.gateway.send_turn(chat, parts)
            except Exception as e:
                if not is_transient_error(e):
                    self.state = SessionState.FAILED
                    logger.error("Analysis failed", attempt=attempt + 1, error=str(e))
                    raise self._permanent(e) from e

                logger.warning(
                    "Model busy",
                    attempt=attempt + 1,
                    max_attempts=self.max_attempts,
                    error=str(e)
                )
                if attempt + 1 < self.max_attempts:
                    if on_status:
                        on_status(retry_status_message(attempt + 2, self.max_attempts))
                    await self._sleep(self.backoff_delay(attempt))
                continue

            handle = SessionHandle(chat=chat)
            handle.record("user", prompt_text, image_count=len(images))
            handle.record("model", report_text)
            self.state = SessionState.ACTIVE

            logger.info(
                "Analysis session started",
                session_id=handle.session_id,
                attempts=attempt + 1
            )
            return report_text, handle

        self.state = SessionState.FAILED
        logger.error("Model overloaded, retries exhausted", attempts=self.max_attempts)
        raise ServiceOverloadedError(OVERLOADED_MESSAGE)

    async def refine(self, handle: Optional[SessionHandle], prompt_text: str) -> str:
        """
        Send one follow-up turn on an existing conversation.

        A failure leaves the handle active so the caller may try again.

        Raises:
            SessionStateError: The handle is missing or not active
            TransientServiceError: The model was overloaded
            PermanentServiceError: Any other model failure
        """
        if handle is None or not handle.is_active:
            raise SessionStateError("No active analysis session. Analyze images first.")

        try:
            report_text = await self.gateway.send_turn(handle.chat, [TurnPart.from_text(prompt_text)])
        except Exception as e:
            logger.error("Refinement failed", session_id=handle.session_id, error=str(e))
            if is_transient_error(e):
                raise TransientServiceError(OVERLOADED_MESSAGE) from e
            raise self._permanent(e) from e

        handle.record("user", prompt_text)
        handle.record("model", report_text)
        logger.info("Report refined", session_id=handle.session_id, turns=len(handle.turns))
        return report_text

    def discard(self, handle: Optional[SessionHandle]) -> None:
        """Invalidate a handle so no further turns can be sent on it."""
        if handle is not None:
            handle.state = SessionState.NO_SESSION
        self.state = SessionState.NO_SESSION

    @staticmethod
    def _permanent(error: Exception) -> ReportEngineError:
        if isinstance(error, ReportEngineError):
            return error
        return PermanentServiceError(f"The model request failed: {error}")


# Module-level singleton
_engine_instance: Optional[SessionEngine] = None


def get_session_engine() -> SessionEngine:
    """Get or create singleton engine instance backed by Gemini."""
    global _engine_instance
    if _engine_instance is None:
        _engine_instance = SessionEngine(GeminiGateway())
    return _engine_instance
