"""
Pydantic schemas for XRay Report Assistant.

Defines the domain records and request/response models for all API endpoints.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, List
from uuid import uuid4

from pydantic import BaseModel, Field, ConfigDict


# =============================================================================
# Enums
# =============================================================================

class StatusKind(str, Enum):
    """What the engine is currently doing."""
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


# =============================================================================
# Knowledge Base
# =============================================================================

class KnowledgeItem(BaseModel):
    """A named piece of expert knowledge injected into every analysis."""

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Opaque unique identifier"
    )
    name: str = Field(description="Short label")
    content: str = Field(description="Knowledge text")

    model_config = ConfigDict(from_attributes=True)


class KnowledgeItemRequest(BaseModel):
    """Request body to add or update a knowledge item."""

    name: str = Field(default="", description="Label; synthesized from content when empty")
    content: str = Field(description="Knowledge text")


# =============================================================================
# Status
# =============================================================================

class AnalysisStatus(BaseModel):
    """User-facing status of the most recent action."""

    status: StatusKind = Field(default=StatusKind.IDLE)
    message: str = Field(default="")
    error_code: Optional[str] = Field(
        default=None,
        description="Machine-readable error code when status is error"
    )

    @classmethod
    def idle(cls) -> "AnalysisStatus":
        return cls(status=StatusKind.IDLE)

    @classmethod
    def loading(cls, message: str) -> "AnalysisStatus":
        return cls(status=StatusKind.LOADING, message=message)

    @classmethod
    def success(cls, message: str) -> "AnalysisStatus":
        return cls(status=StatusKind.SUCCESS, message=message)

    @classmethod
    def error(cls, message: str, error_code: Optional[str] = None) -> "AnalysisStatus":
        return cls(status=StatusKind.ERROR, message=message, error_code=error_code)


# =============================================================================
# Uploads
# =============================================================================

class UploadedImageInfo(BaseModel):
    """Public view of an entry in the upload set."""

    filename: str
    mime_type: str
    size_bytes: int
    has_preview: bool


class UploadSetResponse(BaseModel):
    """Current upload set after an upload or removal."""

    images: List[UploadedImageInfo] = Field(default=[])
    added: List[str] = Field(default=[], description="Filenames added by this request")


# =============================================================================
# Report
# =============================================================================

class FeedbackRequest(BaseModel):
    """Doctor feedback used to refine the current report."""

    feedback: str = Field(description="Natural-language correction")


class ReportResponse(BaseModel):
    """Current report text with the status of the last action."""

    report: str = Field(default="")
    has_session: bool = Field(default=False, description="Whether feedback can be submitted")
    feedback: str = Field(default="", description="Pending feedback kept after a failure")
    status: AnalysisStatus = Field(default_factory=AnalysisStatus)


class ReportExportResponse(BaseModel):
    """Response after exporting the report to a document."""

    filename: str = Field(description="Generated file name")
    download_url: str = Field(description="Download path")


# =============================================================================
# Health & Errors
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(default="healthy")
    version: str = Field(description="Application version")
    model: str = Field(description="Configured generative model")
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str = Field(description="Error type")
    message: str = Field(description="Human-readable error message")
    error_code: str = Field(description="Machine-readable error code")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
