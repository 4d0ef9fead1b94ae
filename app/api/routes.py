"""
API routes for XRay Report Assistant.

Defines the REST endpoints for uploads, analysis, refinement, the
knowledge base and report export.
"""

from pathlib import Path
from typing import Callable, List

from fastapi import APIRouter, Depends, File, HTTPException, Request, Response, UploadFile
from fastapi.responses import FileResponse

from app.config import settings
from app.api.middleware import limiter
from app.core.exceptions import PersistenceError
from app.models.schemas import (
    AnalysisStatus,
    ErrorResponse,
    FeedbackRequest,
    HealthResponse,
    KnowledgeItem,
    KnowledgeItemRequest,
    ReportExportResponse,
    ReportResponse,
    UploadedImageInfo,
    UploadSetResponse,
)
from app.services.knowledge_store import KnowledgeStore
from app.services.report_generator import ReportGenerator
from app.services.report_orchestrator import ReportOrchestrator
from app.utils.logger import get_logger

logger = get_logger("routes")

router = APIRouter()

ENGINE_ERRORS = {
    400: {"model": ErrorResponse, "description": "Invalid request"},
    409: {"model": ErrorResponse, "description": "Action not allowed now"},
    502: {"model": ErrorResponse, "description": "Model request failed"},
    503: {"model": ErrorResponse, "description": "Model overloaded"},
}


def get_orchestrator(request: Request) -> ReportOrchestrator:
    return request.app.state.orchestrator


def get_knowledge_store(request: Request) -> KnowledgeStore:
    return request.app.state.orchestrator.knowledge_store


def get_generator(request: Request) -> ReportGenerator:
    return request.app.state.report_generator


def _upload_set_response(orchestrator: ReportOrchestrator, added=()) -> UploadSetResponse:
    return UploadSetResponse(
        images=[
            UploadedImageInfo(
                filename=image.filename,
                mime_type=image.mime_type,
                size_bytes=image.size_bytes,
                has_preview=image.preview.path is not None
            )
            for image in orchestrator.uploads
        ],
        added=[image.filename for image in added]
    )


def _report_response(orchestrator: ReportOrchestrator) -> ReportResponse:
    return ReportResponse(
        report=orchestrator.report,
        has_session=orchestrator.session is not None,
        feedback=orchestrator.feedback,
        status=orchestrator.status
    )


# =============================================================================
# Health Check
# =============================================================================

@router.get(
    "/health",
    response_model=HealthResponse,
    tags=["System"],
    summary="Health check endpoint"
)
async def health_check():
    """Check if the service is healthy and running."""
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        model=settings.gemini_model
    )


# =============================================================================
# Uploads
# =============================================================================

@router.post(
    "/images",
    response_model=UploadSetResponse,
    tags=["Upload"],
    summary="Upload one or more X-ray images",
    responses={422: {"model": ErrorResponse, "description": "Unreadable file"}}
)
@limiter.limit(f"{settings.rate_limit_per_minute}/minute")
async def upload_images(
    request: Request,
    files: List[UploadFile] = File(..., description="X-ray image files"),
    orchestrator: ReportOrchestrator = Depends(get_orchestrator)
):
    """
    Add images to the active upload set.

    Files that are not declared as images are ignored. A file whose name
    is already in the set is dropped.
    """
    added = await orchestrator.add_files(files)

    logger.info(
        "Images uploaded",
        received=len(files),
        added=len(added),
        total=len(orchestrator.uploads)
    )
    return _upload_set_response(orchestrator, added)


@router.get("/images", response_model=UploadSetResponse, tags=["Upload"])
async def list_images(orchestrator: ReportOrchestrator = Depends(get_orchestrator)):
    """List the active upload set."""
    return _upload_set_response(orchestrator)


@router.delete("/images/{filename}", response_model=UploadSetResponse, tags=["Upload"])
async def remove_image(
    filename: str,
    orchestrator: ReportOrchestrator = Depends(get_orchestrator)
):
    """Remove one image from the upload set."""
    if not orchestrator.remove_file(filename):
        raise HTTPException(status_code=404, detail=f"Image not found: {filename}")
    return _upload_set_response(orchestrator)


@router.delete("/images", response_model=ReportResponse, tags=["Upload"])
async def reset_session(orchestrator: ReportOrchestrator = Depends(get_orchestrator)):
    """Clear uploads, report and session."""
    orchestrator.reset()
    return _report_response(orchestrator)


# =============================================================================
# Analysis
# =============================================================================

@router.post(
    "/analyze",
    response_model=ReportResponse,
    tags=["Analysis"],
    summary="Generate a report from the uploaded images",
    responses=ENGINE_ERRORS
)
@limiter.limit(f"{settings.rate_limit_per_minute}/minute")
async def analyze(
    request: Request,
    orchestrator: ReportOrchestrator = Depends(get_orchestrator)
):
    """
    Analyze every uploaded image in one request.

    The current knowledge base is compiled into the prompt. Overload
    errors are retried up to three times before failing with 503.
    """
    await orchestrator.analyze()
    return _report_response(orchestrator)


@router.post(
    "/feedback",
    response_model=ReportResponse,
    tags=["Analysis"],
    summary="Refine the current report with doctor feedback",
    responses=ENGINE_ERRORS
)
@limiter.limit(f"{settings.rate_limit_per_minute}/minute")
async def submit_feedback(
    request: Request,
    body: FeedbackRequest,
    orchestrator: ReportOrchestrator = Depends(get_orchestrator)
):
    """
    Send feedback on the current report.

    On success the report is replaced and the feedback is saved to the
    knowledge base for future analyses.
    """
    await orchestrator.submit_feedback(body.feedback)
    return _report_response(orchestrator)


@router.get("/status", response_model=AnalysisStatus, tags=["Analysis"])
async def get_status(orchestrator: ReportOrchestrator = Depends(get_orchestrator)):
    """Status of the most recent action."""
    return orchestrator.status


@router.get("/report", response_model=ReportResponse, tags=["Analysis"])
async def get_report(orchestrator: ReportOrchestrator = Depends(get_orchestrator)):
    """Current report text."""
    return _report_response(orchestrator)


# =============================================================================
# Report Export
# =============================================================================

@router.post(
    "/report/export",
    response_model=ReportExportResponse,
    tags=["Reports"],
    summary="Export the current report as a document",
    responses={400: {"model": ErrorResponse, "description": "No report"}}
)
async def export_report(
    orchestrator: ReportOrchestrator = Depends(get_orchestrator),
    generator: ReportGenerator = Depends(get_generator)
):
    """Render the current report to PDF."""
    path = generator.export(orchestrator.report)
    return ReportExportResponse(
        filename=path.name,
        download_url=f"/report/download/{path.name}"
    )


@router.get("/report/download/{filename}", tags=["Reports"])
async def download_report(
    filename: str,
    generator: ReportGenerator = Depends(get_generator)
):
    """Download a previously exported report."""
    path = generator.output_dir / Path(filename).name
    if not path.is_file():
        raise HTTPException(status_code=404, detail=f"Report not found: {filename}")

    media_type = "application/pdf" if path.suffix == ".pdf" else "text/html"
    return FileResponse(path=str(path), filename=path.name, media_type=media_type)


# =============================================================================
# Knowledge Base
# =============================================================================

KNOWLEDGE_WARNING_HEADER = "X-Knowledge-Warning"


def _apply_knowledge_change(
    store: KnowledgeStore,
    response: Response,
    change: Callable[[], object]
) -> List[KnowledgeItem]:
    """Run a store mutation; a failed write becomes a warning header, not an error."""
    try:
        change()
    except PersistenceError as e:
        logger.warning("Knowledge change kept in memory only", error=e.message)
        response.headers[KNOWLEDGE_WARNING_HEADER] = (
            "The knowledge base could not be saved. The change is kept for this session only."
        )
    return store.list()


@router.get("/knowledge", response_model=List[KnowledgeItem], tags=["Knowledge"])
async def list_knowledge(store: KnowledgeStore = Depends(get_knowledge_store)):
    """All knowledge items, sorted by name."""
    return store.list()


@router.post(
    "/knowledge",
    response_model=List[KnowledgeItem],
    tags=["Knowledge"],
    summary="Add a knowledge item"
)
async def add_knowledge(
    body: KnowledgeItemRequest,
    response: Response,
    store: KnowledgeStore = Depends(get_knowledge_store)
):
    """
    Add knowledge to be reviewed before every analysis.

    Empty or duplicate content is ignored. Returns the full sorted list.
    """
    return _apply_knowledge_change(store, response, lambda: store.add(body.name, body.content))


@router.post(
    "/knowledge/templates/{key}",
    response_model=List[KnowledgeItem],
    tags=["Knowledge"],
    summary="Add a predefined knowledge note"
)
async def add_knowledge_template(
    key: str,
    response: Response,
    store: KnowledgeStore = Depends(get_knowledge_store)
):
    return _apply_knowledge_change(store, response, lambda: store.add_template(key))


@router.put("/knowledge/{item_id}", response_model=List[KnowledgeItem], tags=["Knowledge"])
async def update_knowledge(
    item_id: str,
    body: KnowledgeItemRequest,
    response: Response,
    store: KnowledgeStore = Depends(get_knowledge_store)
):
    """Replace name and content of a knowledge item."""
    if store.get(item_id) is None:
        raise HTTPException(status_code=404, detail=f"Knowledge item not found: {item_id}")
    return _apply_knowledge_change(
        store, response, lambda: store.update(item_id, body.name, body.content)
    )


@router.delete("/knowledge/{item_id}", response_model=List[KnowledgeItem], tags=["Knowledge"])
async def remove_knowledge(
    item_id: str,
    response: Response,
    store: KnowledgeStore = Depends(get_knowledge_store)
):
    """Delete a knowledge item. Unknown ids are ignored."""
    return _apply_knowledge_change(store, response, lambda: store.remove(item_id))
