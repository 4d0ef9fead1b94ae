"""
XRay Report Assistant - FastAPI Application

Generates structured radiology reports from X-ray images with a
generative model, refines them from doctor feedback, and learns from
that feedback through an expert knowledge base.

IMPORTANT: Reports are AI-generated drafts and must be reviewed by a
qualified radiologist.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.api.routes import router
from app.api.middleware import (
    RequestLoggingMiddleware,
    ErrorHandlingMiddleware,
    setup_error_handlers,
    setup_rate_limiting
)
from app.core.image_processor import ImageProcessor
from app.core.llm_engine import GeminiGateway, SessionEngine
from app.services.knowledge_store import JsonFilePersistence, KnowledgeStore
from app.services.report_generator import ReportGenerator, get_report_generator
from app.services.report_orchestrator import ReportOrchestrator
from app.utils.logger import get_logger, configure_logging

logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    logger.info(
        "Starting XRay Report Assistant",
        version=settings.app_version,
        model=settings.gemini_model,
        debug=settings.debug
    )

    configure_logging(
        log_level=settings.log_level,
        json_format=not settings.debug
    )

    logger.info("Application ready")

    yield

    # Release preview thumbnails still held by the upload set
    app.state.orchestrator.uploads.clear()
    logger.info("Shutting down XRay Report Assistant")


def build_orchestrator() -> ReportOrchestrator:
    """Wire the production engine: Gemini gateway and JSON-file knowledge base."""
    return ReportOrchestrator(
        engine=SessionEngine(GeminiGateway()),
        knowledge_store=KnowledgeStore(JsonFilePersistence()),
        image_processor=ImageProcessor()
    )


def create_app(
    orchestrator: Optional[ReportOrchestrator] = None,
    report_generator: Optional[ReportGenerator] = None
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        orchestrator: Pre-built orchestrator (tests inject fakes here)
        report_generator: Pre-built exporter

    Returns:
        Configured FastAPI instance
    """
    app = FastAPI(
        title=settings.app_name,
        description="""
## XRay Report Assistant

Upload one or more X-ray images, receive a structured AI-generated
radiology report, and refine it with natural-language feedback. Every
accepted correction is stored in the expert knowledge base and reviewed
by the model before each new analysis.

### ⚠️ Important Disclaimer

Reports are AI-generated drafts for informational purposes only and must
be reviewed by a qualified healthcare professional.
        """,
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.state.orchestrator = orchestrator or build_orchestrator()
    app.state.report_generator = report_generator or get_report_generator()

    # Setup middleware (order matters - first added is innermost)
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    setup_error_handlers(app)
    setup_rate_limiting(app)

    app.include_router(router)

    return app


# Create app instance
app = create_app()


# Run with: uvicorn app.main:app --reload
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
