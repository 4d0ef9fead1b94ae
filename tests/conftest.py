"""
Shared fixtures wiring the engine to test doubles and in-memory storage.
"""

import pytest

from app.api.middleware import limiter
from app.core.image_processor import ImageProcessor, LocalFile
from app.core.llm_engine import SessionEngine
from app.services.knowledge_store import InMemoryPersistence, KnowledgeStore
from app.services.report_orchestrator import ReportOrchestrator
from tests.fakes import FakeGateway, RecordingSleep, make_png


@pytest.fixture(autouse=True)
def reset_rate_limits():
    limiter.reset()
    yield


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def engine(gateway, recording_sleep) -> SessionEngine:
    return SessionEngine(gateway, max_attempts=3, base_delay=1.0, sleep=recording_sleep)


@pytest.fixture
def persistence() -> InMemoryPersistence:
    return InMemoryPersistence()


@pytest.fixture
def knowledge_store(persistence) -> KnowledgeStore:
    return KnowledgeStore(persistence)


@pytest.fixture
def image_processor(tmp_path) -> ImageProcessor:
    return ImageProcessor(preview_dir=tmp_path / "previews")


@pytest.fixture
def orchestrator(engine, knowledge_store, image_processor) -> ReportOrchestrator:
    return ReportOrchestrator(
        engine=engine,
        knowledge_store=knowledge_store,
        image_processor=image_processor
    )


@pytest.fixture
def xray_file(png_bytes):
    def _make(name: str = "chest.png", content_type: str = "image/png", data: bytes = None):
        return LocalFile(filename=name, content_type=content_type, data=data or png_bytes)
    return _make
