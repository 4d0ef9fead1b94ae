"""
Tests for API endpoints.
"""

import pytest
from fastapi.testclient import TestClient

from app.api.routes import KNOWLEDGE_WARNING_HEADER
from app.core.exceptions import PersistenceError
from app.main import create_app
from app.services.knowledge_store import InMemoryPersistence
from app.services.report_generator import ReportGenerator
from tests.fakes import overloaded_error, permanent_error


class FailingWritePersistence(InMemoryPersistence):
    def save(self, items):
        raise PersistenceError("read-only volume")


@pytest.fixture
def client(orchestrator, tmp_path):
    """Create test client wired to the fake gateway."""
    app = create_app(
        orchestrator=orchestrator,
        report_generator=ReportGenerator(output_dir=tmp_path / "reports")
    )
    return TestClient(app)


@pytest.fixture
def uploaded(client, png_bytes):
    """Client with one X-ray already uploaded."""
    response = client.post(
        "/images",
        files=[("files", ("chest.png", png_bytes, "image/png"))]
    )
    assert response.status_code == 200
    return client


class TestHealthEndpoint:
    """Test health check endpoint."""

    def test_health_returns_200(self, client):
        response = client.get("/health")
        assert response.status_code == 200

    def test_health_response_structure(self, client):
        data = client.get("/health").json()

        assert data["status"] == "healthy"
        assert "version" in data
        assert "model" in data
        assert "timestamp" in data

    def test_process_time_header(self, client):
        response = client.get("/health")
        assert float(response.headers["X-Process-Time"]) >= 0

    def test_health_not_rate_limited(self, client):
        for _ in range(40):
            assert client.get("/health").status_code == 200


class TestUploadEndpoints:
    """Test image upload endpoints."""

    def test_non_images_ignored(self, client, png_bytes):
        response = client.post(
            "/images",
            files=[
                ("files", ("a.png", png_bytes, "image/png")),
                ("files", ("notes.txt", b"free text", "text/plain")),
                ("files", ("b.png", png_bytes, "image/png")),
            ]
        )

        assert response.status_code == 200
        data = response.json()
        assert data["added"] == ["a.png", "b.png"]
        assert [image["filename"] for image in data["images"]] == ["a.png", "b.png"]
        assert all(image["has_preview"] for image in data["images"])

    def test_duplicate_filename_dropped(self, uploaded, png_bytes):
        response = uploaded.post(
            "/images",
            files=[("files", ("chest.png", png_bytes, "image/png"))]
        )

        assert response.json()["added"] == []
        assert len(response.json()["images"]) == 1

    def test_remove_image(self, uploaded):
        response = uploaded.delete("/images/chest.png")

        assert response.status_code == 200
        assert response.json()["images"] == []

    def test_remove_unknown_image(self, client):
        assert client.delete("/images/missing.png").status_code == 404


class TestAnalyze:
    """Test report generation endpoint."""

    def test_analyze_requires_images(self, client, gateway):
        response = client.post("/analyze")

        assert response.status_code == 400
        assert response.json()["error_code"] == "VALIDATION_ERROR"
        assert gateway.sessions_created == 0

    def test_analyze_success(self, uploaded, gateway):
        gateway.script("**Findings:** No acute abnormality.")

        response = uploaded.post("/analyze")

        assert response.status_code == 200
        data = response.json()
        assert data["report"] == "**Findings:** No acute abnormality."
        assert data["has_session"] is True
        assert data["status"]["status"] == "success"

    def test_analyze_overloaded(self, uploaded, gateway, recording_sleep):
        gateway.script(overloaded_error(), overloaded_error(), overloaded_error())

        response = uploaded.post("/analyze")

        assert response.status_code == 503
        assert response.json()["error_code"] == "SERVICE_OVERLOADED"
        assert recording_sleep.delays == [1.0, 2.0]

        status = uploaded.get("/status").json()
        assert status["status"] == "error"

    def test_analyze_permanent_failure(self, uploaded, gateway):
        gateway.script(permanent_error())

        response = uploaded.post("/analyze")

        assert response.status_code == 502
        assert uploaded.get("/report").json()["has_session"] is False


class TestFeedback:
    """Test report refinement endpoint."""

    def test_feedback_refines_and_learns(self, uploaded, gateway):
        gateway.script("first report", "revised report")
        uploaded.post("/analyze")

        response = uploaded.post("/feedback", json={"feedback": "Mention the old rib fracture."})

        assert response.status_code == 200
        assert response.json()["report"] == "revised report"
        assert response.json()["feedback"] == ""
        knowledge = uploaded.get("/knowledge").json()
        assert [item["content"] for item in knowledge] == ["Mention the old rib fracture."]

    def test_feedback_failure_keeps_text(self, uploaded, gateway):
        gateway.script("first report", permanent_error())
        uploaded.post("/analyze")

        response = uploaded.post("/feedback", json={"feedback": "wrong side"})

        assert response.status_code == 502
        report = uploaded.get("/report").json()
        assert report["feedback"] == "wrong side"
        assert report["report"] == "first report"
        assert report["has_session"] is True

    def test_feedback_without_session_is_noop(self, client, gateway):
        response = client.post("/feedback", json={"feedback": "anything"})

        assert response.status_code == 200
        assert response.json()["report"] == ""
        assert gateway.turns == []

    def test_feedback_requires_body(self, client):
        assert client.post("/feedback", json={}).status_code == 422


class TestKnowledgeEndpoints:
    """Test knowledge base CRUD."""

    def test_add_and_sorted_list(self, client):
        client.post("/knowledge", json={"name": "Item 10", "content": "ten"})
        response = client.post("/knowledge", json={"name": "Item 2", "content": "two"})

        assert [item["name"] for item in response.json()] == ["Item 2", "Item 10"]

    def test_duplicate_ignored(self, client):
        client.post("/knowledge", json={"name": "a", "content": "same"})
        response = client.post("/knowledge", json={"name": "b", "content": " same "})

        assert len(response.json()) == 1

    def test_update_and_delete(self, client):
        [item] = client.post("/knowledge", json={"name": "a", "content": "one"}).json()

        updated = client.put(f"/knowledge/{item['id']}", json={"name": "", "content": "changed"})
        assert updated.json()[0]["content"] == "changed"
        assert updated.json()[0]["id"] == item["id"]

        assert client.delete(f"/knowledge/{item['id']}").json() == []

    def test_update_unknown_item(self, client):
        response = client.put("/knowledge/missing", json={"name": "", "content": "x"})
        assert response.status_code == 404

    def test_add_template(self, client):
        response = client.post("/knowledge/templates/multiple_myeloma")

        assert response.status_code == 200
        assert "Multiple Myeloma" in response.json()[0]["name"]

    def test_unknown_template(self, client):
        assert client.post("/knowledge/templates/unknown").status_code == 400


class TestExport:
    """Test report export endpoints."""

    def test_export_without_report(self, client):
        response = client.post("/report/export")
        assert response.status_code == 400

    def test_export_and_download(self, uploaded, gateway):
        gateway.script("**Impression:** Normal study.")
        uploaded.post("/analyze")

        response = uploaded.post("/report/export")

        assert response.status_code == 200
        download = uploaded.get(response.json()["download_url"])
        assert download.status_code == 200
        assert len(download.content) > 0

    def test_download_unknown_report(self, client):
        assert client.get("/report/download/nope.pdf").status_code == 404


class TestKnowledgeWriteFailures:
    """Test that failed knowledge writes are reported as warnings."""

    @pytest.fixture
    def failing_client(self, client, orchestrator):
        orchestrator.knowledge_store.persistence = FailingWritePersistence()
        return client

    def test_add_succeeds_with_warning(self, failing_client):
        response = failing_client.post("/knowledge", json={"name": "a", "content": "kept"})

        assert response.status_code == 200
        assert [item["content"] for item in response.json()] == ["kept"]
        assert KNOWLEDGE_WARNING_HEADER in response.headers

    def test_update_and_delete_succeed_with_warning(self, failing_client):
        [item] = failing_client.post("/knowledge", json={"name": "a", "content": "one"}).json()

        updated = failing_client.put(f"/knowledge/{item['id']}", json={"name": "", "content": "two"})
        assert updated.status_code == 200
        assert KNOWLEDGE_WARNING_HEADER in updated.headers

        removed = failing_client.delete(f"/knowledge/{item['id']}")
        assert removed.status_code == 200
        assert removed.json() == []
        assert KNOWLEDGE_WARNING_HEADER in removed.headers

    def test_successful_write_has_no_warning(self, client):
        response = client.post("/knowledge", json={"name": "a", "content": "saved"})

        assert KNOWLEDGE_WARNING_HEADER not in response.headers
