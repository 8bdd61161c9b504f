"""
End-to-end tests for the trigger/status endpoints.

The FastAPI app is wired with the in-memory store, a fake storage gateway and
a fake generation client, then driven through TestClient.
"""

import asyncio
import threading
import time

import pytest
from fastapi.testclient import TestClient

from alignment_api import app as app_module
from alignment_api.run_registry import RunRegistry
from alignment_api.storage import FetchedDocument
from conftest import FakeStorageGateway, SAMPLE_CURRICULUM

ADDRESS = "https://blob.example.com/curricula/grady.txt"
MISSING_ADDRESS = "https://blob.example.com/curricula/missing.txt"
SLOW_ADDRESS = "https://blob.example.com/curricula/slow.txt"


class BlockingStorageGateway(FakeStorageGateway):
    """Holds fetches of SLOW_ADDRESS until the test releases them."""

    def __init__(self, documents):
        super().__init__(documents)
        self.release = threading.Event()

    async def fetch(self, address):
        if address == SLOW_ADDRESS:
            await asyncio.to_thread(self.release.wait, 5)
            address = ADDRESS
        return await super().fetch(address)


@pytest.fixture
def storage():
    document = FetchedDocument(content=SAMPLE_CURRICULUM.encode("utf-8"), media_type="text/plain")
    return BlockingStorageGateway({ADDRESS: document})


@pytest.fixture
def client(repository, settings, fake_generation, storage):
    app_module.configure_services(
        settings,
        repository=repository,
        storage=storage,
        generation_client=fake_generation,
        registry=RunRegistry(timeout_seconds=settings.timeout_seconds),
    )
    with TestClient(app_module.app) as test_client:
        yield test_client
    storage.release.set()
    app_module.reset_services()


def _register(client, address=ADDRESS, file_name="grady.txt"):
    response = client.post("/api/curricula", json={
        "name": "Grady County HS",
        "originalFileName": file_name,
        "storageAddress": address,
        "schoolTag": "grady-hs",
    })
    assert response.status_code == 201
    return response.json()["id"]


def _poll_until_terminal(client, curriculum_id, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        payload = client.get(f"/api/curricula/{curriculum_id}/analysis-status").json()
        if payload["analysisStatus"] in ("COMPLETED", "FAILED"):
            return payload
        time.sleep(0.02)
    pytest.fail(f"analysis for {curriculum_id} did not finish within {timeout}s")


class TestRegistration:
    def test_create_and_fetch_curriculum(self, client):
        curriculum_id = _register(client)
        record = client.get(f"/api/curricula/{curriculum_id}").json()

        assert record["name"] == "Grady County HS"
        assert record["schoolTag"] == "grady-hs"
        assert record["analysisStatus"] == "NOT_STARTED"
        assert record["analysisResults"] is None

    def test_unsupported_file_type_is_rejected(self, client):
        response = client.post("/api/curricula", json={
            "name": "Slides",
            "originalFileName": "slides.pptx",
            "storageAddress": ADDRESS,
        })
        assert response.status_code == 400

    def test_unknown_ids_are_404(self, client):
        assert client.get("/api/curricula/nope").status_code == 404
        assert client.get("/api/curricula/nope/analysis-status").status_code == 404
        assert client.post("/api/curricula/nope/trigger-analysis").status_code == 404


class TestAnalysisScenarios:
    def test_explicit_course_mentions_score_well(self, client):
        curriculum_id = _register(client)

        response = client.post(f"/api/curricula/{curriculum_id}/trigger-analysis")
        assert response.status_code == 202
        body = response.json()
        assert body["message"] == app_module.TRIGGER_MESSAGE
        assert body["curriculum"]["id"] == curriculum_id

        final = _poll_until_terminal(client, curriculum_id)

        assert final["analysisStatus"] == "COMPLETED"
        assert final["analysisError"] is None
        report = final["analysisResults"]
        assert report["overallAlignmentScore"] >= 60
        admissions = report["aspects"]["admissions"]["findings"]
        assert {finding["criterionId"] for finding in admissions} == {
            "englishUnits", "mathUnits", "scienceUnits", "historyUnits", "electivesUnits",
        }
        for finding in admissions:
            assert finding["verdict"] in ("Met", "Partially Met")

    def test_unreachable_document_fails_without_report(self, client):
        curriculum_id = _register(client, address=MISSING_ADDRESS, file_name="missing.txt")

        assert client.post(f"/api/curricula/{curriculum_id}/trigger-analysis").status_code == 202
        final = _poll_until_terminal(client, curriculum_id)

        assert final["analysisStatus"] == "FAILED"
        assert "fetch" in final["analysisError"].lower()
        assert final["analysisResults"] == {}

    def test_status_is_processing_until_run_finishes(self, client, storage):
        curriculum_id = _register(client, address=SLOW_ADDRESS, file_name="slow.txt")

        trigger = client.post(f"/api/curricula/{curriculum_id}/trigger-analysis")
        assert trigger.status_code == 202
        assert trigger.json()["curriculum"]["analysisStatus"] == "PROCESSING"

        pending = client.get(f"/api/curricula/{curriculum_id}/analysis-status").json()
        assert pending["analysisStatus"] == "PROCESSING"
        assert pending["analysisResults"] == {}
        assert pending["lastAnalysisTriggeredAt"] is not None
        assert pending["lastAnalysisCompletedAt"] is None

        storage.release.set()
        final = _poll_until_terminal(client, curriculum_id)

        assert final["analysisStatus"] in ("COMPLETED", "FAILED")
        assert final["lastAnalysisCompletedAt"] is not None

    def test_retrigger_resets_previous_result(self, client):
        curriculum_id = _register(client)
        client.post(f"/api/curricula/{curriculum_id}/trigger-analysis")
        first = _poll_until_terminal(client, curriculum_id)

        second = client.post(f"/api/curricula/{curriculum_id}/trigger-analysis").json()["curriculum"]

        assert second["analysisStatus"] == "PROCESSING"
        assert second["analysisResults"] == {}
        assert second["lastAnalysisCompletedAt"] is None
        assert second["lastAnalysisTriggeredAt"] >= first["lastAnalysisTriggeredAt"]
        _poll_until_terminal(client, curriculum_id)


class TestMonitoring:
    def test_health(self, client):
        body = client.get("/api/health").json()
        assert body["status"] == "ok"
        assert body["generation"] == "fake:fake-model"

    def test_runs_snapshot_lists_finished_runs(self, client):
        curriculum_id = _register(client)
        run_id = client.post(f"/api/curricula/{curriculum_id}/trigger-analysis").json()["runId"]
        _poll_until_terminal(client, curriculum_id)

        deadline = time.monotonic() + 2
        recent = []
        while time.monotonic() < deadline:
            recent = client.get("/api/analysis/runs").json()["recent"]
            if any(run["runId"] == run_id for run in recent):
                break
            time.sleep(0.02)

        run = next(run for run in recent if run["runId"] == run_id)
        assert run["state"] == "completed"
        assert run["curriculumId"] == curriculum_id
