"""Tests for the local HTTP service — forms, sessions, stored responses, sync and wards."""

import json
from datetime import UTC, datetime

import httpx
import pytest
from fastapi.testclient import TestClient

from fieldsurvey.core.config import settings
from fieldsurvey.main import create_app
from fieldsurvey.schemas.responses import FormResponse, SyncStatus
from fieldsurvey.services.sessions import build_context
from fieldsurvey.services.sync import RemoteClient

PREFIX = settings.API_V1_PREFIX
WARD = {
    "id": "ward-4",
    "wardNumber": 4,
    "wardAreaCode": 44604,
    "geometry": {"type": "Polygon", "coordinates": [[[85.3, 27.7], [85.31, 27.7], [85.3, 27.7]]]},
}


class FakeBackend:
    """Minimal survey backend behind an httpx mock transport."""

    def __init__(self) -> None:
        self.pushed: list[dict] = []
        self.fail_pull = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/sync/push"):
            self.pushed.append(json.loads(request.content))
            return httpx.Response(200)
        if path.endswith("/sync/pull"):
            if self.fail_pull:
                return httpx.Response(500, json={"message": "Database unavailable"})
            return httpx.Response(
                200, json={"changes": {"wards": {"created": [WARD], "updated": [], "deleted": []}}, "timestamp": 1714550400000}
            )
        if path.endswith("/wards"):
            return httpx.Response(200, json={"data": [WARD]})
        return httpx.Response(404, json={"message": "Not found"})


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def context(session_factory, registry, backend):
    remote = RemoteClient("https://survey.example.org/api", "v1", transport=httpx.MockTransport(backend))
    return build_context(session_factory, configs=registry, client=remote)


@pytest.fixture
def client(context):
    with TestClient(create_app(context)) as test_client:
        yield test_client


def start_session(client) -> dict:
    response = client.post(
        f"{PREFIX}/sessions/",
        json={"form_id": "building-survey", "submitted_by": "surveyor-7", "entity_id": "bld-1"},
    )
    assert response.status_code == 201
    return response.json()


def set_values(client, values: dict) -> dict:
    response = client.patch(f"{PREFIX}/sessions/building-survey/values", json={"values": values})
    assert response.status_code == 200
    return response.json()


def fill_commercial_building(client) -> None:
    set_values(client, {"buildingType": "commercial", "constructionType": "rcc", "totalFloors": 2, "businessCount": 3})


# ---------------------------------------------------------------------------
# Health and forms
# ---------------------------------------------------------------------------


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


class TestForms:
    def test_list_forms(self, client):
        response = client.get(f"{PREFIX}/forms/")
        assert response.status_code == 200
        assert response.json() == [
            {
                "id": "building-survey",
                "version": "1.0.0",
                "title": "Building Survey",
                "type": "building",
                "total_steps": 4,
                "auto_save": True,
            }
        ]

    def test_get_form_document(self, client):
        body = client.get(f"{PREFIX}/forms/building-survey").json()
        assert [step["id"] for step in body["steps"]] == ["basics", "structure", "commerce", "evidence"]
        assert body["settings"]["autoSaveInterval"] == 30000

    def test_unknown_form(self, client):
        assert client.get(f"{PREFIX}/forms/family-survey").status_code == 404


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class TestSessions:
    def test_start_session(self, client):
        body = start_session(client)
        assert body["current_step"] == 0
        assert body["status"] == "draft"
        assert body["values"] == {"hasBasement": False}
        assert body["autosave_active"] is True
        assert [step["id"] for step in body["visible"]] == ["basics", "structure", "evidence"]

    def test_start_is_idempotent_per_form(self, client):
        first = start_session(client)
        set_values(client, {"name": "Everest Tower"})
        second = start_session(client)
        assert second["response_id"] == first["response_id"]
        assert second["values"]["name"] == "Everest Tower"

    def test_start_unknown_form(self, client):
        response = client.post(f"{PREFIX}/sessions/", json={"form_id": "nope", "submitted_by": "surveyor-7"})
        assert response.status_code == 404

    def test_visibility_changes_reported(self, client):
        start_session(client)
        body = set_values(client, {"buildingType": "commercial"})
        assert body["visibility_changes"] == {"step:commerce": True}
        assert "commerce" in [step["id"] for step in body["session"]["visible"]]
        assert body["session"]["dirty_fields"] == ["buildingType"]

    def test_empty_values_rejected(self, client):
        start_session(client)
        response = client.patch(f"{PREFIX}/sessions/building-survey/values", json={"values": {}})
        assert response.status_code == 422

    def test_navigation_is_gated_by_validation(self, client):
        start_session(client)
        blocked = client.post(f"{PREFIX}/sessions/building-survey/next").json()
        assert blocked["ok"] is False
        assert blocked["step_index"] == 0
        assert list(blocked["errors"]) == ["buildingType"]

        set_values(client, {"buildingType": "commercial"})
        moved = client.post(f"{PREFIX}/sessions/building-survey/next").json()
        assert moved["ok"] is True
        assert moved["step_index"] == 1

        back = client.post(f"{PREFIX}/sessions/building-survey/previous").json()
        assert back["step_index"] == 0

    def test_location_capture(self, client):
        start_session(client)
        fix = {"latitude": 27.7172, "longitude": 85.324, "accuracy": 8.0, "timestamp": "2024-05-01T10:30:00Z"}
        response = client.post(f"{PREFIX}/sessions/building-survey/location", json={"location": fix})
        assert response.status_code == 200
        assert "location" in response.json()["dirty_fields"]

    def test_draft_then_submit(self, client):
        start_session(client)
        set_values(client, {"buildingType": "commercial", "constructionType": "rcc", "totalFloors": 2})

        draft = client.post(f"{PREFIX}/sessions/building-survey/draft").json()
        assert draft["version"] == 1
        assert draft["sync_status"] == "pending"
        assert draft["dirty_fields"] == []

        rejected = client.post(f"{PREFIX}/sessions/building-survey/submit")
        assert rejected.status_code == 200
        assert rejected.json()["ok"] is False
        assert rejected.json()["failed_step"] == 2
        assert rejected.json()["failed_field"] == "businessCount"

        set_values(client, {"businessCount": 3})
        submitted = client.post(f"{PREFIX}/sessions/building-survey/submit").json()
        assert submitted["ok"] is True
        assert submitted["response_id"] == draft["response_id"]
        assert submitted["version"] == 2

        state = client.get(f"{PREFIX}/sessions/building-survey").json()
        assert state["status"] == "completed"
        assert state["autosave_active"] is False

    def test_start_after_submit_opens_fresh_session(self, client):
        start_session(client)
        fill_commercial_building(client)
        submitted = client.post(f"{PREFIX}/sessions/building-survey/submit").json()
        assert client.post(f"{PREFIX}/sessions/building-survey/draft").status_code == 409

        response = client.post(
            f"{PREFIX}/sessions/",
            json={"form_id": "building-survey", "submitted_by": "surveyor-7", "entity_id": "bld-2"},
        )
        assert response.status_code == 201
        fresh = response.json()
        assert fresh["response_id"] != submitted["response_id"]
        assert fresh["status"] == "draft"
        assert fresh["values"] == {"hasBasement": False}

        set_values(client, {"totalFloors": 7})
        client.post(f"{PREFIX}/sessions/building-survey/draft")
        stored = client.get(f"{PREFIX}/responses/{submitted['response_id']}").json()
        assert stored["response"]["status"] == "completed"
        assert stored["response"]["entityId"] == "bld-1"
        assert stored["version"] == 1

    def test_start_for_another_entity_conflicts(self, client):
        first = start_session(client)
        response = client.post(
            f"{PREFIX}/sessions/",
            json={"form_id": "building-survey", "submitted_by": "surveyor-7", "entity_id": "bld-2"},
        )
        assert response.status_code == 409
        assert first["response_id"] in response.json()["detail"]

    def test_close_session(self, client):
        start_session(client)
        assert client.delete(f"{PREFIX}/sessions/building-survey").status_code == 204
        assert client.get(f"{PREFIX}/sessions/building-survey").status_code == 404
        assert client.delete(f"{PREFIX}/sessions/building-survey").status_code == 404

    def test_resume_stored_response(self, client):
        start_session(client)
        set_values(client, {"buildingType": "residential", "ward": 4})
        draft = client.post(f"{PREFIX}/sessions/building-survey/draft").json()
        client.delete(f"{PREFIX}/sessions/building-survey")

        response = client.post(
            f"{PREFIX}/sessions/",
            json={"form_id": "building-survey", "submitted_by": "surveyor-7", "response_id": draft["response_id"]},
        )
        assert response.status_code == 201
        assert response.json()["response_id"] == draft["response_id"]
        assert response.json()["values"]["ward"] == 4

    def test_resume_unknown_response(self, client):
        response = client.post(
            f"{PREFIX}/sessions/",
            json={"form_id": "building-survey", "submitted_by": "surveyor-7", "response_id": "missing"},
        )
        assert response.status_code == 404


# ---------------------------------------------------------------------------
# Stored responses
# ---------------------------------------------------------------------------


class TestResponses:
    def test_list_and_fetch(self, client):
        start_session(client)
        fill_commercial_building(client)
        response_id = client.post(f"{PREFIX}/sessions/building-survey/submit").json()["response_id"]

        listing = client.get(f"{PREFIX}/responses/", params={"sync_status": "pending"}).json()
        assert listing["total"] == 1
        assert listing["items"][0]["id"] == response_id
        assert listing["items"][0]["status"] == "completed"
        assert client.get(f"{PREFIX}/responses/", params={"sync_status": "synced"}).json()["total"] == 0

        stored = client.get(f"{PREFIX}/responses/{response_id}").json()
        assert stored["response"]["formId"] == "building-survey"
        assert stored["response"]["submittedBy"] == "surveyor-7"

    def test_missing_response(self, client):
        assert client.get(f"{PREFIX}/responses/missing").status_code == 404

    def test_bad_filter(self, client):
        assert client.get(f"{PREFIX}/responses/", params={"sync_status": "lost"}).status_code == 422


# ---------------------------------------------------------------------------
# Sync and wards
# ---------------------------------------------------------------------------


class TestSync:
    def test_full_cycle(self, client, backend):
        start_session(client)
        fill_commercial_building(client)
        response_id = client.post(f"{PREFIX}/sessions/building-survey/submit").json()["response_id"]

        cycle = client.post(f"{PREFIX}/sync/").json()
        assert [(o["record_id"], o["status"]) for o in cycle["push"]["outcomes"]] == [(response_id, "synced")]
        assert cycle["pull"]["applied"] == {"wards": 1}
        assert cycle["pull_error"] is None
        assert backend.pushed[0]["changes"]["survey_responses"]["created"][0]["id"] == response_id

        status = client.get(f"{PREFIX}/sync/status").json()
        assert status["survey_responses"] == {"synced": 1}
        assert status["wards"] == {"synced": 1}

    def test_pull_failure(self, client, backend):
        backend.fail_pull = True
        response = client.post(f"{PREFIX}/sync/pull")
        assert response.status_code == 502
        assert "Database unavailable" in response.json()["detail"]

        cycle = client.post(f"{PREFIX}/sync/").json()
        assert cycle["pull"] is None
        assert cycle["pull_error"] == "[500] Database unavailable"

    def test_push_and_retry_with_nothing_pending(self, client, backend):
        assert client.post(f"{PREFIX}/sync/push").json() == {"outcomes": [], "skipped": []}
        assert client.post(f"{PREFIX}/sync/retry").json() == {"outcomes": [], "skipped": []}
        assert backend.pushed == []

    def test_interrupted_syncs_reset_on_startup(self, context):
        now = datetime(2024, 5, 1, 9, 0, tzinfo=UTC)
        draft = FormResponse(
            form_id="building-survey",
            version="1.0.0",
            entity_type="building",
            started_at=now,
            last_modified_at=now,
            submitted_by="surveyor-7",
        )
        context.store.save_response("resp-1", draft)
        context.store.claim_for_sync("survey_responses", "resp-1")
        assert context.store.get_response("resp-1").sync_status == SyncStatus.SYNCING

        with TestClient(create_app(context)):
            assert context.store.get_response("resp-1").sync_status == SyncStatus.PENDING


class TestWards:
    def test_refresh_then_lookup(self, client):
        assert client.get(f"{PREFIX}/wards/").json() == []
        assert client.post(f"{PREFIX}/wards/refresh").json() == {"refreshed": 1}

        ward = client.get(f"{PREFIX}/wards/4").json()
        assert ward["wardNumber"] == 4
        assert ward["syncStatus"] == "synced"
        assert client.get(f"{PREFIX}/wards/9").status_code == 404
