"""Tests for the sync manager — per-record push passes, pulls and full cycles."""

import asyncio
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from fieldsurvey.models import SurveyResponse
from fieldsurvey.schemas.entities import Building, BuildingAddress
from fieldsurvey.schemas.responses import FormResponse, GeoLocation, ResponseStatus, SyncStatus
from fieldsurvey.services.scheduler import run_sync_cycle, sync_loop
from fieldsurvey.services.sync import (
    PullResponse,
    RemoteError,
    RemoteTableChanges,
    RemoteTimeoutError,
    SyncCycleResult,
    SyncManager,
    SyncReport,
)

FIXED_AT = datetime(2024, 4, 20, 8, 15, tzinfo=UTC)
WARD_4 = {
    "id": "ward-4",
    "wardNumber": 4,
    "wardAreaCode": 44604,
    "geometry": {"type": "Polygon", "coordinates": [[[85.3, 27.7], [85.31, 27.7], [85.3, 27.7]]]},
}


def completed_response(note: str | None = None) -> FormResponse:
    return FormResponse(
        form_id="building-survey",
        version="1.0.0",
        entity_type="building",
        entity_id="bld-1",
        status=ResponseStatus.COMPLETED,
        started_at=FIXED_AT,
        completed_at=FIXED_AT,
        last_modified_at=FIXED_AT,
        submitted_by="surveyor-7",
        metadata={"note": note} if note else None,
    )


def queue_responses(store, count: int) -> list[str]:
    ids = [f"resp-{i}" for i in range(count)]
    for record_id in ids:
        store.save_response(record_id, completed_response())
    return ids


def pushed_ids(push: AsyncMock, table: str = "survey_responses") -> list[str]:
    ids = []
    for call in push.await_args_list:
        buckets = call.args[0][table]
        ids.extend(item["id"] for item in buckets["created"] + buckets["updated"])
    return ids


@pytest.fixture
def client():
    remote = MagicMock()
    remote.push = AsyncMock(return_value=None)
    remote.pull = AsyncMock(return_value=PullResponse(changes={}, timestamp=1000))
    return remote


@pytest.fixture
def manager(store, client):
    return SyncManager(store, client, push_timeout=1, schema_version=1)


# ---------------------------------------------------------------------------
# Push
# ---------------------------------------------------------------------------


class TestPush:
    @pytest.mark.asyncio
    async def test_partial_failure_isolated_per_record(self, manager, client, store):
        ids = queue_responses(store, 5)
        failing = {"resp-1", "resp-3"}

        def push(changes, last_pulled_at):
            record_id = changes["survey_responses"]["created"][0]["id"]
            if record_id in failing:
                raise RemoteError(500, "Something went wrong")

        client.push.side_effect = push
        report = await manager.sync_pending_forms()

        assert client.push.await_count == 5
        assert sorted(report.failed) == sorted(failing)
        assert sorted(report.synced) == sorted(set(ids) - failing)
        assert store.ids_with_status("survey_responses", SyncStatus.PENDING) == []
        assert sorted(store.ids_with_status("survey_responses", SyncStatus.ERROR)) == sorted(failing)
        errors = {o.record_id: o.error for o in report.outcomes if o.error}
        assert errors["resp-1"] == "[500] Something went wrong"

    @pytest.mark.asyncio
    async def test_nothing_pending_means_no_requests(self, manager, client):
        report = await manager.sync_pending_forms()
        assert report.outcomes == []
        client.push.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_first_push_is_created_then_updated(self, manager, client, store):
        queue_responses(store, 1)
        await manager.sync_pending_forms()
        changes, last_pulled_at = client.push.await_args.args
        assert [item["id"] for item in changes["survey_responses"]["created"]] == ["resp-0"]
        assert changes["survey_responses"]["updated"] == []
        assert last_pulled_at is None

        store.save_response("resp-0", completed_response(note="corrected"))
        await manager.sync_pending_forms()
        changes, _ = client.push.await_args.args
        assert changes["survey_responses"]["created"] == []
        updated = changes["survey_responses"]["updated"][0]
        assert updated["id"] == "resp-0"
        assert updated["revision"] == 2
        assert updated["status"] == "completed"

    @pytest.mark.asyncio
    async def test_timeout_marks_record_error(self, store, client):
        queue_responses(store, 1)

        async def hang(changes, last_pulled_at):
            await asyncio.sleep(5)

        client.push.side_effect = hang
        manager = SyncManager(store, client, push_timeout=0.05, schema_version=1)
        report = await manager.sync_pending_forms()

        assert report.failed == ["resp-0"]
        assert "timed out" in report.outcomes[0].error
        assert store.get_response("resp-0").sync_status == SyncStatus.ERROR

    @pytest.mark.asyncio
    async def test_unreadable_record_fails_without_request(self, manager, client, store):
        queue_responses(store, 2)
        with store.write() as db:
            db.get(SurveyResponse, "resp-0").responses = "{not json"

        report = await manager.sync_pending_forms()
        assert report.failed == ["resp-0"]
        assert report.synced == ["resp-1"]
        assert pushed_ids(client.push) == ["resp-1"]

    @pytest.mark.asyncio
    async def test_concurrent_passes_never_double_push(self, manager, client, store):
        ids = queue_responses(store, 3)

        async def slow_push(changes, last_pulled_at):
            await asyncio.sleep(0.01)

        client.push.side_effect = slow_push
        first, second = await asyncio.gather(manager.sync_pending_forms(), manager.sync_pending_forms())

        assert sorted(pushed_ids(client.push)) == ids
        assert sorted(first.synced + second.synced) == ids
        assert manager.in_flight == frozenset()

    @pytest.mark.asyncio
    async def test_edit_during_push_stays_pending(self, manager, client, store):
        queue_responses(store, 1)

        async def push_while_editing(changes, last_pulled_at):
            store.save_response("resp-0", completed_response(note="edited mid-push"))

        client.push.side_effect = push_while_editing
        report = await manager.sync_pending_forms()

        assert report.outcomes[0].status == SyncStatus.PENDING
        assert report.synced == []
        stored = store.get_response("resp-0")
        assert stored.sync_status == SyncStatus.PENDING
        assert stored.response.metadata == {"note": "edited mid-push"}

    @pytest.mark.asyncio
    async def test_retry_failed_requeues_errors(self, manager, client, store):
        queue_responses(store, 1)
        client.push.side_effect = [RemoteError(503, "Service unavailable"), None]

        assert (await manager.sync_pending_forms()).failed == ["resp-0"]
        # A plain pass leaves errored records alone
        assert (await manager.sync_pending_forms()).outcomes == []

        report = await manager.retry_failed()
        assert report.synced == ["resp-0"]
        assert store.get_response("resp-0").sync_status == SyncStatus.SYNCED

    @pytest.mark.asyncio
    async def test_entities_pushed_as_updates(self, manager, client, store):
        store.create(
            "buildings",
            Building(
                id="bld-1",
                address=BuildingAddress(ward=4, tole="Baneshwor"),
                location=GeoLocation(latitude=27.69, longitude=85.34, timestamp=FIXED_AT),
                building_type="commercial",
                construction_type="rcc",
                total_floors=5,
            ),
        )
        report = await manager.sync_pending_entities()

        assert report.synced == ["bld-1"]
        changes, _ = client.push.await_args.args
        assert changes["buildings"]["created"] == []
        assert changes["buildings"]["updated"][0]["buildingType"] == "commercial"
        assert store.get("buildings", "bld-1").sync_status == SyncStatus.SYNCED


# ---------------------------------------------------------------------------
# Pull
# ---------------------------------------------------------------------------


class TestPull:
    @pytest.mark.asyncio
    async def test_pull_applies_and_advances_checkpoint(self, manager, client, store):
        client.pull.return_value = PullResponse(
            changes={"wards": RemoteTableChanges(created=[WARD_4])}, timestamp=1714550400000
        )
        result = await manager.pull_changes()

        assert result.applied == {"wards": 1}
        assert result.timestamp == 1714550400000
        assert store.get("wards", "ward-4").ward_area_code == 44604
        client.pull.assert_awaited_once_with(None, 1)

        client.pull.return_value = PullResponse(changes={}, timestamp=1714550500000)
        await manager.pull_changes()
        client.pull.assert_awaited_with(1714550400000, 1)
        assert store.get_checkpoint("default") == 1714550500000

    @pytest.mark.asyncio
    async def test_remote_failure_leaves_checkpoint(self, manager, client, store):
        await manager.pull_changes()
        client.pull.side_effect = RemoteError(500, "Something went wrong")
        with pytest.raises(RemoteError):
            await manager.pull_changes()
        assert store.get_checkpoint("default") == 1000

    @pytest.mark.asyncio
    async def test_checkpoint_never_moves_backwards(self, manager, client, store):
        await manager.pull_changes()
        client.pull.return_value = PullResponse(changes={}, timestamp=10)
        result = await manager.pull_changes()
        assert result.timestamp == 1000
        assert store.get_checkpoint("default") == 1000

    @pytest.mark.asyncio
    async def test_pull_timeout(self, store, client):
        async def hang(last_pulled_at, schema_version):
            await asyncio.sleep(5)

        client.pull.side_effect = hang
        manager = SyncManager(store, client, push_timeout=0.05, schema_version=1)
        with pytest.raises(RemoteTimeoutError):
            await manager.pull_changes()
        assert store.get_checkpoint("default") is None


# ---------------------------------------------------------------------------
# Full cycle
# ---------------------------------------------------------------------------


class TestSyncAll:
    @pytest.mark.asyncio
    async def test_push_runs_before_pull(self, manager, client, store):
        queue_responses(store, 1)
        calls = []

        async def push(changes, last_pulled_at):
            calls.append("push")

        async def pull(last_pulled_at, schema_version):
            calls.append("pull")
            return PullResponse(changes={}, timestamp=2000)

        client.push.side_effect = push
        client.pull.side_effect = pull
        cycle = await manager.sync_all()

        assert calls == ["push", "pull"]
        assert cycle.push.synced == ["resp-0"]
        assert cycle.pull.timestamp == 2000
        assert cycle.pull_error is None

    @pytest.mark.asyncio
    async def test_pull_failure_is_reported_not_raised(self, manager, client, store):
        queue_responses(store, 1)
        client.pull.side_effect = RemoteError(502, "Bad gateway")
        cycle = await manager.sync_all()
        assert cycle.push.synced == ["resp-0"]
        assert cycle.pull is None
        assert cycle.pull_error == "[502] Bad gateway"


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class TestSyncLoop:
    @pytest.mark.asyncio
    async def test_loop_survives_failed_cycle(self):
        manager = MagicMock()
        manager.sync_all = AsyncMock(side_effect=[RuntimeError("store locked"), SyncCycleResult(push=SyncReport())] * 10)

        task = asyncio.create_task(sync_loop(manager, interval=0.01))
        await asyncio.sleep(0.15)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert manager.sync_all.await_count >= 2

    @pytest.mark.asyncio
    async def test_run_sync_cycle(self, manager, client, store):
        queue_responses(store, 1)
        await run_sync_cycle(manager)
        assert store.get_response("resp-0").sync_status == SyncStatus.SYNCED
        client.pull.assert_awaited_once()
