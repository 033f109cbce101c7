"""Sync manager — reconciles local records with the remote store.

Push: every pending record is sent on its own. A record moves
pending -> syncing -> synced or error, and one record's failure never stops
the rest of the batch. Failed records are not retried inline; they stay in
``error`` until ``retry_failed`` or the next scheduled pass.

Pull: server changes since the stored checkpoint are applied to the
reference tables in one local write, and the checkpoint advances in that
same write. A failed apply leaves the checkpoint alone, so the same window
is pulled again next time.
"""

import asyncio
import logging

from pydantic import BaseModel, Field

from fieldsurvey.core.config import settings
from fieldsurvey.core.exceptions import FieldSurveyError, RecordDeserializationError
from fieldsurvey.schemas.responses import SyncStatus
from fieldsurvey.services.local_store import LocalStore, TableChanges
from fieldsurvey.services.records import response_to_wire
from fieldsurvey.services.sync.client import RemoteClient
from fieldsurvey.services.sync.exceptions import RemoteError, RemoteTimeoutError

logger = logging.getLogger(__name__)

RESPONSES_TABLE = "survey_responses"
ENTITY_TABLES = ("buildings", "families", "individuals", "businesses", "assets")
DEFAULT_CHECKPOINT = "default"


class RecordOutcome(BaseModel):
    table: str
    record_id: str
    status: SyncStatus
    error: str | None = None


class SyncReport(BaseModel):
    """Per-record result of one push pass."""

    outcomes: list[RecordOutcome] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)  # "table:id" already in flight or no longer pending

    @property
    def synced(self) -> list[str]:
        return [o.record_id for o in self.outcomes if o.status == SyncStatus.SYNCED]

    @property
    def failed(self) -> list[str]:
        return [o.record_id for o in self.outcomes if o.status == SyncStatus.ERROR]

    def merge(self, other: "SyncReport") -> "SyncReport":
        return SyncReport(outcomes=[*self.outcomes, *other.outcomes], skipped=[*self.skipped, *other.skipped])


class PullResult(BaseModel):
    timestamp: int
    applied: dict[str, int] = Field(default_factory=dict)
    deleted: dict[str, int] = Field(default_factory=dict)
    skipped: list[str] = Field(default_factory=list)


class SyncCycleResult(BaseModel):
    push: SyncReport
    pull: PullResult | None = None
    pull_error: str | None = None


class SyncManager:
    """Push/pull orchestration over an injected store and remote client.

    Usage::

        manager = SyncManager(store, RemoteClient(auth=provider))
        report = await manager.sync_pending_forms()
        cycle = await manager.sync_all()
    """

    def __init__(
        self,
        store: LocalStore,
        client: RemoteClient,
        *,
        push_timeout: float | None = None,
        schema_version: int | None = None,
        checkpoint: str = DEFAULT_CHECKPOINT,
    ) -> None:
        self._store = store
        self._client = client
        self._push_timeout = push_timeout if push_timeout is not None else settings.SYNC_PUSH_TIMEOUT_SECONDS
        self._schema_version = schema_version if schema_version is not None else settings.SYNC_SCHEMA_VERSION
        self._checkpoint = checkpoint
        self._in_flight: set[tuple[str, str]] = set()
        self._pull_lock = asyncio.Lock()

    @property
    def in_flight(self) -> frozenset[tuple[str, str]]:
        return frozenset(self._in_flight)

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    async def sync_pending_forms(self) -> SyncReport:
        """Push every pending survey response, one record at a time."""
        return await self._push_table(RESPONSES_TABLE)

    async def sync_pending_entities(self, tables: tuple[str, ...] = ENTITY_TABLES) -> SyncReport:
        report = SyncReport()
        for table in tables:
            report = report.merge(await self._push_table(table))
        return report

    async def retry_failed(self) -> SyncReport:
        """Requeue records in ``error`` and run a push pass over them."""
        count = self._store.requeue_errors((RESPONSES_TABLE, *ENTITY_TABLES))
        logger.info("Requeued %d failed record(s) for sync", count)
        forms = await self.sync_pending_forms()
        return forms.merge(await self.sync_pending_entities())

    async def _push_table(self, table: str) -> SyncReport:
        report = SyncReport()
        record_ids = self._store.ids_with_status(table, SyncStatus.PENDING)
        if not record_ids:
            return report
        logger.info("Pushing %d pending %s record(s)", len(record_ids), table)
        last_pulled_at = self._store.get_checkpoint(self._checkpoint)
        for record_id in record_ids:
            await self._push_one(table, record_id, last_pulled_at, report)
        logger.info(
            "Push of %s finished: %d synced, %d failed, %d skipped",
            table,
            len(report.synced),
            len(report.failed),
            len(report.skipped),
        )
        return report

    def _payload(self, table: str, record_id: str) -> tuple[str, dict]:
        """Wire payload for one record and the change bucket it belongs in."""
        if table == RESPONSES_TABLE:
            stored = self._store.get_response(record_id)
            bucket = "created" if stored.last_synced_at is None else "updated"
            return bucket, response_to_wire(stored)
        entity = self._store.get(table, record_id)
        return "updated", entity.model_dump(mode="json", by_alias=True)

    async def _push_one(self, table: str, record_id: str, last_pulled_at: int | None, report: SyncReport) -> None:
        key = (table, record_id)
        if key in self._in_flight:
            report.skipped.append(f"{table}:{record_id}")
            return
        self._in_flight.add(key)
        try:
            try:
                snapshot = self._store.claim_for_sync(table, record_id)
            except FieldSurveyError as exc:
                logger.error("Could not claim %s %s for sync: %s", table, record_id, exc)
                report.skipped.append(f"{table}:{record_id}")
                return
            if snapshot is None:
                report.skipped.append(f"{table}:{record_id}")
                return

            error: str | None = None
            try:
                bucket, payload = self._payload(table, record_id)
            except RecordDeserializationError as exc:
                logger.warning("Skipping unreadable %s record %s: %s", table, record_id, exc)
                error = str(exc)
            else:
                error = await self._send(table, record_id, bucket, payload, last_pulled_at)

            try:
                status = self._store.finish_sync(table, record_id, success=error is None, snapshot=snapshot)
            except FieldSurveyError as exc:
                # Left in syncing; reset to pending on next startup.
                logger.error("Could not record sync outcome for %s %s: %s", table, record_id, exc)
                report.outcomes.append(
                    RecordOutcome(table=table, record_id=record_id, status=SyncStatus.SYNCING, error=str(exc))
                )
                return
            if status is not None:
                report.outcomes.append(RecordOutcome(table=table, record_id=record_id, status=status, error=error))
        finally:
            self._in_flight.discard(key)

    async def _send(self, table: str, record_id: str, bucket: str, payload: dict, last_pulled_at: int | None) -> str | None:
        """Push one record. Returns an error message, or None on success."""
        changes = {table: {"created": [], "updated": [], "deleted": []}}
        changes[table][bucket].append(payload)
        try:
            await asyncio.wait_for(self._client.push(changes, last_pulled_at), timeout=self._push_timeout)
        except asyncio.TimeoutError:
            message = str(RemoteTimeoutError(f"push {table}:{record_id}", self._push_timeout))
            logger.warning("Push of %s %s failed: %s", table, record_id, message)
            return message
        except RemoteError as exc:
            logger.warning("Push of %s %s failed: %s", table, record_id, exc)
            return str(exc)
        except Exception as exc:
            logger.exception("Unexpected error pushing %s %s", table, record_id)
            return f"Unexpected error: {exc}"
        logger.debug("Pushed %s %s (%s)", table, record_id, bucket)
        return None

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    async def pull_changes(self) -> PullResult:
        """Fetch and apply server changes since the checkpoint.

        Raises:
            RemoteError: If the server call fails; nothing is applied.
            PersistenceError: If the local apply fails; the checkpoint is unchanged.
        """
        async with self._pull_lock:
            last_pulled_at = self._store.get_checkpoint(self._checkpoint)
            try:
                pulled = await asyncio.wait_for(
                    self._client.pull(last_pulled_at, self._schema_version),
                    timeout=self._push_timeout,
                )
            except asyncio.TimeoutError as exc:
                raise RemoteTimeoutError("pull", self._push_timeout) from exc

            timestamp = pulled.timestamp
            if last_pulled_at is not None and timestamp < last_pulled_at:
                logger.warning("Server timestamp %d is behind checkpoint %d; keeping checkpoint", timestamp, last_pulled_at)
                timestamp = last_pulled_at

            changes = {
                table: TableChanges(created=remote.created, updated=remote.updated, deleted=remote.deleted)
                for table, remote in pulled.changes.items()
            }
            applied = self._store.apply_changes(changes, checkpoint=self._checkpoint, timestamp=timestamp)
            logger.info(
                "Pulled changes up to %d: applied %s, deleted %s, %d skipped",
                timestamp,
                applied.applied,
                applied.deleted,
                len(applied.skipped),
            )
            return PullResult(
                timestamp=timestamp,
                applied=applied.applied,
                deleted=applied.deleted,
                skipped=applied.skipped,
            )

    # ------------------------------------------------------------------
    # Full cycle
    # ------------------------------------------------------------------

    async def sync_all(self) -> SyncCycleResult:
        """Push local edits first, then pull, so a pull never lands on unpushed work."""
        push = await self.sync_pending_forms()
        push = push.merge(await self.sync_pending_entities())
        try:
            pull = await self.pull_changes()
        except (RemoteError, FieldSurveyError) as exc:
            logger.warning("Pull failed; will retry next cycle: %s", exc)
            return SyncCycleResult(push=push, pull_error=str(exc))
        return SyncCycleResult(push=push, pull=pull)
