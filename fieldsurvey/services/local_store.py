"""Local store — durable, queryable per-table records with sync bookkeeping.

Every mutation runs inside ``LocalStore.write()``: one transaction, serialized
by a store-wide lock, committed as a whole or rolled back as a whole. Readers
use their own sessions and see either the state before or after a write.

Timestamps: ``updated_at`` moves when a record's content changes. Sync status
flips (pending -> syncing -> synced/error) touch neither ``updated_at`` nor
``version``; ``version`` only grows when a non-draft revision is saved.
"""

import logging
import threading
from collections.abc import Callable, Generator, Iterable
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from fieldsurvey.core.exceptions import PersistenceError, RecordNotFound
from fieldsurvey.models import SurveyResponse, SyncCheckpoint
from fieldsurvey.schemas.entities import EntityModel
from fieldsurvey.schemas.responses import FormResponse, ResponseStatus, StoredResponse, SyncStatus
from fieldsurvey.services.records import REFERENCE_TABLES, TABLES, TableSpec, get_table, response_from_row, response_to_row

logger = logging.getLogger(__name__)

# Statuses meaning the device holds edits the server has not accepted yet.
UNSYNCED_STATUSES = (SyncStatus.PENDING.value, SyncStatus.SYNCING.value, SyncStatus.ERROR.value)


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class TableChanges:
    created: list[dict[str, Any]] = field(default_factory=list)
    updated: list[dict[str, Any]] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)


@dataclass
class ApplyResult:
    """Outcome of applying one pulled change set."""

    applied: dict[str, int] = field(default_factory=dict)
    deleted: dict[str, int] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)  # "table:id" entries left untouched


class LocalStore:
    def __init__(self, session_factory: sessionmaker, clock: Callable[[], datetime] = utcnow) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._write_lock = threading.RLock()

    # ------------------------------------------------------------------
    # Scoped sessions
    # ------------------------------------------------------------------

    @contextmanager
    def write(self) -> Generator[Session, None, None]:
        """One logical write: every row mutation inside commits together or not at all."""
        with self._write_lock:
            db = self._session_factory()
            try:
                yield db
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                logger.error("Local write rolled back: %s", exc)
                raise PersistenceError(f"Local write failed: {exc}") from exc
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    @contextmanager
    def read(self) -> Generator[Session, None, None]:
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Local read failed: {exc}") from exc
        finally:
            db.close()

    @contextmanager
    def _writer(self, db: Session | None) -> Generator[Session, None, None]:
        """Join the caller's write when given one, else open a new write."""
        if db is not None:
            yield db
            return
        with self.write() as session:
            yield session

    # ------------------------------------------------------------------
    # Generic typed operations
    # ------------------------------------------------------------------

    def create(
        self,
        table: str,
        entity: EntityModel,
        *,
        sync_status: SyncStatus = SyncStatus.PENDING,
        db: Session | None = None,
    ) -> EntityModel:
        spec = get_table(table)
        now = self._clock()
        with self._writer(db) as session:
            row = spec.model(**spec.to_row(entity))
            row.sync_status = sync_status.value
            row.version = entity.version if sync_status == SyncStatus.SYNCED else 1
            row.created_at = now
            row.updated_at = now
            session.add(row)
            session.flush()
            created = spec.deserialize(row)
        logger.debug("Created %s record %s", table, created.id)
        return created

    def get(self, table: str, record_id: str) -> Any:
        found = self.find(table, record_id)
        if found is None:
            raise RecordNotFound(table, record_id)
        return found

    def find(self, table: str, record_id: str) -> Any | None:
        spec = get_table(table)
        with self.read() as db:
            row = db.get(spec.model, record_id)
            return spec.deserialize(row) if row is not None else None

    def update(
        self,
        table: str,
        entity: EntityModel,
        *,
        new_revision: bool = False,
        db: Session | None = None,
    ) -> EntityModel:
        """Replace a record's content. Marks it pending; bumps version only for a new revision."""
        spec = get_table(table)
        with self._writer(db) as session:
            row = session.get(spec.model, entity.id)
            if row is None:
                raise RecordNotFound(table, entity.id)
            if _assign_content(row, spec.to_row(entity)):
                row.updated_at = self._clock()
                row.sync_status = SyncStatus.PENDING.value
                if new_revision:
                    row.version += 1
            session.flush()
            return spec.deserialize(row)

    def delete(self, table: str, record_id: str, *, db: Session | None = None) -> bool:
        spec = get_table(table)
        with self._writer(db) as session:
            row = session.get(spec.model, record_id)
            if row is None:
                return False
            session.delete(row)
        return True

    def query(self, table: str, **equals: Any) -> list[Any]:
        """Records whose columns equal every given value, oldest first."""
        spec = get_table(table)
        stmt = select(spec.model).order_by(spec.model.created_at)
        for column, value in equals.items():
            stmt = stmt.where(_column(spec, column) == value)
        with self.read() as db:
            return [spec.deserialize(row) for row in db.execute(stmt).scalars().all()]

    def search(self, table: str, column: str, text: str, **equals: Any) -> list[Any]:
        """Substring match on one column (``LIKE %text%``), optionally narrowed by equality filters."""
        spec = get_table(table)
        stmt = select(spec.model).where(_column(spec, column).contains(text, autoescape=True))
        for name, value in equals.items():
            stmt = stmt.where(_column(spec, name) == value)
        stmt = stmt.order_by(spec.model.created_at)
        with self.read() as db:
            return [spec.deserialize(row) for row in db.execute(stmt).scalars().all()]

    def count_by_sync_status(self, table: str) -> dict[str, int]:
        spec = get_table(table)
        stmt = select(spec.model.sync_status, func.count()).group_by(spec.model.sync_status)
        with self.read() as db:
            return {status: count for status, count in db.execute(stmt).all()}

    # ------------------------------------------------------------------
    # Survey responses
    # ------------------------------------------------------------------

    def save_response(self, record_id: str, response: FormResponse) -> StoredResponse:
        """Create or update the survey response row ``record_id``.

        A save whose content equals what is stored writes nothing. A changed
        save marks the row pending again; a non-draft save is a new revision.
        """
        columns = response_to_row(response)
        with self.write() as db:
            row = db.get(SurveyResponse, record_id)
            if row is None:
                now = self._clock()
                row = SurveyResponse(id=record_id, **columns)
                row.sync_status = SyncStatus.PENDING.value
                row.version = 1
                row.created_at = now
                row.updated_at = now
                db.add(row)
                logger.info("Created survey response %s (%s)", record_id, response.status.value)
            elif _assign_content(row, columns):
                row.updated_at = self._clock()
                row.sync_status = SyncStatus.PENDING.value
                if response.status != ResponseStatus.DRAFT:
                    row.version += 1
                logger.info(
                    "Updated survey response %s (%s, version %d)", record_id, response.status.value, row.version
                )
            else:
                logger.debug("Survey response %s unchanged; nothing written", record_id)
            db.flush()
            return response_from_row(row)

    def get_response(self, record_id: str) -> StoredResponse:
        with self.read() as db:
            row = db.get(SurveyResponse, record_id)
            if row is None:
                raise RecordNotFound("survey_responses", record_id)
            return response_from_row(row)

    def list_responses(
        self,
        *,
        sync_status: SyncStatus | None = None,
        status: ResponseStatus | None = None,
        survey_id: str | None = None,
    ) -> list[StoredResponse]:
        """Survey responses matching the filters. Unreadable rows are skipped with a warning."""
        stmt = select(SurveyResponse).order_by(SurveyResponse.updated_at)
        if sync_status is not None:
            stmt = stmt.where(SurveyResponse.sync_status == sync_status.value)
        if status is not None:
            stmt = stmt.where(SurveyResponse.status == status.value)
        if survey_id is not None:
            stmt = stmt.where(SurveyResponse.survey_id == survey_id)
        results: list[StoredResponse] = []
        with self.read() as db:
            for row in db.execute(stmt).scalars().all():
                try:
                    results.append(response_from_row(row))
                except Exception as exc:
                    logger.warning("Skipping unreadable survey response %s: %s", row.id, exc)
        return results

    # ------------------------------------------------------------------
    # Sync bookkeeping
    # ------------------------------------------------------------------

    def ids_with_status(self, table: str, status: SyncStatus) -> list[str]:
        spec = get_table(table)
        stmt = select(spec.model.id).where(spec.model.sync_status == status.value).order_by(spec.model.updated_at)
        with self.read() as db:
            return list(db.execute(stmt).scalars().all())

    def claim_for_sync(self, table: str, record_id: str) -> datetime | None:
        """Move a pending record to syncing.

        Returns the record's ``updated_at`` as the snapshot token for
        ``finish_sync``, or None when the record is no longer pending.
        """
        spec = get_table(table)
        with self.write() as db:
            row = db.get(spec.model, record_id)
            if row is None or row.sync_status != SyncStatus.PENDING.value:
                return None
            row.sync_status = SyncStatus.SYNCING.value
            return row.updated_at

    def finish_sync(self, table: str, record_id: str, *, success: bool, snapshot: datetime) -> SyncStatus | None:
        """Record the outcome of a push.

        If the record was edited while its push was in flight, the pushed
        content is stale and the record goes back to pending whatever the
        outcome. Returns the resulting status, or None if the row is gone.
        """
        spec = get_table(table)
        with self.write() as db:
            row = db.get(spec.model, record_id)
            if row is None:
                return None
            if row.updated_at != snapshot:
                outcome = SyncStatus.PENDING
                logger.info("%s %s changed during sync; left pending", table, record_id)
            elif success:
                outcome = SyncStatus.SYNCED
                if hasattr(row, "last_synced_at"):
                    row.last_synced_at = self._clock()
            else:
                outcome = SyncStatus.ERROR
            row.sync_status = outcome.value
            return outcome

    def set_sync_status(self, table: str, record_id: str, status: SyncStatus) -> None:
        spec = get_table(table)
        with self.write() as db:
            row = db.get(spec.model, record_id)
            if row is None:
                raise RecordNotFound(table, record_id)
            row.sync_status = status.value

    def _bulk_status_change(self, tables: Iterable[str], old: SyncStatus, new: SyncStatus) -> int:
        total = 0
        with self.write() as db:
            for table in tables:
                model = get_table(table).model
                result = db.execute(update(model).where(model.sync_status == old.value).values(sync_status=new.value))
                total += result.rowcount or 0
        return total

    def reset_interrupted_syncs(self) -> int:
        """Treat every record left in ``syncing`` (e.g. by a crash) as pending again."""
        count = self._bulk_status_change(TABLES, SyncStatus.SYNCING, SyncStatus.PENDING)
        if count:
            logger.warning("Reset %d interrupted sync(s) to pending", count)
        return count

    def requeue_errors(self, tables: Iterable[str]) -> int:
        """Make failed records eligible for the next push (error -> pending)."""
        return self._bulk_status_change(tables, SyncStatus.ERROR, SyncStatus.PENDING)

    # ------------------------------------------------------------------
    # Pull application and checkpoints
    # ------------------------------------------------------------------

    def get_checkpoint(self, name: str) -> int | None:
        with self.read() as db:
            checkpoint = db.get(SyncCheckpoint, name)
            return checkpoint.last_pulled_at if checkpoint is not None else None

    def apply_changes(self, changes: dict[str, TableChanges], *, checkpoint: str, timestamp: int) -> ApplyResult:
        """Apply a pulled change set and advance the checkpoint in the same transaction.

        Records holding unsynced local edits are never overwritten or deleted
        by a pull; they are reported in ``skipped``. Survey responses and
        unknown tables are ignored.
        """
        result = ApplyResult()
        with self.write() as db:
            for table, table_changes in changes.items():
                if table not in REFERENCE_TABLES:
                    logger.warning("Ignoring pulled changes for non-reference table '%s'", table)
                    continue
                spec = get_table(table)
                applied = 0
                for raw in [*table_changes.created, *table_changes.updated]:
                    if self._apply_record(db, spec, raw, result):
                        applied += 1
                deleted = 0
                for record_id in table_changes.deleted:
                    row = db.get(spec.model, record_id)
                    if row is None:
                        continue
                    if row.sync_status in UNSYNCED_STATUSES:
                        result.skipped.append(f"{table}:{record_id}")
                        continue
                    db.delete(row)
                    deleted += 1
                result.applied[table] = applied
                result.deleted[table] = deleted

            stored = db.get(SyncCheckpoint, checkpoint)
            if stored is None:
                db.add(SyncCheckpoint(name=checkpoint, last_pulled_at=timestamp))
            else:
                stored.last_pulled_at = timestamp
        return result

    def _apply_record(self, db: Session, spec: TableSpec, raw: dict[str, Any], result: ApplyResult) -> bool:
        try:
            entity = spec.schema.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Skipping malformed pulled %s record %r: %s", spec.name, raw.get("id"), exc)
            result.skipped.append(f"{spec.name}:{raw.get('id')}")
            return False

        now = self._clock()
        row = db.get(spec.model, entity.id)
        if row is None:
            row = spec.model(**spec.to_row(entity))
            row.created_at = entity.created_at or now
            db.add(row)
        elif row.sync_status in UNSYNCED_STATUSES:
            logger.info("Keeping local edits to %s %s over pulled version", spec.name, entity.id)
            result.skipped.append(f"{spec.name}:{entity.id}")
            return False
        else:
            _assign_content(row, spec.to_row(entity))
        row.sync_status = SyncStatus.SYNCED.value
        row.version = entity.version
        row.updated_at = now
        db.flush()
        return True


def _assign_content(row: Any, columns: dict[str, Any]) -> bool:
    """Copy content columns onto a row; return True if anything differed."""
    changed = False
    for name, value in columns.items():
        if name == "id":
            continue
        if getattr(row, name) != value:
            setattr(row, name, value)
            changed = True
    return changed


def _column(spec: TableSpec, name: str):
    attribute = "metadata_" if name == "metadata" else name
    column = getattr(spec.model, attribute, None)
    if column is None or attribute.startswith("_"):
        raise ValueError(f"Unknown column '{name}' on {spec.name}")
    return column
