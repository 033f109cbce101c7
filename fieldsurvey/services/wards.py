"""Wards — remote lookup and the full local refresh of the ward table."""

import logging

from sqlalchemy import delete

from fieldsurvey.models import Ward as WardRow
from fieldsurvey.schemas.entities import Ward
from fieldsurvey.schemas.responses import SyncStatus
from fieldsurvey.services.local_store import LocalStore
from fieldsurvey.services.sync.client import RemoteClient, RemoteWard
from fieldsurvey.services.sync.exceptions import WardNotFoundError

logger = logging.getLogger(__name__)


def ward_from_remote(remote: RemoteWard) -> Ward:
    return Ward(
        id=remote.id or f"ward-{remote.ward_number}",
        sync_status=SyncStatus.SYNCED,
        ward_number=remote.ward_number,
        ward_area_code=remote.ward_area_code,
        geometry=remote.geometry,
    )


class WardService:
    def __init__(self, store: LocalStore, client: RemoteClient) -> None:
        self._store = store
        self._client = client

    async def fetch_ward(self, ward_number: int) -> Ward:
        """Fetch one ward from the server. Raises WardNotFoundError on 404."""
        return ward_from_remote(await self._client.get_ward(ward_number))

    async def refresh(self) -> int:
        """Replace the local ward table with the server's list in one write.

        The old rows are only removed if the new list is stored too.
        """
        wards = [ward_from_remote(remote) for remote in await self._client.get_wards()]
        with self._store.write() as db:
            db.execute(delete(WardRow))
            for ward in wards:
                self._store.create("wards", ward, sync_status=SyncStatus.SYNCED, db=db)
        logger.info("Refreshed %d ward(s) from the server", len(wards))
        return len(wards)

    def local_wards(self) -> list[Ward]:
        return sorted(self._store.query("wards"), key=lambda ward: ward.ward_number)

    def local_ward(self, ward_number: int) -> Ward:
        matches = self._store.query("wards", ward_number=ward_number)
        if not matches:
            raise WardNotFoundError(ward_number)
        return matches[0]
