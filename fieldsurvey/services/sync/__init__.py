"""Sync service — pushes local edits to the survey backend and pulls reference data.

Public API:
    - SyncManager: Per-record push passes, checkpointed pulls, full cycles.
    - RemoteClient: Async httpx client for wards and the pull/push RPC pair.
    - TokenProvider: Auth collaborator protocol (current_token, on_unauthorized).
    - StaticTokenProvider: TokenProvider for a fixed bearer token.
    - SyncReport / RecordOutcome / PullResult / SyncCycleResult: Pass results.
"""

from fieldsurvey.services.sync.client import (
    PullResponse,
    RemoteClient,
    RemoteTableChanges,
    RemoteWard,
    StaticTokenProvider,
    TokenProvider,
)
from fieldsurvey.services.sync.exceptions import (
    MalformedResponseError,
    RemoteAuthError,
    RemoteError,
    RemoteTimeoutError,
    SyncError,
    WardNotFoundError,
)
from fieldsurvey.services.sync.manager import (
    ENTITY_TABLES,
    PullResult,
    RecordOutcome,
    SyncCycleResult,
    SyncManager,
    SyncReport,
)

__all__ = [
    "ENTITY_TABLES",
    "MalformedResponseError",
    "PullResponse",
    "PullResult",
    "RecordOutcome",
    "RemoteAuthError",
    "RemoteClient",
    "RemoteError",
    "RemoteTableChanges",
    "RemoteTimeoutError",
    "RemoteWard",
    "StaticTokenProvider",
    "SyncCycleResult",
    "SyncError",
    "SyncManager",
    "SyncReport",
    "TokenProvider",
    "WardNotFoundError",
]
