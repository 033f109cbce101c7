"""In-memory state of the forms a surveyor currently has open.

One ``FormState`` is created by the application and handed to the form
runtime, the autosave manager and the API layer. It holds the live values
and the dirty-path bookkeeping per form; it never touches storage.
"""

import copy
import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from fieldsurvey.schemas.forms import EntityType
from fieldsurvey.schemas.responses import GeoLocation, MediaBundle, ResponseStatus

logger = logging.getLogger(__name__)


class FormNotOpenError(KeyError):
    """Raised when an operation names a form that has no open draft."""

    def __init__(self, form_id: str) -> None:
        self.form_id = form_id
        super().__init__(f"Form '{form_id}' is not open")


@dataclass
class FormDraft:
    """Everything entered so far for one open form."""

    form_id: str
    entity_type: EntityType
    entity_id: str
    response_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    values: dict[str, Any] = field(default_factory=dict)
    current_step: int = 0
    status: ResponseStatus = ResponseStatus.DRAFT
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_modified_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    location: GeoLocation | None = None
    media: MediaBundle = field(default_factory=MediaBundle)
    metadata: dict[str, Any] = field(default_factory=dict)


def set_path(target: dict[str, Any], path: str, value: Any) -> None:
    """Assign ``value`` at a dotted path, creating intermediate mappings."""
    *parents, leaf = path.split(".")
    current = target
    for segment in parents:
        child = current.get(segment)
        if not isinstance(child, dict):
            child = {}
            current[segment] = child
        current = child
    current[leaf] = value


class FormState:
    def __init__(self) -> None:
        self._drafts: dict[str, FormDraft] = {}
        self._dirty: dict[str, set[str]] = {}

    def open(
        self,
        form_id: str,
        entity_type: EntityType,
        entity_id: str = "",
        *,
        values: dict[str, Any] | None = None,
        response_id: str | None = None,
        started_at: datetime | None = None,
    ) -> FormDraft:
        """Open (or reopen) a form. Reopening an open form keeps its draft."""
        existing = self._drafts.get(form_id)
        if existing is not None:
            return existing
        draft = FormDraft(form_id=form_id, entity_type=entity_type, entity_id=entity_id)
        if values:
            draft.values = copy.deepcopy(values)
        if response_id:
            draft.response_id = response_id
        if started_at:
            draft.started_at = started_at
        self._drafts[form_id] = draft
        self._dirty[form_id] = set()
        logger.info("Opened form %s (response %s)", form_id, draft.response_id)
        return draft

    def get(self, form_id: str) -> FormDraft:
        draft = self._drafts.get(form_id)
        if draft is None:
            raise FormNotOpenError(form_id)
        return draft

    def is_open(self, form_id: str) -> bool:
        return form_id in self._drafts

    def open_forms(self) -> list[str]:
        return list(self._drafts)

    def snapshot(self, form_id: str) -> dict[str, Any]:
        """A deep copy of the current values, safe to hand to evaluators and serializers."""
        return copy.deepcopy(self.get(form_id).values)

    def set_value(self, form_id: str, path: str, value: Any) -> None:
        draft = self.get(form_id)
        set_path(draft.values, path, value)
        draft.last_modified_at = datetime.now(UTC)
        self.mark_dirty(form_id, path)

    # -- dirty tracking ------------------------------------------------------

    def mark_dirty(self, form_id: str, path: str) -> None:
        self.get(form_id)
        self._dirty[form_id].add(path)

    def dirty_fields(self, form_id: str) -> frozenset[str]:
        return frozenset(self._dirty.get(form_id, ()))

    def is_dirty(self, form_id: str) -> bool:
        return bool(self._dirty.get(form_id))

    def clear_dirty(self, form_id: str, paths: frozenset[str] | set[str] | None = None) -> None:
        """Clear all dirty paths, or only ``paths`` (those captured by a save that just finished)."""
        dirty = self._dirty.get(form_id)
        if dirty is None:
            return
        if paths is None:
            dirty.clear()
        else:
            dirty.difference_update(paths)

    def close(self, form_id: str) -> None:
        self._drafts.pop(form_id, None)
        self._dirty.pop(form_id, None)
        logger.info("Closed form %s", form_id)
