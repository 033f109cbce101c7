"""Form runtime — step navigation, visibility, validation gating and submission.

A ``FormController`` drives one open form. Values live in the injected
``FormState``; visibility comes from a ``DependencyIndex`` refreshed on
every value change; drafts and submissions are persisted through the
``LocalStore``.

Usage::

    controller = FormController(config, state, store, submitted_by="surveyor-7")
    controller.set_value("buildingType", "residential")
    result = controller.go_next()
    if not result.ok:
        show(result.errors)
    ...
    outcome = controller.submit()
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal, Protocol

from fieldsurvey.core.exceptions import FieldSurveyError
from fieldsurvey.schemas.forms import BaseField, FormConfig, FormSection, FormStep
from fieldsurvey.schemas.responses import (
    AudioAsset,
    FieldResponse,
    FieldResponseMeta,
    FormResponse,
    GeoLocation,
    ImageAsset,
    MediaBundle,
    ResponseStatus,
    SectionResponse,
    StepResponse,
    StoredResponse,
)
from fieldsurvey.services.autosave import AutoSaveManager
from fieldsurvey.services.dependencies import MISSING, DependencyIndex, element_key, resolve_path
from fieldsurvey.services.form_state import FormDraft, FormState, set_path
from fieldsurvey.services.local_store import LocalStore
from fieldsurvey.services.validation import FieldErrors, validate_field

logger = logging.getLogger(__name__)

HIDDEN_BY_DEPENDENCY = "hidden_by_dependency"
LOCATION_ERROR_KEY = "location"
CURRENT_STEP_KEY = "currentStep"  # response metadata key holding the step a draft was left on


class FormSubmittedError(FieldSurveyError):
    """Raised when a session that already submitted its response is asked to save again."""

    def __init__(self, form_id: str, response_id: str) -> None:
        self.form_id = form_id
        self.response_id = response_id
        super().__init__(f"Response '{response_id}' of form '{form_id}' was already submitted")


class LocationProvider(Protocol):
    """Device capability returning the current position."""

    def current_location(self) -> Awaitable[GeoLocation]: ...


@dataclass
class StepResult:
    """Outcome of a step transition attempt."""

    ok: bool
    step_index: int
    errors: FieldErrors = field(default_factory=dict)


@dataclass
class SubmitResult:
    ok: bool
    errors: FieldErrors = field(default_factory=dict)
    failed_step: int | None = None
    failed_field: str | None = None
    record: StoredResponse | None = None


def _utcnow() -> datetime:
    return datetime.now(UTC)


class FormController:
    def __init__(
        self,
        config: FormConfig,
        state: FormState,
        store: LocalStore,
        submitted_by: str,
        *,
        entity_id: str = "",
        autosave: AutoSaveManager | None = None,
        resume: StoredResponse | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config
        self.state = state
        self.store = store
        self.submitted_by = submitted_by
        self.autosave = autosave
        self._clock = clock
        self._index = DependencyIndex(config)
        self._submitted = False

        if resume is not None:
            self._draft = self._reopen(resume)
        else:
            self._draft = state.open(config.id, config.type, entity_id, values=self._default_values())
        self._index.recompute(self._draft.values)
        if resume is not None:
            self._restore_step(resume.response.metadata)

    @property
    def form_id(self) -> str:
        return self.config.id

    @property
    def draft(self) -> FormDraft:
        return self._draft

    @property
    def response_id(self) -> str:
        return self._draft.response_id

    @property
    def submitted(self) -> bool:
        """True once this session has submitted its response."""
        return self._submitted

    def _default_values(self) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for _, _, _, form_field in self.config.iter_fields():
            if form_field.default_value is not None:
                set_path(values, form_field.id, form_field.default_value)
        return values

    def _reopen(self, stored: StoredResponse) -> FormDraft:
        """Rebuild the in-memory draft from a stored response.

        Values of fields that were hidden when the response was saved are
        restored too, so they reappear if the field becomes visible again.
        """
        response = stored.response
        values: dict[str, Any] = {}
        for step in response.steps:
            for section in step.sections:
                for stored_field in section.fields:
                    if stored_field.value is not None:
                        set_path(values, stored_field.field_id, stored_field.value)
        draft = self.state.open(
            self.config.id,
            response.entity_type,
            response.entity_id,
            values=values,
            response_id=stored.id,
            started_at=response.started_at,
        )
        draft.status = response.status
        draft.completed_at = response.completed_at
        draft.last_modified_at = response.last_modified_at
        draft.location = response.location
        if response.media is not None:
            draft.media = response.media.model_copy(deep=True)
        if response.metadata:
            draft.metadata = {k: v for k, v in response.metadata.items() if k != CURRENT_STEP_KEY}
        logger.info("Resumed response %s for form %s", stored.id, self.config.id)
        return draft

    def _restore_step(self, metadata: dict[str, Any] | None) -> None:
        step = (metadata or {}).get(CURRENT_STEP_KEY)
        if isinstance(step, bool) or not isinstance(step, int) or not 0 <= step < self.total_steps:
            return
        # The saved step may have been hidden since; fall back to the nearest visible one before it
        for index in range(step, -1, -1):
            if self.is_step_visible(self.config.steps[index]):
                self._draft.current_step = index
                return

    # ------------------------------------------------------------------
    # Values and visibility
    # ------------------------------------------------------------------

    def set_value(self, path: str, value: Any) -> dict[str, bool]:
        """Update one value and return the elements whose visibility flipped."""
        self.state.set_value(self.form_id, path, value)
        changed = self._index.refresh(path, self._draft.values)
        if changed:
            logger.debug("Visibility changed on %s: %s", self.form_id, changed)
        return changed

    def get_value(self, path: str) -> Any:
        value = resolve_path(self._draft.values, path)
        return None if value is MISSING else value

    def is_step_visible(self, step: FormStep) -> bool:
        return self._index.is_visible(element_key("step", step.id))

    def is_section_visible(self, step: FormStep, section: FormSection) -> bool:
        return self._index.is_visible(element_key("section", step.id, section.id))

    def is_field_visible(self, form_field: BaseField) -> bool:
        return not form_field.hidden and self._index.is_visible(element_key("field", form_field.id))

    def visible_steps(self) -> list[FormStep]:
        return [step for step in self.config.steps if self.is_step_visible(step)]

    def visible_sections(self, step: FormStep | int) -> list[FormSection]:
        if isinstance(step, int):
            step = self.config.steps[step]
        return [section for section in step.sections if self.is_section_visible(step, section)]

    def visible_fields(self, section: FormSection) -> list[BaseField]:
        return [form_field for form_field in section.fields if self.is_field_visible(form_field)]

    def _active_fields(self, step_index: int) -> list[BaseField]:
        """Fields that count for validation: visible, in a visible section of a visible step."""
        step = self.config.steps[step_index]
        if not self.is_step_visible(step):
            return []
        return [
            form_field
            for section in self.visible_sections(step)
            for form_field in self.visible_fields(section)
        ]

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    @property
    def current_step(self) -> int:
        return self._draft.current_step

    @property
    def total_steps(self) -> int:
        return self.config.total_steps

    @property
    def progress(self) -> float:
        return (self.current_step + 1) / self.total_steps

    def validate_step(self, step_index: int) -> FieldErrors:
        errors: FieldErrors = {}
        for form_field in self._active_fields(step_index):
            messages = validate_field(form_field, self.get_value(form_field.id))
            if messages:
                errors[form_field.id] = messages
        return errors

    def go_next(self) -> StepResult:
        """Validate the current step and move to the next visible one.

        At the last step a valid call leaves the index where it is.
        """
        errors = self.validate_step(self.current_step)
        if errors:
            logger.debug("Step %d of %s blocked by %d invalid field(s)", self.current_step, self.form_id, len(errors))
            return StepResult(ok=False, step_index=self.current_step, errors=errors)

        for index in range(self.current_step + 1, self.total_steps):
            if self.is_step_visible(self.config.steps[index]):
                self._draft.current_step = index
                break
        return StepResult(ok=True, step_index=self.current_step)

    def go_previous(self) -> StepResult:
        for index in range(self.current_step - 1, -1, -1):
            if self.is_step_visible(self.config.steps[index]):
                self._draft.current_step = index
                break
        return StepResult(ok=True, step_index=self.current_step)

    # ------------------------------------------------------------------
    # Location and media
    # ------------------------------------------------------------------

    async def capture_location(self, provider: LocationProvider) -> GeoLocation | None:
        """Ask the device for a fix and attach it. A failed fix is logged and returns None."""
        try:
            location = await provider.current_location()
        except Exception as exc:
            logger.warning("Location capture failed for %s: %s", self.form_id, exc)
            return None
        self._draft.location = location
        self._draft.last_modified_at = self._clock()
        self.state.mark_dirty(self.form_id, LOCATION_ERROR_KEY)
        return location

    def attach_media(self, kind: Literal["image", "audio", "file"], asset: ImageAsset | AudioAsset | str) -> None:
        media = self._draft.media
        match kind:
            case "image":
                media.images.append(asset)
            case "audio":
                media.audio.append(asset)
            case "file":
                media.files.append(asset)
        self._draft.last_modified_at = self._clock()
        self.state.mark_dirty(self.form_id, f"media.{kind}")

    # ------------------------------------------------------------------
    # Response assembly and persistence
    # ------------------------------------------------------------------

    def build_response(self, status: ResponseStatus | None = None) -> FormResponse:
        """Assemble the response tree from the live values.

        Fields hidden by a dependency (directly or through their section or
        step) are kept with ``meta.skipped`` so the server sees why they are
        empty.
        """
        draft = self._draft
        steps: list[StepResponse] = []
        for step in self.config.steps:
            step_visible = self.is_step_visible(step)
            sections: list[SectionResponse] = []
            for section in step.sections:
                section_visible = step_visible and self.is_section_visible(step, section)
                fields: list[FieldResponse] = []
                for form_field in section.fields:
                    visible = section_visible and self._index.is_visible(element_key("field", form_field.id))
                    meta = None if visible else FieldResponseMeta(skipped=True, skip_reason=HIDDEN_BY_DEPENDENCY)
                    fields.append(FieldResponse(field_id=form_field.id, value=self.get_value(form_field.id), meta=meta))
                sections.append(SectionResponse(section_id=section.id, fields=fields))
            steps.append(StepResponse(step_id=step.id, sections=sections))

        metadata = dict(draft.metadata)
        if draft.current_step:
            metadata[CURRENT_STEP_KEY] = draft.current_step

        return FormResponse(
            form_id=self.config.id,
            version=self.config.version,
            entity_type=draft.entity_type,
            entity_id=draft.entity_id,
            steps=steps,
            status=status or draft.status,
            location=draft.location,
            started_at=draft.started_at,
            completed_at=draft.completed_at,
            last_modified_at=draft.last_modified_at,
            submitted_by=self.submitted_by,
            media=None if draft.media.is_empty() else draft.media.model_copy(deep=True),
            metadata=metadata or None,
        )

    def save_draft(self) -> StoredResponse:
        """Persist the current values as a draft, without validation.

        Only the dirty paths captured before the write are cleared, so a value
        changed while saving stays dirty. Saving unchanged content writes nothing.
        A resumed completed response goes back to draft until it is submitted
        again.

        Raises:
            FormSubmittedError: If this session already submitted the response.
        """
        if self._submitted:
            raise FormSubmittedError(self.form_id, self.response_id)
        draft = self._draft
        if draft.status != ResponseStatus.DRAFT:
            draft.status = ResponseStatus.DRAFT
            draft.completed_at = None
        captured = self.state.dirty_fields(self.form_id)
        stored = self.store.save_response(self.response_id, self.build_response(ResponseStatus.DRAFT))
        self.state.clear_dirty(self.form_id, captured)
        return stored

    def validate_all(self) -> tuple[FieldErrors, int | None, str | None]:
        """Validate every visible step. Returns (errors, first failing step, first failing field)."""
        errors: FieldErrors = {}
        first_step: int | None = None
        first_field: str | None = None
        for index in range(self.total_steps):
            step_errors = self.validate_step(index)
            if step_errors and first_step is None:
                first_step = index
                first_field = next(iter(step_errors))
            errors.update(step_errors)
        if self.config.settings.require_location and self._draft.location is None:
            errors[LOCATION_ERROR_KEY] = ["Location is required"]
            if first_step is None:
                first_step = self.current_step
                first_field = LOCATION_ERROR_KEY
        return errors, first_step, first_field

    def submit(self) -> SubmitResult:
        """Validate every visible step and persist the response as completed.

        On success autosave stops and the session is sealed: further drafts
        and submits raise ``FormSubmittedError``. A failed write restores the
        draft status and leaves autosave running.
        """
        if self._submitted:
            raise FormSubmittedError(self.form_id, self.response_id)
        errors, failed_step, failed_field = self.validate_all()
        if errors:
            logger.info("Submit of %s rejected: first failure at step %s field %s", self.form_id, failed_step, failed_field)
            return SubmitResult(ok=False, errors=errors, failed_step=failed_step, failed_field=failed_field)

        draft = self._draft
        previous = (draft.status, draft.completed_at)
        draft.status = ResponseStatus.COMPLETED
        draft.completed_at = self._clock()
        captured = self.state.dirty_fields(self.form_id)
        try:
            stored = self.store.save_response(self.response_id, self.build_response())
        except Exception:
            draft.status, draft.completed_at = previous
            raise
        self._submitted = True
        if self.autosave is not None:
            self.autosave.stop_auto_save(self.form_id)
        self.state.clear_dirty(self.form_id, captured)
        logger.info("Submitted response %s for form %s (version %d)", stored.id, self.form_id, stored.version)
        return SubmitResult(ok=True, record=stored)

    # ------------------------------------------------------------------
    # Autosave wiring
    # ------------------------------------------------------------------

    def start_autosave(self, interval_ms: int | None = None) -> bool:
        """Start periodic draft saves when the form enables them. Returns True if a timer started."""
        if self.autosave is None or not self.config.settings.auto_save:
            return False
        self.autosave.start_auto_save(
            self.form_id,
            interval_ms or self.config.settings.auto_save_interval,
            persist=self.save_draft,
        )
        return True

    def close(self) -> None:
        """Stop autosave and drop the in-memory draft. An in-flight save is left to finish."""
        if self.autosave is not None:
            self.autosave.release(self.form_id)
        self.state.close(self.form_id)
