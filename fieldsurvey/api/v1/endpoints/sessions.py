"""Form session API — start, fill, navigate, save and submit an open form.

One session per form id; a submitted session is replaced by the next start.
Session endpoints are async because autosave timers live on the event loop.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from fieldsurvey.api.deps import get_context, get_controller_or_404
from fieldsurvey.core.exceptions import FormConfigError, PersistenceError, RecordNotFound
from fieldsurvey.schemas.api import (
    DraftOutcome,
    LocationUpdate,
    SessionStart,
    SessionState,
    StepOutcome,
    SubmitOutcome,
    ValuesResult,
    ValuesUpdate,
    VisibleSection,
    VisibleStep,
)
from fieldsurvey.schemas.responses import GeoLocation
from fieldsurvey.services.form_runtime import FormController, FormSubmittedError, StepResult
from fieldsurvey.services.sessions import AppContext, SessionConflictError

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _ReportedLocation:
    """Location provider for a fix the client already took."""

    def __init__(self, location: GeoLocation) -> None:
        self._location = location

    async def current_location(self) -> GeoLocation:
        return self._location


def _session_state(controller: FormController, context: AppContext) -> SessionState:
    visible = [
        VisibleStep(
            id=step.id,
            index=index,
            sections=[
                VisibleSection(id=section.id, fields=[f.id for f in controller.visible_fields(section)])
                for section in controller.visible_sections(step)
            ],
        )
        for index, step in enumerate(controller.config.steps)
        if controller.is_step_visible(step)
    ]
    return SessionState(
        form_id=controller.form_id,
        response_id=controller.response_id,
        status=controller.draft.status,
        current_step=controller.current_step,
        total_steps=controller.total_steps,
        progress=controller.progress,
        values=context.state.snapshot(controller.form_id),
        visible=visible,
        dirty_fields=sorted(context.state.dirty_fields(controller.form_id)),
        autosave_active=context.autosave.is_active(controller.form_id),
        autosave_failures=context.autosave.failures(controller.form_id),
    )


def _step_outcome(controller: FormController, result: StepResult) -> StepOutcome:
    return StepOutcome(ok=result.ok, step_index=result.step_index, progress=controller.progress, errors=result.errors)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@router.post("/", response_model=SessionState, status_code=201)
async def start_session(payload: SessionStart, context: AppContext = Depends(get_context)):
    try:
        controller = context.sessions.start(
            payload.form_id,
            payload.submitted_by,
            entity_id=payload.entity_id,
            response_id=payload.response_id,
        )
    except FormConfigError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except SessionConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return _session_state(controller, context)


@router.get("/{form_id}", response_model=SessionState)
async def get_session(form_id: str, context: AppContext = Depends(get_context)):
    return _session_state(get_controller_or_404(context, form_id), context)


@router.delete("/{form_id}", status_code=204)
async def close_session(form_id: str, context: AppContext = Depends(get_context)):
    get_controller_or_404(context, form_id)
    context.sessions.close(form_id)


# ---------------------------------------------------------------------------
# Values and navigation
# ---------------------------------------------------------------------------


@router.patch("/{form_id}/values", response_model=ValuesResult)
async def update_values(form_id: str, payload: ValuesUpdate, context: AppContext = Depends(get_context)):
    controller = get_controller_or_404(context, form_id)
    changes: dict[str, bool] = {}
    for path, value in payload.values.items():
        changes.update(controller.set_value(path, value))
    return ValuesResult(session=_session_state(controller, context), visibility_changes=changes)


@router.post("/{form_id}/location", response_model=SessionState)
async def set_location(form_id: str, payload: LocationUpdate, context: AppContext = Depends(get_context)):
    controller = get_controller_or_404(context, form_id)
    await controller.capture_location(_ReportedLocation(payload.location))
    return _session_state(controller, context)


@router.post("/{form_id}/next", response_model=StepOutcome)
async def next_step(form_id: str, context: AppContext = Depends(get_context)):
    controller = get_controller_or_404(context, form_id)
    return _step_outcome(controller, controller.go_next())


@router.post("/{form_id}/previous", response_model=StepOutcome)
async def previous_step(form_id: str, context: AppContext = Depends(get_context)):
    controller = get_controller_or_404(context, form_id)
    return _step_outcome(controller, controller.go_previous())


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


@router.post("/{form_id}/draft", response_model=DraftOutcome)
async def save_draft(form_id: str, context: AppContext = Depends(get_context)):
    controller = get_controller_or_404(context, form_id)
    try:
        stored = controller.save_draft()
    except FormSubmittedError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except PersistenceError as exc:
        logger.error("Draft save failed for %s: %s", form_id, exc)
        raise HTTPException(status_code=503, detail="Local storage unavailable; draft not saved")
    return DraftOutcome(
        response_id=stored.id,
        version=stored.version,
        sync_status=stored.sync_status,
        dirty_fields=sorted(context.state.dirty_fields(form_id)),
    )


@router.post("/{form_id}/submit", response_model=SubmitOutcome)
async def submit_form(form_id: str, context: AppContext = Depends(get_context)):
    controller = get_controller_or_404(context, form_id)
    try:
        result = controller.submit()
    except FormSubmittedError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except PersistenceError as exc:
        logger.error("Submit failed for %s: %s", form_id, exc)
        raise HTTPException(status_code=503, detail="Local storage unavailable; response not submitted")
    if not result.ok:
        return SubmitOutcome(
            ok=False,
            errors=result.errors,
            failed_step=result.failed_step,
            failed_field=result.failed_field,
        )
    return SubmitOutcome(ok=True, response_id=result.record.id, version=result.record.version)
