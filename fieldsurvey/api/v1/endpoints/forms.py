"""Form configs API — list and fetch the loaded FormConfig documents."""

from fastapi import APIRouter, Depends, HTTPException

from fieldsurvey.api.deps import get_context
from fieldsurvey.core.exceptions import FormConfigError
from fieldsurvey.schemas.api import FormSummary
from fieldsurvey.services.sessions import AppContext

router = APIRouter()


@router.get("/", response_model=list[FormSummary])
def list_forms(context: AppContext = Depends(get_context)):
    return [
        FormSummary(
            id=config.id,
            version=config.version,
            title=config.title,
            type=config.type,
            total_steps=config.total_steps,
            auto_save=config.settings.auto_save,
        )
        for config in context.configs.list()
    ]


@router.get("/{form_id}")
def get_form(form_id: str, context: AppContext = Depends(get_context)):
    try:
        config = context.configs.get(form_id)
    except FormConfigError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return config.model_dump(mode="json", by_alias=True, exclude_none=True)
