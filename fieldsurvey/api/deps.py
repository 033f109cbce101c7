from fastapi import HTTPException, Request

from fieldsurvey.services.form_runtime import FormController
from fieldsurvey.services.form_state import FormNotOpenError
from fieldsurvey.services.sessions import AppContext


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_controller_or_404(context: AppContext, form_id: str) -> FormController:
    try:
        return context.sessions.get(form_id)
    except FormNotOpenError:
        raise HTTPException(status_code=404, detail=f"No open session for form '{form_id}'")
