"""Survey sessions — the open form controllers, one per form.

``AppContext`` wires the engine together: one local store, one form state,
one autosave manager and one sync manager shared by every session. Nothing
here is a module-level singleton; the FastAPI lifespan builds the context
and tests build their own.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.orm import sessionmaker

from fieldsurvey.core.config import settings
from fieldsurvey.core.exceptions import FieldSurveyError
from fieldsurvey.core.database import SessionLocal
from fieldsurvey.services.autosave import AutoSaveManager
from fieldsurvey.services.form_configs import FormConfigRegistry
from fieldsurvey.services.form_runtime import FormController
from fieldsurvey.services.form_state import FormNotOpenError, FormState
from fieldsurvey.services.local_store import LocalStore
from fieldsurvey.services.sync.client import RemoteClient, StaticTokenProvider, TokenProvider
from fieldsurvey.services.sync.manager import SyncManager
from fieldsurvey.services.wards import WardService

logger = logging.getLogger(__name__)


class SessionConflictError(FieldSurveyError):
    """Raised when a form is already open for a different entity or response."""

    def __init__(self, form_id: str, response_id: str) -> None:
        self.form_id = form_id
        self.response_id = response_id
        super().__init__(f"Form '{form_id}' is already open for response '{response_id}'")


class SurveySessions:
    def __init__(
        self,
        configs: FormConfigRegistry,
        state: FormState,
        store: LocalStore,
        autosave: AutoSaveManager,
    ) -> None:
        self._configs = configs
        self._state = state
        self._store = store
        self._autosave = autosave
        self._controllers: dict[str, FormController] = {}

    def start(
        self,
        form_id: str,
        submitted_by: str,
        *,
        entity_id: str = "",
        response_id: str | None = None,
    ) -> FormController:
        """Open a form, or resume a stored response when ``response_id`` is given.

        A form that is already open keeps its current session, unless that
        session has submitted; then it is closed and a fresh one starts.

        Raises:
            FormConfigError: If no config is registered for ``form_id``.
            RecordNotFound: If ``response_id`` names no stored response.
            SessionConflictError: If the open session belongs to another entity or response.
        """
        existing = self._controllers.get(form_id)
        if existing is not None:
            if existing.submitted:
                logger.info("Closing submitted session %s for form %s", existing.response_id, form_id)
                self.close(form_id)
            elif (entity_id and entity_id != existing.draft.entity_id) or (
                response_id and response_id != existing.response_id
            ):
                raise SessionConflictError(form_id, existing.response_id)
            else:
                return existing

        config = self._configs.get(form_id)
        resume = self._store.get_response(response_id) if response_id else None
        controller = FormController(
            config,
            self._state,
            self._store,
            submitted_by,
            entity_id=entity_id,
            autosave=self._autosave,
            resume=resume,
        )
        controller.start_autosave()
        self._controllers[form_id] = controller
        logger.info("Session started for form %s by %s", form_id, submitted_by)
        return controller

    def get(self, form_id: str) -> FormController:
        controller = self._controllers.get(form_id)
        if controller is None:
            raise FormNotOpenError(form_id)
        return controller

    def close(self, form_id: str) -> None:
        controller = self._controllers.pop(form_id, None)
        if controller is None:
            raise FormNotOpenError(form_id)
        controller.close()

    def open_forms(self) -> list[str]:
        return list(self._controllers)


@dataclass
class AppContext:
    store: LocalStore
    configs: FormConfigRegistry
    state: FormState
    autosave: AutoSaveManager
    sessions: SurveySessions
    client: RemoteClient
    sync: SyncManager
    wards: WardService


def build_context(
    session_factory: sessionmaker = SessionLocal,
    *,
    configs: FormConfigRegistry | None = None,
    client: RemoteClient | None = None,
    auth: TokenProvider | None = None,
) -> AppContext:
    store = LocalStore(session_factory)
    if configs is None:
        configs = FormConfigRegistry()
        configs.load()
    state = FormState()
    autosave = AutoSaveManager(state)
    if client is None:
        client = RemoteClient(auth=auth or StaticTokenProvider(settings.API_TOKEN))
    return AppContext(
        store=store,
        configs=configs,
        state=state,
        autosave=autosave,
        sessions=SurveySessions(configs, state, store, autosave),
        client=client,
        sync=SyncManager(store, client),
        wards=WardService(store, client),
    )
