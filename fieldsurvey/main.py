import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from fieldsurvey.api.v1.router import api_v1_router
from fieldsurvey.core.config import settings
from fieldsurvey.core.database import init_db
from fieldsurvey.services.scheduler import sync_loop
from fieldsurvey.services.sessions import AppContext, build_context

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    context: AppContext | None = getattr(app.state, "context", None)
    if context is None:
        init_db()
        context = build_context()
        app.state.context = context

    # Anything still marked syncing was interrupted by the last shutdown
    context.store.reset_interrupted_syncs()

    task = asyncio.create_task(sync_loop(context.sync))
    logger.info("Field survey service started (%d form config(s) loaded)", len(context.configs))

    yield

    # Shutdown: stop autosave timers first so in-flight drafts land before the loop stops
    logger.info("Shutting down field survey service...")
    await context.autosave.shutdown()

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass

    await context.client.aclose()


def create_app(context: AppContext | None = None) -> FastAPI:
    """Build the service. Tests pass a prepared context; production builds one at startup."""
    application = FastAPI(
        title=settings.PROJECT_NAME,
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        lifespan=lifespan,
    )
    if context is not None:
        application.state.context = context

    application.include_router(api_v1_router, prefix=settings.API_V1_PREFIX)

    @application.get("/health")
    def health_check():
        return {"status": "healthy"}

    return application


app = create_app()
