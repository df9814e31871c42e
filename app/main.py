from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from app.api.routes import router
from app.errors import StoreBusy
from app.game_store import SessionStore
from app.render import renderer_from_name
from app.settings import Settings, load_dotenv_file, settings_from_env


logger = logging.getLogger(__name__)


def create_app(*, store: SessionStore | None = None, settings: Settings | None = None) -> FastAPI:
    """Build the web app around an explicitly owned session store.

    Without arguments, settings come from the environment (and `.env`) and a
    fresh store is created with the configured renderer.
    """

    if settings is None:
        load_dotenv_file()
        settings = settings_from_env()
    if store is None:
        store = SessionStore(
            renderer=renderer_from_name(settings.renderer),
            lock_timeout_s=settings.lock_timeout_s,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        # Ends every open event stream.
        app.state.store.close()

    app = FastAPI(title="tictactoe-live", version="0.1.0", lifespan=lifespan)
    app.state.store = store
    app.state.settings = settings
    app.include_router(router)

    @app.exception_handler(StoreBusy)
    async def _store_busy(request: Request, exc: StoreBusy) -> JSONResponse:
        logger.warning("Store busy while handling %s %s", request.method, request.url.path)
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": str(exc)})

    return app


load_dotenv_file()
settings = settings_from_env()
# Configure logging
logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))

app = create_app(settings=settings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)
