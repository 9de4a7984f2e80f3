from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from api.routes import router
from logs import configure_logging
from workspace.runner import WorkspaceRunner
from workspace.workspace import Workspace


def create_app(workspace: Workspace | None = None, *, run_ticks: bool = True) -> FastAPI:
    """
    HTTP surface over one `Workspace`.

    With `run_ticks`, a background thread drives `Workspace.tick()` while the app runs.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        ws = app.state.workspace
        ws.load_workspaces()
        runner = WorkspaceRunner(ws) if run_ticks else None
        if runner is not None:
            runner.start()
        logger.info("workspace service started")
        try:
            yield
        finally:
            if runner is not None:
                runner.stop()
            if ws.autosave:
                ws.autosave_now()
            ws.shutdown()
            logger.info("workspace service stopped")

    app = FastAPI(lifespan=lifespan)
    app.state.workspace = workspace or Workspace()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()
