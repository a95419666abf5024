from fastapi import FastAPI
from contextlib import asynccontextmanager

from shared import RequestIDMiddleware, install_error_handlers

from .db.session import async_session_factory
from .expiry import ExpirySweeper
from .routes import register_routes
from .settings import pos_settings
from .startup import (
    build_terminal,
    init_service_startup,
    setup_instrumentation,
    setup_logging,
    shutdown_instrumentation,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_service_startup(app)
    sweeper = ExpirySweeper(async_session_factory, pos_settings().expiry_sweep_interval_seconds)
    sweeper.start()
    app.state.expiry_sweeper = sweeper
    yield
    await sweeper.stop()
    await app.state.terminal.aclose()
    await shutdown_instrumentation(app)


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title="POS Service", version="0.1.0", lifespan=lifespan)
    app.state.terminal = build_terminal(async_session_factory)
    app.add_middleware(RequestIDMiddleware)
    install_error_handlers(app)
    register_routes(app)
    setup_instrumentation(app)
    return app
