"""sessionwatch FastAPI host. Owns the watcher lifecycle."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from sessionwatch import config
from sessionwatch.context import WatcherContext
from sessionwatch.observability import initialize as initialize_observability, shutdown as shutdown_observability
from sessionwatch.status.machine import status_key

logging.basicConfig(level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger("sessionwatch")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("sessionwatch starting up")
    initialize_observability(app)

    context = WatcherContext()
    app.state.watcher_context = context
    await context.initialize()

    yield

    logger.info("sessionwatch shutting down")
    await context.teardown()
    shutdown_observability(app)


app = FastAPI(
    title="sessionwatch",
    description="Live status of local AI coding-agent sessions",
    version="0.1.0",
    lifespan=lifespan,
)


def _context(request: Request) -> WatcherContext:
    return request.app.state.watcher_context


@app.get("/api/health")
def health(request: Request):
    """Health check endpoint."""
    context = _context(request)
    return {
        "status": "ok",
        "watcher": "running" if context.watcher.is_running else "stopped",
        "sweeper": "running" if context.sweeper.is_running else "stopped",
        "sessions": len(context.registry),
    }


@app.get("/api/sessions")
def list_sessions(request: Request):
    """Current session snapshots, most recently active first."""
    sessions = sorted(
        _context(request).registry.get_sessions().values(),
        key=lambda s: s.status.lastActivityAt,
        reverse=True,
    )
    return [
        {
            **session.model_dump(exclude={"entries"}, mode="json"),
            "statusKey": status_key(session.status),
        }
        for session in sessions
    ]


@app.get("/api/errors")
def list_errors(request: Request):
    return [error.model_dump() for error in _context(request).errors.get_errors()]
