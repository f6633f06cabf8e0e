# =========================
# nlcube/main.py
# =========================
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from nlcube import deps
from nlcube.docs import build_app
from nlcube.routers import health, query, subjects
from nlcube.core.errors import NlCubeError
from nlcube.core.models import ErrorBody
from nlcube.core.query_service import QueryService

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

# Quiet noisy third-party loggers
logging.getLogger("urllib3").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("sqlglot").setLevel(logging.ERROR)

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    "InvalidName": 400,
    "InvalidQuestion": 400,
    "ExecutionError": 400,
    "UnknownSubject": 404,
    "AlreadyExists": 409,
    "Busy": 409,
    "UnsafeQuery": 422,
    "MalformedResponse": 422,
    "SerializationError": 500,
    "ConfigurationError": 500,
    "ConnectionError": 503,
    "PoolExhausted": 503,
    "TranslationUnavailable": 503,
    "ExecutionTimeout": 504,
}

# Documented on every router that can fail with a typed error.
ERROR_RESPONSES = {
    code: {"model": ErrorBody} for code in sorted(set(STATUS_BY_KIND.values()))
}


async def nlcube_error_handler(request: Request, exc: NlCubeError) -> JSONResponse:
    code = STATUS_BY_KIND.get(exc.kind, 500)
    if code >= 500:
        logger.warning("%s %s failed with %s: %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=code, content=ErrorBody(**exc.to_dict()).model_dump())


def create_app(service: Optional[QueryService] = None) -> FastAPI:
    """Build the API. Without `service`, the default one is wired from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if service is None:
            s = deps.settings()
            logging.getLogger().setLevel(s.LOG_LEVEL.upper())
            svc = deps.service()
        else:
            svc = service
        svc.registry.discover()
        app.state.service = svc
        logger.info("NL-Cube ready: %d subject(s) under %s", len(svc.list_subjects()), svc.registry.data_dir)
        try:
            yield
        finally:
            await deps.shutdown(svc)

    app = build_app(lifespan=lifespan)

    # CORS (dev-open; tighten for prod)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Generated-SQL", "X-Row-Count", "X-Elapsed-Ms", "X-Subject", "X-Schema-Empty"],
    )
    app.add_exception_handler(NlCubeError, nlcube_error_handler)

    app.include_router(health.router)
    app.include_router(subjects.router, responses=ERROR_RESPONSES)
    app.include_router(query.router, responses=ERROR_RESPONSES)
    return app


app = create_app()
