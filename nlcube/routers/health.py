# nlcube/routers/health.py
from __future__ import annotations

import logging
from fastapi import APIRouter, Depends, Request

from nlcube.deps import get_service
from nlcube.core.query_service import QueryService

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health", summary="Liveness check")
def health_check():
    return {"status": "ok"}


@router.get("/status", summary="Subjects, tables and pool usage")
async def status(request: Request, svc: QueryService = Depends(get_service)):
    body = svc.status()
    body["version"] = request.app.version
    return body
