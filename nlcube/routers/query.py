# nlcube/routers/query.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import JSONResponse, Response

from nlcube.deps import get_service, request_context
from nlcube.core.models import NlQueryRequest, QueryMetadata, QueryRequest, SchemaResponse
from nlcube.core.query_service import QueryResponse, QueryService, RequestContext

logger = logging.getLogger(__name__)
router = APIRouter(tags=["query"])

ARROW_STREAM_MEDIA_TYPE = "application/vnd.apache.arrow.stream"


def _header_safe(value: str) -> str:
    # Header values are single-line latin-1.
    return " ".join(value.split()).encode("latin-1", "replace").decode("latin-1")


def _render(resp: QueryResponse, fmt: str, include_sql_header: bool) -> Response:
    if fmt == "json":
        meta = QueryMetadata(**resp.metadata(), raw_model_output=resp.raw_model_output)
        return JSONResponse(meta.model_dump())

    headers = {
        "X-Row-Count": str(resp.row_count),
        "X-Elapsed-Ms": str(resp.elapsed_ms),
        "X-Subject": resp.subject,
    }
    if include_sql_header:
        headers["X-Generated-SQL"] = _header_safe(resp.sql)
    if resp.schema_empty:
        headers["X-Schema-Empty"] = "true"
    return Response(content=resp.columnar_payload, media_type=ARROW_STREAM_MEDIA_TYPE, headers=headers)


@router.post("/query", summary="Run one read-only SQL statement against a subject")
async def run_query(
    req: QueryRequest = Body(...),
    ctx: RequestContext = Depends(request_context),
    svc: QueryService = Depends(get_service),
):
    subject = svc.resolve_subject(ctx, req.subject)
    resp = await svc.execute_raw_query(subject, req.query)
    return _render(resp, req.format, include_sql_header=False)


@router.post("/nl-query", summary="Ask a question in natural language")
async def run_nl_query(
    req: NlQueryRequest = Body(...),
    ctx: RequestContext = Depends(request_context),
    svc: QueryService = Depends(get_service),
):
    subject = svc.resolve_subject(ctx, req.subject)
    resp = await svc.execute_natural_language_query(subject, req.question)
    logger.info("nl-query on %s -> %s", subject, _header_safe(resp.sql))
    return _render(resp, req.format, include_sql_header=True)


@router.get("/schema", response_model=SchemaResponse, summary="Schema text used as translation context")
async def get_schema(
    subject: Optional[str] = Query(None),
    refresh: bool = Query(False, description="Re-introspect instead of serving the cached snapshot"),
    ctx: RequestContext = Depends(request_context),
    svc: QueryService = Depends(get_service),
):
    name = svc.resolve_subject(ctx, subject)
    text = await (svc.refresh_schema(name) if refresh else svc.get_schema(name))
    return SchemaResponse(subject=name, schema_text=text)
