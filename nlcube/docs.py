# nlcube/docs.py
from fastapi import FastAPI
from fastapi.openapi.utils import get_openapi
from typing import Any, Dict, List

APP_TITLE = "NL-Cube API"
APP_VERSION = "0.1.0"

TAGS_METADATA: List[Dict[str, Any]] = [
    {
        "name": "health",
        "description": "Liveness check and service status (subjects, tables, pool usage).",
    },
    {
        "name": "subjects",
        "description": (
            "Create, list, delete and select **subjects**. Each subject is an isolated DuckDB store "
            "under the data directory."
        ),
    },
    {
        "name": "query",
        "description": (
            "Run SQL (`/query`) or ask questions in natural language (`/nl-query`). "
            "Results come back as an **Arrow IPC stream**; the SQL that ran is in `X-Generated-SQL`."
        ),
    },
]


def build_app(lifespan=None, title: str = APP_TITLE, version: str = APP_VERSION) -> FastAPI:
    """
    Central place for Swagger/OpenAPI metadata and docs URLs.
    """
    app = FastAPI(
        title=title,
        version=version,
        description=(
            "Natural-language analytics over per-subject **DuckDB** stores. Questions are translated "
            "to SQL by a configurable LLM backend, validated as read-only, and executed on a pooled "
            "connection.\n\n"
            "Use `/subjects/{name}/select` to pick a subject, then `/nl-query` or `/query`."
        ),
        openapi_url="/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        license_info={"name": "MIT"},
        lifespan=lifespan,
    )

    app.openapi_tags = TAGS_METADATA

    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema

        schema = get_openapi(
            title=app.title,
            version=app.version,
            description=app.description,
            routes=app.routes,
            tags=TAGS_METADATA,
        )
        schema["servers"] = [
            {"url": "http://127.0.0.1:8000", "description": "Local dev"},
        ]
        # Optional per-request subject selection (overrides the cookie)
        schema.setdefault("components", {}).setdefault("securitySchemes", {})["SubjectHeader"] = {
            "type": "apiKey",
            "in": "header",
            "name": "X-NLCube-Subject",
        }

        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi
    return app
