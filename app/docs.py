"""
API documentation served under ``/api-doc``.

The OpenAPI document is generated once, from the route groups registered on
the application, and then served as a static value. Request handling never
regenerates it.
"""

from fastapi import APIRouter, FastAPI
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.openapi.utils import get_openapi
from fastapi.responses import HTMLResponse, JSONResponse

from app.config import Settings

DOCS_PREFIX = "/api-doc"
OPENAPI_PATH = DOCS_PREFIX + "/openapi.json"

TITLE = "Job Portal Application"
DESCRIPTION = "FastAPI Job Portal Application"
VERSION = "1.0.0"
OPENAPI_VERSION = "3.0.0"


def build_openapi_document(app: FastAPI, settings: Settings) -> dict:
    document = get_openapi(
        title=TITLE,
        version=VERSION,
        openapi_version=OPENAPI_VERSION,
        description=DESCRIPTION,
        routes=app.routes,
        servers=[{"url": settings.server_url}],
    )
    app.openapi_schema = document
    # Later router includes may reset openapi_schema; always serve this one
    app.openapi = lambda: document
    return document


def create_router(document: dict) -> APIRouter:
    router = APIRouter(prefix=DOCS_PREFIX, include_in_schema=False)

    @router.get("", response_class=HTMLResponse)
    async def swagger_ui():
        return get_swagger_ui_html(openapi_url=OPENAPI_PATH, title=f"{TITLE} - Swagger UI")

    @router.get("/openapi.json")
    async def openapi_document():
        return JSONResponse(document)

    return router
