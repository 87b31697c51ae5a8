import logging
from contextlib import asynccontextmanager
from typing import Dict, List, Mapping, Optional

import uvicorn
from fastapi import APIRouter, FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app import docs
from app.config import Settings, configure_logging
from app.context import AppContext
from app.exceptions import ErrorHandler, PortalException
from app.pipeline.access_log import AccessLog
from app.pipeline.base import RequestPipeline, Stage
from app.pipeline.body import BodyReader, JSONBodyParser
from app.pipeline.cors import CrossOrigin
from app.pipeline.dispatch import Dispatch
from app.pipeline.sanitize import OperatorKeySanitizer, XSSSanitizer
from app.pipeline.security import SecureHeaders
from app.routes import auth, job, test, user

logger = logging.getLogger(__name__)

# prefix -> (tag, router factory)
ROUTE_GROUPS = {
    "/api/v1/test": ("Test", test.create_router),
    "/api/v1/auth": ("Authentication", auth.create_router),
    "/api/v1/user": ("Users", user.create_router),
    "/api/v1/job": ("Jobs", job.create_router),
}


def build_route_groups(context: AppContext) -> Dict[str, APIRouter]:
    return {prefix: factory(context) for prefix, (_, factory) in ROUTE_GROUPS.items()}


def build_stages(settings: Settings, prefixes: List[str]) -> List[Stage]:
    """The request pipeline, in execution order."""
    return [
        SecureHeaders(docs_prefix=docs.DOCS_PREFIX),
        BodyReader(limit=settings.json_body_limit),
        XSSSanitizer(),
        OperatorKeySanitizer(),
        JSONBodyParser(),
        CrossOrigin(
            allow_origins=settings.cors_origins,
            allow_credentials=settings.cors_allow_credentials,
        ),
        AccessLog(),
        Dispatch(prefixes),
    ]


def build_lifespan(context: AppContext):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings = context.settings
        try:
            await context.db.connect()
        except Exception:
            logger.exception("Could not connect to MongoDB, refusing to start")
            raise
        logger.info("Server running in %s mode on port %s", settings.dev_mode, settings.port)

        yield

        await context.db.close()

    return lifespan


def create_app(
    context: Optional[AppContext] = None,
    route_groups: Optional[Mapping[str, APIRouter]] = None,
) -> FastAPI:
    """
    Assemble the application.

    ``route_groups`` replaces individual default groups by prefix; any prefix
    not already known becomes an extra group.
    """
    if context is None:
        context = AppContext.from_settings(Settings())
    settings = context.settings
    configure_logging(settings)

    app = FastAPI(
        title=docs.TITLE,
        description=docs.DESCRIPTION,
        version=docs.VERSION,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=build_lifespan(context),
    )
    app.state.context = context

    groups = build_route_groups(context)
    groups.update(route_groups or {})
    for prefix, router in groups.items():
        tag = ROUTE_GROUPS.get(prefix, (prefix.rsplit("/", 1)[-1].title(), None))[0]
        app.include_router(router, prefix=prefix, tags=[tag])

    document = docs.build_openapi_document(app, settings)
    app.include_router(docs.create_router(document))

    # Framework-raised errors go through the same terminal handler
    error_handler = ErrorHandler()
    app.add_exception_handler(StarletteHTTPException, error_handler)
    app.add_exception_handler(RequestValidationError, error_handler)
    app.add_exception_handler(PortalException, error_handler)

    app.add_middleware(
        RequestPipeline,
        stages=build_stages(settings, [docs.DOCS_PREFIX, *groups]),
        error_handler=error_handler,
    )
    return app


app = create_app()


def run() -> None:
    settings = app.state.context.settings
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        server_header=False,
        access_log=False,
        log_level=logging.getLevelName(settings.log_level).lower(),
    )


if __name__ == "__main__":
    run()
