import logging
import time

from starlette.requests import Request
from starlette.responses import Response

from app.pipeline.base import CallNext, Stage, on_response

access_logger = logging.getLogger("app.access")


class AccessLog(Stage):
    """Writes one line per request: ``GET /path 200 1.234 ms - 42``."""

    def __init__(self, logger: logging.Logger = access_logger):
        self.logger = logger

    async def process(self, request: Request, call_next: CallNext) -> Response:
        started = time.perf_counter()

        def record(request: Request, response: Response) -> None:
            try:
                elapsed_ms = (time.perf_counter() - started) * 1000
                self.logger.info(
                    "%s %s %s %.3f ms - %s",
                    request.method,
                    request.url.path,
                    response.status_code,
                    elapsed_ms,
                    response.headers.get("content-length", "-"),
                )
            except Exception:
                # A broken log sink must never fail the request
                pass

        on_response(request, record)
        return await call_next(request)
