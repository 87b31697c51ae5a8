import json

from starlette.requests import Request
from starlette.responses import Response

from app.exceptions import ParseError, PayloadTooLargeError
from app.pipeline.base import CallNext, Stage, get_body, is_json, media_type

DEFAULT_LIMIT = 100 * 1024


class BodyReader(Stage):
    """
    Buffers the request body for the stages that follow.

    Reading stops as soon as the body is known to exceed ``limit``, either
    from its declared Content-Length or from the bytes received so far, so an
    oversized upload is never held in memory or decoded.
    """

    def __init__(self, limit: int = DEFAULT_LIMIT):
        self.limit = limit

    async def process(self, request: Request, call_next: CallNext) -> Response:
        declared = request.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > self.limit:
            raise PayloadTooLargeError(int(declared), self.limit)

        chunks = []
        size = 0
        async for chunk in request.stream():
            size += len(chunk)
            if size > self.limit:
                raise PayloadTooLargeError(size, self.limit)
            chunks.append(chunk)

        body = b"".join(chunks)
        request.state.received_body = body
        request.state.raw_body = body
        return await call_next(request)


class JSONBodyParser(Stage):
    """Decodes JSON request bodies into ``request.state.json``."""

    async def process(self, request: Request, call_next: CallNext) -> Response:
        body = get_body(request)
        if body and is_json(media_type(request)):
            try:
                request.state.json = json.loads(body)
            except RecursionError as exc:
                raise ParseError("nesting too deep") from exc
            except ValueError as exc:
                raise ParseError(str(exc)) from exc
        return await call_next(request)
