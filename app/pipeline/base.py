"""
Request pipeline runner.

The pipeline is a single ASGI middleware that walks an ordered list of
``Stage`` objects. Each stage receives the request and a ``call_next``
continuation and returns a response::

    hardening -> body read -> xss -> operator keys -> json body -> cors
        -> access log -> dispatch -> route group

Stages that need to touch the outgoing response register a hook with
``on_response``. Hooks run against whichever response leaves the pipeline,
including responses produced by the error handler, the same way headers set
early in a Node/Express chain survive into an error response.

Any exception raised by a stage, by the route group, or by a coroutine the
route group awaited, is handed to the error handler exactly once.
"""

import logging
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple
from urllib.parse import parse_qsl, urlencode

from starlette.datastructures import MutableHeaders
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)

CallNext = Callable[[Request], Awaitable[Response]]
ResponseHook = Callable[[Request, Response], None]
ErrorHandler = Callable[[Request, Exception], Awaitable[Response]]


class Stage:
    """One cross-cutting step of the request pipeline."""

    async def process(self, request: Request, call_next: CallNext) -> Response:
        return await call_next(request)


def on_response(request: Request, hook: ResponseHook) -> None:
    request.state.response_hooks.append(hook)


def get_body(request: Request) -> bytes:
    return request.state.raw_body or b""


def set_body(request: Request, body: bytes) -> None:
    """Replace the body the route group will read, keeping Content-Length in step."""
    request.state.raw_body = body
    headers = MutableHeaders(scope=request.scope)
    if "content-length" in headers:
        headers["content-length"] = str(len(body))


def get_query(request: Request) -> List[Tuple[str, str]]:
    # Read from the scope, not request.query_params, which is cached
    raw = request.scope.get("query_string", b"").decode("utf-8", errors="surrogateescape")
    return parse_qsl(raw, keep_blank_values=True, encoding="utf-8", errors="surrogateescape")


def set_query(request: Request, pairs: Sequence[Tuple[str, str]]) -> None:
    encoded = urlencode(list(pairs), encoding="utf-8", errors="surrogateescape")
    request.scope["query_string"] = encoded.encode("ascii")


def media_type(request: Request) -> str:
    return request.headers.get("content-type", "").split(";", 1)[0].strip().lower()


def is_json(content_type: str) -> bool:
    return content_type == "application/json" or content_type.endswith("+json")


class RequestPipeline:
    def __init__(self, app: ASGIApp, stages: Sequence[Stage], error_handler: ErrorHandler):
        self.app = app
        self.stages = tuple(stages)
        self.error_handler = error_handler

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        request.state.response_hooks = []
        request.state.json = None
        # Filled in by the body reading stage
        request.state.received_body = None
        request.state.raw_body = None
        try:
            response = await self._run(0, request)
        except Exception as exc:
            response = await self.error_handler(request, exc)

        self._apply_hooks(request, response)
        await response(scope, receive, send)

    async def _run(self, index: int, request: Request) -> Response:
        if index == len(self.stages):
            return await self._call_app(request)

        async def call_next(next_request: Request) -> Response:
            return await self._run(index + 1, next_request)

        return await self.stages[index].process(request, call_next)

    async def _call_app(self, request: Request) -> Response:
        body = request.state.raw_body
        body_sent = False

        async def replay() -> Message:
            nonlocal body_sent
            if not body_sent:
                body_sent = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await request.receive()

        receive = request.receive if body is None else replay

        status_code: Optional[int] = None
        raw_headers: List[Tuple[bytes, bytes]] = []
        chunks: List[bytes] = []

        async def send(message: Message) -> None:
            nonlocal status_code, raw_headers
            if message["type"] == "http.response.start":
                status_code = message["status"]
                raw_headers = list(message.get("headers", []))
            elif message["type"] == "http.response.body":
                chunks.append(message.get("body", b""))

        await self.app(request.scope, receive, send)

        if status_code is None:
            raise RuntimeError("Route group returned without starting a response")
        response = Response(content=b"".join(chunks), status_code=status_code)
        response.raw_headers = raw_headers
        return response

    def _apply_hooks(self, request: Request, response: Response) -> None:
        for hook in request.state.response_hooks:
            try:
                hook(request, response)
            except Exception:
                logger.exception("Response hook %r failed", hook)
