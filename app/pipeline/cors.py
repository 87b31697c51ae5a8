from typing import Sequence

from fastapi.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.exceptions import CrossOriginError
from app.pipeline.base import CallNext, Stage, on_response

ALLOWED_METHODS = ("GET", "HEAD", "PUT", "PATCH", "POST", "DELETE")


class CrossOrigin(Stage):
    """
    Cross-origin annotation built on Starlette's CORS policy.

    The policy object is only used for its header logic; it never wraps an
    application. Preflight requests are answered here and never reach a
    route group.
    """

    def __init__(self, allow_origins: Sequence[str] = ("*",), allow_credentials: bool = False):
        self.policy = CORSMiddleware(
            app=None,
            allow_origins=list(allow_origins),
            allow_methods=list(ALLOWED_METHODS),
            allow_headers=["*"],
            allow_credentials=allow_credentials,
        )

    async def process(self, request: Request, call_next: CallNext) -> Response:
        if "origin" not in request.headers:
            return await call_next(request)

        if request.method == "OPTIONS" and "access-control-request-method" in request.headers:
            response = self.policy.preflight_response(request_headers=request.headers)
            if response.status_code >= 400:
                raise CrossOriginError(response.body.decode("utf-8"))
            return response

        on_response(request, self.annotate)
        return await call_next(request)

    def annotate(self, request: Request, response: Response) -> None:
        headers = response.headers
        headers.update(self.policy.simple_headers)
        origin = request.headers["origin"]

        # Credentialed requests may not be answered with a wildcard origin
        if self.policy.allow_all_origins and "cookie" in request.headers:
            self.policy.allow_explicit_origin(headers, origin)
        elif not self.policy.allow_all_origins and self.policy.is_allowed_origin(origin=origin):
            self.policy.allow_explicit_origin(headers, origin)
