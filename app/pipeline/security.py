from typing import Mapping, Optional

from starlette.requests import Request
from starlette.responses import Response

from app.pipeline.base import CallNext, Stage, on_response

CONTENT_SECURITY_POLICY = (
    "default-src 'self';base-uri 'self';font-src 'self' https: data:;"
    "form-action 'self';frame-ancestors 'self';img-src 'self' data:;"
    "object-src 'none';script-src 'self';script-src-attr 'none';"
    "style-src 'self' https: 'unsafe-inline';upgrade-insecure-requests"
)

# Swagger UI pulls its bundle from a CDN and boots with an inline script
DOCS_CONTENT_SECURITY_POLICY = (
    "default-src 'self';base-uri 'self';font-src 'self' https: data:;"
    "frame-ancestors 'self';img-src 'self' data: https:;object-src 'none';"
    "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net;"
    "style-src 'self' https: 'unsafe-inline';connect-src 'self'"
)

SECURE_HEADERS = {
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Origin-Agent-Cluster": "?1",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Frame-Options": "SAMEORIGIN",
    "X-Permitted-Cross-Domain-Policies": "none",
    "X-XSS-Protection": "0",
}

# Headers that advertise the server stack
REMOVED_HEADERS = ("x-powered-by", "server")


class SecureHeaders(Stage):
    """Hardens every response's headers; never rejects a request."""

    def __init__(
        self,
        headers: Optional[Mapping[str, str]] = None,
        csp: str = CONTENT_SECURITY_POLICY,
        docs_prefix: Optional[str] = None,
        docs_csp: str = DOCS_CONTENT_SECURITY_POLICY,
    ):
        self.headers = dict(SECURE_HEADERS if headers is None else headers)
        self.csp = csp
        self.docs_prefix = docs_prefix
        self.docs_csp = docs_csp

    async def process(self, request: Request, call_next: CallNext) -> Response:
        on_response(request, self.harden)
        return await call_next(request)

    def harden(self, request: Request, response: Response) -> None:
        headers = response.headers
        for name in REMOVED_HEADERS:
            if name in headers:
                del headers[name]

        # Values a route group set explicitly win over the defaults
        headers.setdefault("Content-Security-Policy", self._csp_for(request))
        for name, value in self.headers.items():
            headers.setdefault(name, value)

    def _csp_for(self, request: Request) -> str:
        path = request.url.path
        if self.docs_prefix and (path == self.docs_prefix or path.startswith(self.docs_prefix + "/")):
            return self.docs_csp
        return self.csp
