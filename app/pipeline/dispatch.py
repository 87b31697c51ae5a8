from typing import Iterable, Optional, Tuple

from starlette.requests import Request
from starlette.responses import Response

from app.exceptions import NotFoundError
from app.pipeline.base import CallNext, Stage


class PrefixTable:
    """Static path-prefix table, longest prefix first, matched on segment boundaries."""

    def __init__(self, prefixes: Iterable[str]):
        normalized = {prefix.rstrip("/") or "/" for prefix in prefixes}
        self.prefixes: Tuple[str, ...] = tuple(sorted(normalized, key=len, reverse=True))

    def match(self, path: str) -> Optional[str]:
        for prefix in self.prefixes:
            if prefix == "/" or path == prefix or path.startswith(prefix + "/"):
                return prefix
        return None


class Dispatch(Stage):
    """Last stage before the route groups: rejects paths no group owns."""

    def __init__(self, prefixes: Iterable[str]):
        self.table = PrefixTable(prefixes)

    async def process(self, request: Request, call_next: CallNext) -> Response:
        prefix = self.table.match(request.url.path)
        if prefix is None:
            raise NotFoundError(request.method, request.url.path)
        request.state.route_prefix = prefix
        return await call_next(request)
