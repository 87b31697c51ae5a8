"""
Input sanitization stages.

Both stages rewrite the request in place before anything else looks at its
content. A body that claims to be JSON but does not decode is left for the
body parser to reject. The only rejection made here is a JSON body that
decodes but is nested too deeply to walk, which fails as a parse error.
"""

import json
import logging
import re
from contextlib import contextmanager
from typing import Any, List, Tuple
from urllib.parse import parse_qsl, urlencode

from starlette.requests import Request
from starlette.responses import Response

from app.exceptions import ParseError
from app.pipeline.base import (
    CallNext,
    Stage,
    get_body,
    get_query,
    is_json,
    media_type,
    set_body,
    set_query,
)

logger = logging.getLogger(__name__)

FORM_MEDIA_TYPE = "application/x-www-form-urlencoded"

# "$where", "role[$ne]", "profile.email"
OPERATOR_KEY = re.compile(r"(?:^|\[)\$|\.")

_UNDECODED = object()


def escape_markup(text: str) -> str:
    return text.replace("<", "&lt;")


def clean_value(value: Any) -> Any:
    """Escape markup in every string of a decoded JSON value, keys included."""
    if isinstance(value, str):
        return escape_markup(value)
    if isinstance(value, dict):
        return {escape_markup(key): clean_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [clean_value(item) for item in value]
    return value


def is_operator_key(key: str) -> bool:
    return bool(OPERATOR_KEY.search(key))


def strip_operators(value: Any, removed: List[str]) -> Any:
    """Drop operator-like keys at any depth, recording what was dropped."""
    if isinstance(value, dict):
        cleaned = {}
        for key, item in value.items():
            if is_operator_key(key):
                removed.append(key)
                continue
            cleaned[key] = strip_operators(item, removed)
        return cleaned
    if isinstance(value, list):
        return [strip_operators(item, removed) for item in value]
    return value


def _decode_json(body: bytes) -> Any:
    try:
        return json.loads(body)
    except (ValueError, RecursionError):
        return _UNDECODED


@contextmanager
def _nesting_guard():
    try:
        yield
    except RecursionError as exc:
        raise ParseError("nesting too deep") from exc


def _encode_json(value: Any) -> bytes:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def _decode_form(body: bytes) -> List[Tuple[str, str]]:
    return parse_qsl(body.decode("utf-8", errors="replace"), keep_blank_values=True)


class XSSSanitizer(Stage):
    """Neutralizes markup in the query string and in JSON or form bodies."""

    async def process(self, request: Request, call_next: CallNext) -> Response:
        pairs = get_query(request)
        if pairs:
            set_query(request, [(escape_markup(k), escape_markup(v)) for k, v in pairs])

        body = get_body(request)
        content_type = media_type(request)
        if body and is_json(content_type):
            value = _decode_json(body)
            if value is _UNDECODED:
                # Malformed, the parser rejects it; still no raw markup downstream
                set_body(request, body.replace(b"<", b"&lt;"))
            else:
                with _nesting_guard():
                    set_body(request, _encode_json(clean_value(value)))
        elif body and content_type == FORM_MEDIA_TYPE:
            fields = [(escape_markup(k), escape_markup(v)) for k, v in _decode_form(body)]
            set_body(request, urlencode(fields).encode("utf-8"))

        return await call_next(request)


class OperatorKeySanitizer(Stage):
    """Strips keys that read as MongoDB operators or dotted paths."""

    async def process(self, request: Request, call_next: CallNext) -> Response:
        removed: List[str] = []

        pairs = get_query(request)
        kept = [(key, value) for key, value in pairs if not is_operator_key(key)]
        if len(kept) != len(pairs):
            removed.extend(key for key, _ in pairs if is_operator_key(key))
            set_query(request, kept)

        body = get_body(request)
        content_type = media_type(request)
        if body and is_json(content_type):
            value = _decode_json(body)
            if value is not _UNDECODED:
                before = len(removed)
                with _nesting_guard():
                    value = strip_operators(value, removed)
                    if len(removed) != before:
                        set_body(request, _encode_json(value))
        elif body and content_type == FORM_MEDIA_TYPE:
            fields = _decode_form(body)
            kept_fields = [(key, value) for key, value in fields if not is_operator_key(key)]
            if len(kept_fields) != len(fields):
                removed.extend(key for key, _ in fields if is_operator_key(key))
                set_body(request, urlencode(kept_fields).encode("utf-8"))

        if removed:
            logger.warning(
                "Removed operator keys %s from %s %s",
                removed,
                request.method,
                request.url.path,
            )
        return await call_next(request)
