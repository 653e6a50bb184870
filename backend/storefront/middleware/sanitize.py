"""
Storefront Backend — Input Sanitization Middleware
====================================================

What:  Removes null bytes from query parameters and request bodies.
Why:   Null bytes truncate strings in C-backed libraries and databases and are
       a common trick to smuggle payloads past validation.
How:   Pure ASGI middleware. The query string is rewritten in the scope; JSON
       and form bodies are buffered, cleaned and replayed to the app through
       a wrapped `receive`.
When:  After request ID and access logging, before the rate limiter and routes.

Guarantees:
    - Only string values change; numbers, booleans, nulls, list and dict
      shapes are preserved.
    - Nothing is rewritten unless a null byte was found, so clean requests
      reach the app byte-for-byte and sanitizing twice equals sanitizing once.
    - Never rejects a request. Bodies that fail to decode pass through as-is
      and are left for the route's own validation.
"""

import json
from typing import Any, List, Tuple
from urllib.parse import parse_qsl, urlencode

from starlette.types import ASGIApp, Message, Receive, Scope, Send

NULL_BYTE = "\x00"

JSON_CONTENT_TYPE = "application/json"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


def sanitize_string(value: str) -> str:
    return value.replace(NULL_BYTE, "")


def sanitize_value(value: Any) -> Any:
    """Recursively clean every string inside dicts and lists."""
    if isinstance(value, str):
        return sanitize_string(value)
    if isinstance(value, dict):
        return {key: sanitize_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [sanitize_value(item) for item in value]
    return value


def sanitize_pairs(pairs: List[Tuple[str, str]]) -> Tuple[List[Tuple[str, str]], bool]:
    """Clean the values of decoded key/value pairs; report whether anything changed."""
    cleaned = [(key, sanitize_string(value)) for key, value in pairs]
    return cleaned, cleaned != pairs


def _decode_pairs(raw: bytes) -> List[Tuple[str, str]]:
    # surrogateescape keeps undecodable bytes so they survive re-encoding
    return parse_qsl(
        raw.decode("utf-8", "surrogateescape"),
        keep_blank_values=True,
        encoding="utf-8",
        errors="surrogateescape",
    )


def _encode_pairs(pairs: List[Tuple[str, str]]) -> bytes:
    return urlencode(pairs, encoding="utf-8", errors="surrogateescape").encode("ascii")


def sanitize_query_string(raw: bytes) -> bytes:
    if not raw:
        return raw
    cleaned, changed = sanitize_pairs(_decode_pairs(raw))
    if not changed:
        return raw
    return _encode_pairs(cleaned)


def sanitize_json_body(body: bytes) -> bytes:
    """
    Clean string values in a JSON document.

    The document is re-serialized only when a string changed. The round trip
    normalizes number spellings (`1e3` becomes `1000.0`) and keeps the last of
    any duplicate keys.
    """
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return body
    cleaned = sanitize_value(data)
    if cleaned == data:
        return body
    return json.dumps(cleaned, ensure_ascii=False).encode("utf-8")


def sanitize_form_body(body: bytes) -> bytes:
    cleaned, changed = sanitize_pairs(_decode_pairs(body))
    if not changed:
        return body
    return _encode_pairs(cleaned)


def _header(scope: Scope, name: bytes) -> str:
    for key, value in scope.get("headers", []):
        if key.lower() == name:
            return value.decode("latin-1")
    return ""


def _with_header(scope: Scope, name: bytes, value: bytes) -> Scope:
    headers = [(k, v) for k, v in scope.get("headers", []) if k.lower() != name]
    headers.append((name, value))
    return {**scope, "headers": headers}


class InputSanitizerMiddleware:
    """
    Strips null bytes from query parameters and JSON/form bodies.

    Example usage:
        app.add_middleware(InputSanitizerMiddleware)
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        query_string = scope.get("query_string", b"")
        cleaned_query = sanitize_query_string(query_string)
        if cleaned_query != query_string:
            scope = {**scope, "query_string": cleaned_query}

        content_type = _header(scope, b"content-type").split(";")[0].strip().lower()
        if content_type == JSON_CONTENT_TYPE or content_type.endswith("+json"):
            sanitize_body = sanitize_json_body
        elif content_type == FORM_CONTENT_TYPE:
            sanitize_body = sanitize_form_body
        else:
            await self.app(scope, receive, send)
            return

        # ── Buffer the body ───────────────────────────────────────────────
        chunks = []
        while True:
            message = await receive()
            if message["type"] != "http.request":
                # Client disconnected mid-body; let the app observe it
                await self.app(scope, _replay(message, receive), send)
                return
            chunks.append(message.get("body", b""))
            if not message.get("more_body", False):
                break

        body = b"".join(chunks)
        cleaned_body = sanitize_body(body)
        if cleaned_body != body:
            scope = _with_header(scope, b"content-length", str(len(cleaned_body)).encode("latin-1"))

        replayed: Message = {"type": "http.request", "body": cleaned_body, "more_body": False}
        await self.app(scope, _replay(replayed, receive), send)


def _replay(first: Message, receive: Receive) -> Receive:
    """Return `first` once, then defer to the real `receive`."""
    delivered = False

    async def replay_receive() -> Message:
        nonlocal delivered
        if not delivered:
            delivered = True
            return first
        return await receive()

    return replay_receive
