"""Endpoint fingerprinting. Collapses repeated calls into one logical endpoint.

Grouping is by HTTP method plus the literal URL path. Query-style APIs
(GraphQL) multiplex many operations over one path, so those exchanges get
an extra operation tag derived from the request body.
"""

import json
import re
from urllib.parse import parse_qs, urlsplit

from pydantic import BaseModel, ConfigDict

from traffic_test_agent.parser.base import Exchange

GATEWAY_SEGMENTS = {"graphql", "gql"}

_DECLARATION = re.compile(r"\b(query|mutation|subscription)\b\s*[A-Za-z_{(]")
_NAMED_OPERATION = re.compile(r"(?:query|mutation|subscription)\s+([a-zA-Z][a-zA-Z0-9_]*)")
_OPERATION_TYPE = re.compile(r"^(query|mutation|subscription)")


class EndpointKey(BaseModel):
    """Deduplication identity for one logical API operation."""

    model_config = ConfigDict(frozen=True)

    method: str
    path: str
    operation: str | None = None

    @property
    def signature(self) -> str:
        base = f"{self.method}:{self.path}"
        return f"{base}:{self.operation}" if self.operation else base

    @property
    def label(self) -> str:
        base = f"{self.method} {self.path}"
        return f"{base} ({self.operation})" if self.operation else base


class Endpoint(BaseModel):
    """A unique endpoint and the first exchange seen for it."""

    key: EndpointKey
    exchange: Exchange


def rolling_hash(text: str) -> str:
    """Cheap 32-bit ``h * 31 + c`` hash, absolute value as up to 8 hex digits."""
    h = 0
    for char in text:
        h = (h * 31 + ord(char)) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 1 << 32
    return format(abs(h), "x")[:8]


def endpoint_key(exchange: Exchange) -> EndpointKey:
    """Compute the EndpointKey of a single exchange."""
    try:
        path = exchange.url_path()
    except ValueError:
        return EndpointKey(method=exchange.method, path=exchange.url)

    payload, text = _query_payload(exchange)
    if _looks_like_query_api(path, payload, text):
        operation = _operation_name(payload, text)
        if operation:
            return EndpointKey(method=exchange.method, path=path, operation=operation)
    return EndpointKey(method=exchange.method, path=path)


def filter_excluded(exchanges: list[Exchange], excluded) -> list[Exchange]:
    """Drop exchanges whose key is excluded.

    ``excluded`` may hold EndpointKey objects or signature strings such as
    ``"GET:/api/users"``.
    """
    if not excluded:
        return list(exchanges)
    signatures = {e.signature if isinstance(e, EndpointKey) else str(e) for e in excluded}
    return [ex for ex in exchanges if endpoint_key(ex).signature not in signatures]


def dedupe(exchanges: list[Exchange]) -> list[Endpoint]:
    """Collapse exchanges to unique endpoints, first-seen wins, order preserved."""
    seen: dict[EndpointKey, Endpoint] = {}
    for exchange in exchanges:
        key = endpoint_key(exchange)
        if key not in seen:
            seen[key] = Endpoint(key=key, exchange=exchange)
    return list(seen.values())


# -- query-style detection -------------------------------------------------


def _query_payload(exchange: Exchange) -> tuple[dict | None, str]:
    """Return the request as (parsed JSON object or None, raw text)."""
    text = exchange.request_text()
    if not text and exchange.method == "GET":
        params = parse_qs(urlsplit(exchange.url).query)
        if "query" in params or "operationName" in params:
            payload = {name: values[0] for name, values in params.items()}
            return payload, json.dumps(payload)
        return None, ""
    try:
        payload = exchange.request_json()
    except ValueError:
        return None, text
    return (payload if isinstance(payload, dict) else None), text


def _looks_like_query_api(path: str, payload: dict | None, text: str) -> bool:
    segments = {s.lower() for s in path.split("/") if s}
    if segments & GATEWAY_SEGMENTS:
        return True
    if payload is not None and payload.get("operationName"):
        return True
    return bool(_DECLARATION.search(text))


def _operation_name(payload: dict | None, text: str) -> str | None:
    if payload is None:
        query = text
    else:
        name = payload.get("operationName")
        if isinstance(name, str) and name:
            return name
        query = payload.get("query") if isinstance(payload.get("query"), str) else None

    if query:
        match = _NAMED_OPERATION.search(query)
        if match:
            return match.group(1)
        op_type = _OPERATION_TYPE.match(query.strip())
        if op_type:
            return f"{op_type.group(1)}_{rolling_hash(query)}"

    if not text:
        return None
    return f"operation_{rolling_hash(text)}"
