"""Unified data models for captured HTTP traffic.

All session loaders (HAR, native session JSON) convert their input
into these standard models for downstream processing.
"""

import json
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, field_validator

Body = str | bytes | dict | list | None


def _body_text(body: Body) -> str:
    if body is None:
        return ""
    if isinstance(body, bytes):
        return body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        return body
    return json.dumps(body)


def _body_json(body: Body):
    if isinstance(body, (dict, list)):
        return body
    text = _body_text(body)
    if not text:
        raise ValueError("empty body")
    return json.loads(text)


class Exchange(BaseModel):
    """One captured request/response pair."""

    model_config = ConfigDict(frozen=True)

    method: str  # GET / POST / PUT / DELETE / PATCH
    url: str
    request_headers: list[tuple[str, str]] = []
    request_body: Body = None
    status: int | None = None
    response_headers: list[tuple[str, str]] = []
    response_body: Body = None
    timestamp: float = 0.0
    duration: float = 0.0  # milliseconds

    @field_validator("method")
    @classmethod
    def _upper_method(cls, value: str) -> str:
        return value.upper()

    @field_validator("request_headers", "response_headers", mode="before")
    @classmethod
    def _pairs(cls, value):
        if isinstance(value, dict):
            return [(str(k), str(v)) for k, v in value.items()]
        return value

    def header(self, name: str) -> str | None:
        """First request header called ``name`` (case-insensitive)."""
        values = self.headers_named(name)
        return values[0] if values else None

    def headers_named(self, name: str, response: bool = False) -> list[str]:
        headers = self.response_headers if response else self.request_headers
        lower = name.lower()
        return [v for k, v in headers if k.lower() == lower]

    def url_path(self) -> str:
        """Path component of the URL. Raises ValueError for non-absolute URLs."""
        parts = urlsplit(self.url)
        if not parts.scheme or not parts.netloc:
            raise ValueError(f"not an absolute URL: {self.url!r}")
        return parts.path or "/"

    def request_text(self) -> str:
        return _body_text(self.request_body)

    def response_text(self) -> str:
        return _body_text(self.response_body)

    def request_json(self):
        return _body_json(self.request_body)

    def response_json(self):
        return _body_json(self.response_body)


class Session(BaseModel):
    """An ordered recording of exchanges processed together."""

    id: str
    name: str = ""
    created_at: float = 0.0
    exchanges: list[Exchange] = []
