"""HAR 1.2 parser.

Parses browser/proxy HAR exports into Session models, and renders a single
Exchange back into the one-entry HAR log sent to a backend.
"""

import json
from datetime import datetime
from pathlib import Path

from .base import Exchange, Session

HAR_CREATOR = {"name": "traffic-test-agent", "version": "0.1.0"}


def parse_har(file_path: Path) -> Session:
    """Parse a HAR file into a Session."""
    data = json.loads(file_path.read_text(encoding="utf-8"))
    log = data.get("log", {})

    exchanges = [_parse_entry(entry) for entry in log.get("entries", [])]
    pages = log.get("pages") or []
    name = pages[0].get("title", "") if pages else ""

    return Session(
        id=file_path.stem,
        name=name or file_path.stem,
        created_at=exchanges[0].timestamp if exchanges else 0.0,
        exchanges=exchanges,
    )


def _parse_entry(entry: dict) -> Exchange:
    req = entry.get("request", {})
    resp = entry.get("response", {})
    post_data = req.get("postData") or {}
    content = resp.get("content") or {}

    return Exchange(
        method=req.get("method", "GET"),
        url=req.get("url", ""),
        request_headers=_parse_headers(req.get("headers", [])),
        request_body=_parse_body(post_data.get("text")),
        status=resp.get("status") or None,
        response_headers=_parse_headers(resp.get("headers", [])),
        response_body=_parse_body(content.get("text")),
        timestamp=_parse_timestamp(entry.get("startedDateTime")),
        duration=float(entry.get("time") or 0),
    )


def _parse_headers(headers: list[dict]) -> list[tuple[str, str]]:
    return [(h.get("name", ""), str(h.get("value", ""))) for h in headers]


def _parse_body(text: str | None):
    if not text:
        return None
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        return text
    # Scalar JSON ("5", "true") stays as text.
    return value if isinstance(value, (dict, list)) else text


def _parse_timestamp(value: str | None) -> float:
    if not value:
        return 0.0
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return 0.0


def exchange_to_har_entry(exchange: Exchange) -> dict:
    """Render one exchange as a HAR log holding a single entry."""
    request = {
        "method": exchange.method,
        "url": exchange.url,
        "httpVersion": "HTTP/1.1",
        "headers": [{"name": k, "value": v} for k, v in exchange.request_headers],
        "queryString": [],
        "cookies": [],
        "headersSize": -1,
        "bodySize": -1,
    }
    if exchange.request_body is not None:
        request["postData"] = {
            "mimeType": exchange.header("content-type") or "application/json",
            "text": exchange.request_text(),
        }

    response_text = exchange.response_text()
    response = {
        "status": exchange.status or 200,
        "statusText": "",
        "httpVersion": "HTTP/1.1",
        "headers": [{"name": k, "value": v} for k, v in exchange.response_headers],
        "cookies": [],
        "content": {
            "size": len(response_text),
            "mimeType": next(iter(exchange.headers_named("content-type", response=True)), "application/json"),
            "text": response_text or None,
        },
        "redirectURL": "",
        "headersSize": -1,
        "bodySize": len(response_text),
    }

    entry = {
        "startedDateTime": datetime.fromtimestamp(exchange.timestamp).astimezone().isoformat(),
        "time": exchange.duration,
        "request": request,
        "response": response,
        "cache": {},
        "timings": {"send": 0, "wait": exchange.duration, "receive": 0},
    }
    return {"log": {"version": "1.2", "creator": HAR_CREATOR, "entries": [entry]}}
