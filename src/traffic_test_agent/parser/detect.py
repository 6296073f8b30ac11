"""Auto-detect session file format."""

import json
from pathlib import Path

from traffic_test_agent.errors import SessionFormatError
from traffic_test_agent.parser.base import Session
from traffic_test_agent.parser.har import parse_har


def detect_format(file_path: Path) -> str:
    """Detect the format of a recorded session file.

    Returns: 'har' or 'session'.
    """
    text = file_path.read_text(encoding="utf-8")

    try:
        data = json.loads(text)
    except (json.JSONDecodeError, ValueError) as e:
        raise SessionFormatError(f"{file_path} is not JSON: {e}") from e

    if isinstance(data, dict):
        if isinstance(data.get("log"), dict) and "entries" in data["log"]:
            return "har"
        if "exchanges" in data and "id" in data:
            return "session"

    raise SessionFormatError(f"{file_path} is neither a HAR log nor a session document")


def load_session(file_path: Path, fmt: str = "auto") -> Session:
    """Load a session from a HAR export or a native session JSON document."""
    if fmt == "auto":
        fmt = detect_format(file_path)

    if fmt == "har":
        return parse_har(file_path)
    return Session.model_validate_json(file_path.read_text(encoding="utf-8"))
