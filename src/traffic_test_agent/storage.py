"""Read-only storage collaborators: recorded sessions and backend credentials."""

import os
from pathlib import Path

from traffic_test_agent.parser.base import Session
from traffic_test_agent.parser.detect import load_session

CREDENTIAL_ENV = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "gemini": "GEMINI_API_KEY",
}

SESSION_SUFFIXES = (".har", ".json")


class FileSessionStore:
    """Sessions stored as HAR or session JSON files in one directory."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def list_sessions(self) -> list[str]:
        return sorted(p.stem for p in self.root.iterdir() if p.suffix in SESSION_SUFFIXES)

    def load(self, session_id: str) -> Session:
        for suffix in SESSION_SUFFIXES:
            path = self.root / f"{session_id}{suffix}"
            if path.exists():
                return load_session(path)
        raise FileNotFoundError(f"No session '{session_id}' in {self.root}")


class EnvCredentialStore:
    """Backend API keys taken from the usual provider environment variables."""

    def __init__(self, environ=None):
        self.environ = os.environ if environ is None else environ

    def get(self, backend_id: str) -> str | None:
        var = CREDENTIAL_ENV.get(backend_id)
        return self.environ.get(var) if var else None
