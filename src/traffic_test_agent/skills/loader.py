"""Skill loader — selects and loads prompt knowledge modules based on endpoint characteristics."""

from pathlib import Path
from urllib.parse import parse_qs, urlsplit

from traffic_test_agent.auth.classifier import AuthVerdict
from traffic_test_agent.fingerprint import EndpointKey
from traffic_test_agent.parser.base import Exchange

SKILLS_DIR = Path(__file__).parent

PAGINATION_PARAM_NAMES = {"page", "size", "limit", "offset", "page_size", "per_page", "pagesize", "cursor"}


def select_skills(key: EndpointKey, exchange: Exchange, verdict: AuthVerdict) -> list[str]:
    """Select which skill files to load for one endpoint."""
    skills = ["base.md"]

    if verdict.login_exchange is not None or exchange in verdict.protected_exchanges:
        skills.append("auth.md")

    if key.operation:
        skills.append("graphql.md")

    if _has_pagination_params(exchange):
        skills.append("pagination.md")

    content_type = exchange.header("content-type") or ""
    if content_type.startswith("multipart/form-data"):
        skills.append("file-upload.md")

    return skills


def load_skill_content(skill_names: list[str]) -> str:
    """Load and concatenate the content of the given skill files."""
    parts = []
    for name in skill_names:
        path = SKILLS_DIR / name
        if path.exists():
            parts.append(path.read_text(encoding="utf-8"))
    return "\n\n---\n\n".join(parts)


def _has_pagination_params(exchange: Exchange) -> bool:
    param_names = {name.lower() for name in parse_qs(urlsplit(exchange.url).query)}
    return bool(param_names & PAGINATION_PARAM_NAMES)
