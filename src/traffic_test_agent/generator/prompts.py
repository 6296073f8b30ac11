"""Prompt assembly for one narrowed, single-endpoint generation request."""

import json
import re
from dataclasses import dataclass
from pathlib import Path

from traffic_test_agent.auth.classifier import AuthVerdict
from traffic_test_agent.fingerprint import EndpointKey
from traffic_test_agent.generator.dialects import Dialect, profile
from traffic_test_agent.parser.base import Exchange
from traffic_test_agent.parser.har import exchange_to_har_entry
from traffic_test_agent.skills.loader import load_skill_content, select_skills

PROMPTS_DIR = Path(__file__).parent.parent / "prompts"

_FENCE = re.compile(r"```[\w+-]*[ \t]*\n(.*?)```", re.DOTALL)


@dataclass(frozen=True)
class EndpointRequest:
    """Everything a backend needs to generate tests for exactly one endpoint."""

    key: EndpointKey
    exchange: Exchange

    def har(self) -> dict:
        return exchange_to_har_entry(self.exchange)


def build_system_prompt(request: EndpointRequest, verdict: AuthVerdict) -> str:
    skill_content = load_skill_content(select_skills(request.key, request.exchange, verdict))
    prompt_template = (PROMPTS_DIR / "endpoint.md").read_text(encoding="utf-8")
    return f"{skill_content}\n\n---\n\n{prompt_template}"


def build_user_prompt(request: EndpointRequest, verdict: AuthVerdict, dialect: Dialect | str) -> str:
    prof = profile(dialect)
    return (
        f"Framework: {prof.dialect.value}\n"
        f"{prof.instructions}\n\n"
        f"Endpoint: {request.key.label}\n\n"
        f"Authentication summary:\n```json\n{json.dumps(verdict.summary(), indent=2)}\n```\n\n"
        f"Recorded exchange (HAR):\n```json\n{json.dumps(request.har(), indent=2)}\n```"
    )


def extract_code(response: str) -> str:
    """Extract code from the first markdown code block, or the whole response."""
    match = _FENCE.search(response)
    if match:
        return match.group(1).strip()
    return response.strip()
