"""Heuristic quality scoring for a single generated fragment (0 to 10)."""

import re

from traffic_test_agent.generator.dialects import Dialect, WrapperKind, profile

PLACEHOLDER_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"//\s*(?:add|more|additional)\s+tests?",
        r"#\s*(?:add|more|additional)\s+tests?",
        r"//\s*\.\.\.",
        r"#\s*\.\.\.",
        r"\bTODO\b",
        r"similar tests? for",
    )
]

ERROR_STATUS = re.compile(r"\b(?:400|401|403|404|409|422|429|500)\b")
ASSERTION = re.compile(r"\b(?:expect|assert|should|toBe|toEqual|toHaveProperty|pm\.expect)\b")
SETUP_HOOK = re.compile(r"\b(?:beforeAll|beforeEach|before|fixture|setup_method)\b")
ENV_ACCESS = re.compile(r"process\.env|os\.getenv|os\.environ|Cypress\.env|\{\{\w+\}\}")

_GROUP = {
    WrapperKind.DESCRIBE: re.compile(r"\bdescribe\s*\("),
    WrapperKind.CLASS: re.compile(r"^\s*class\s+Test\w*", re.MULTILINE),
    WrapperKind.COLLECTION: re.compile(r'"request"\s*:'),
}
_TEST = {
    WrapperKind.DESCRIBE: re.compile(r"\b(?:test|it)\s*\("),
    WrapperKind.CLASS: re.compile(r"^\s*(?:async\s+)?def\s+test_\w*", re.MULTILINE),
    WrapperKind.COLLECTION: re.compile(r"pm\.test\s*\("),
}

MIN_TESTS = 4
MIN_ERROR_CASES = 2


def score_fragment(code: str, dialect: Dialect | str) -> float:
    """Score one endpoint's fragment; 10 is a complete, assertion-rich group."""
    if not code.strip():
        return 0.0
    wrapper = profile(dialect).wrapper
    score = 10.0

    if not _GROUP[wrapper].search(code):
        score -= 2
    tests = len(_TEST[wrapper].findall(code))
    if tests == 0:
        score -= 4
    elif tests < MIN_TESTS:
        score -= 1.5
    if len(ERROR_STATUS.findall(code)) < MIN_ERROR_CASES:
        score -= 2
    if not ASSERTION.search(code):
        score -= 2
    if not ENV_ACCESS.search(code):
        score -= 0.5
    if find_placeholders(code):
        score -= 3
    if SETUP_HOOK.search(code):
        score += 0.5
    return max(0.0, min(10.0, score))


def find_placeholders(code: str) -> list[str]:
    """Lines that look like the model stopped early ("// add more tests")."""
    found = []
    for line in code.splitlines():
        if any(p.search(line) for p in PLACEHOLDER_PATTERNS):
            found.append(line.strip())
    return found
