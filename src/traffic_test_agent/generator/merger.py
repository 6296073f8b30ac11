"""Fragment merger — assembles per-endpoint fragments into one suite document.

Extraction of each fragment's test-group body is a best-effort text
transform. A fragment that does not match the dialect's structure is kept
verbatim behind a clarifying comment; no fragment is ever dropped.
"""

import json
import math
import re
import textwrap

from pydantic import BaseModel, ConfigDict

from traffic_test_agent.auth.classifier import AuthVerdict
from traffic_test_agent.generator.dialects import (
    Dialect,
    DialectProfile,
    WrapperKind,
    postman_login_item,
    profile,
    render_auth_setup,
)
from traffic_test_agent.generator.dispatcher import JobResult, JobStatus, aggregate_quality
from traffic_test_agent.generator.prompts import extract_code

SUITE_NAME = "API Test Suite - Complete Coverage"
POSTMAN_SCHEMA = "https://schema.getpostman.com/json/collection/v2.1.0/collection.json"

_DESCRIBE = re.compile(
    r"(?:test\.)?describe\s*\(\s*(['\"`])(.+?)\1\s*,\s*(?:async\s*)?"
    r"(?:\(\s*\)\s*=>|function\s*\(\s*\))\s*\{(.*)\}\s*\)\s*;?\s*$",
    re.DOTALL,
)
_CLASS_HEADER = re.compile(r"^class\s+(Test\w*)\s*(?:\([^)]*\))?\s*:[ \t]*$", re.MULTILINE)


class MergedOutput(BaseModel):
    """The assembled suite and its aggregate metadata."""

    model_config = ConfigDict(frozen=True)

    code: str
    dialect: Dialect
    endpoint_count: int
    quality_score: float
    warnings: list[str] = []
    estimated_tokens: int
    estimated_cost: float


def extract_body(text: str, dialect: Dialect | str) -> tuple[str, str, bool]:
    """Return (group name, group body, ok) for one generated fragment."""
    code = extract_code(text)
    wrapper = profile(dialect).wrapper

    if wrapper is WrapperKind.DESCRIBE:
        match = _DESCRIBE.search(code)
        if match and match.group(3).strip():
            return match.group(2), textwrap.dedent(match.group(3)).strip("\n"), True
        return "", code, False

    if wrapper is WrapperKind.CLASS:
        match = _CLASS_HEADER.search(code)
        if match:
            body = _indented_block(code[match.end():])
            if body.strip():
                return match.group(1), textwrap.dedent(body).strip("\n"), True
        return "", code, False

    return "", code, False


def _indented_block(rest: str) -> str:
    lines = []
    for line in rest.lstrip("\n").splitlines():
        if line.strip() and not line[0].isspace():
            break
        lines.append(line)
    return "\n".join(lines)


def _indent(text: str, spaces: int) -> str:
    return textwrap.indent(text, " " * spaces, lambda line: bool(line.strip()))


class FragmentMerger:
    """Assembles ordered JobResults into a single dialect-conformant document.

    ``estimator`` is anything with ``count_tokens(text)`` and
    ``estimate_cost(tokens)``, usually the backend that generated the
    fragments. Without one, tokens are estimated at four characters each
    and cost is reported as zero.
    """

    def __init__(self, estimator=None):
        self.estimator = estimator

    def merge(self, results: list[JobResult], verdict: AuthVerdict, dialect: Dialect | str) -> MergedOutput:
        prof = profile(dialect)
        if prof.wrapper is WrapperKind.COLLECTION:
            code = self._merge_collection(results, verdict)
        else:
            code = self._merge_code(results, verdict, prof)

        warnings = [w for r in results for w in r.warnings]
        tokens = self.estimator.count_tokens(code) if self.estimator else math.ceil(len(code) / 4)
        cost = self.estimator.estimate_cost(tokens) if self.estimator else 0.0
        return MergedOutput(
            code=code,
            dialect=prof.dialect,
            endpoint_count=len(results),
            quality_score=aggregate_quality(results),
            warnings=warnings,
            estimated_tokens=tokens,
            estimated_cost=cost,
        )

    # -- describe / class dialects ---------------------------------------------

    def _merge_code(self, results: list[JobResult], verdict: AuthVerdict, prof: DialectProfile) -> str:
        is_class = prof.wrapper is WrapperKind.CLASS
        inner = 4 if is_class else 2
        blocks = []
        used_names: set[str] = set()

        setup = render_auth_setup(verdict, prof.dialect)
        if setup:
            blocks.append(_indent(f"{prof.comment} Authentication setup\n{setup}", inner))

        for position, result in enumerate(results, start=1):
            if result.status is not JobStatus.SUCCEEDED:
                blocks.append(_indent(result.fragment, inner))
                continue
            name, body, ok = extract_body(result.fragment, prof.dialect)
            if not ok:
                blocks.append(_indent(
                    f"{prof.comment} Endpoint {position} ({result.endpoint}): generated output did not match "
                    f"the expected {prof.wrapper.value} structure and is included verbatim\n{body}",
                    inner,
                ))
                continue
            if is_class:
                name = _unique(name, used_names)
                blocks.append(_indent(f"class {name}:\n{_indent(body, 4)}", inner))
            else:
                quoted = name.replace("\\", "\\\\").replace("'", "\\'")
                blocks.append(_indent(
                    f"{prof.describe_call}('{quoted}', () => {{\n{_indent(body, 2)}\n}});", inner
                ))

        joined = "\n\n".join(blocks)
        if is_class:
            doc = f'class TestApiSuite:\n    """{SUITE_NAME}."""\n\n{joined}\n'
        else:
            doc = f"{prof.describe_call}('{SUITE_NAME}', () => {{\n{joined}\n}});\n"
        return f"{prof.header}\n\n\n{doc}" if is_class else f"{prof.header}\n\n{doc}"

    # -- collection dialect -------------------------------------------------------

    def _merge_collection(self, results: list[JobResult], verdict: AuthVerdict) -> str:
        items = []
        if verdict.login_exchange is not None:
            items.append(postman_login_item(verdict))
        for result in results:
            if result.status is not JobStatus.SUCCEEDED:
                items.append(json.loads(result.fragment))
                continue
            items.append({"name": result.endpoint, "item": _collection_items(result)})

        collection = {
            "info": {"name": SUITE_NAME, "schema": POSTMAN_SCHEMA},
            "item": items,
            "variable": [
                {"key": "baseUrl", "value": "http://localhost:8080"},
                {"key": "authToken", "value": ""},
            ],
        }
        return json.dumps(collection, indent=2) + "\n"


def _collection_items(result: JobResult) -> list:
    code = extract_code(result.fragment)
    try:
        data = json.loads(code)
    except ValueError:
        return [{"name": f"{result.endpoint} (unstructured output)", "description": code, "item": []}]
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get("item"), list):
        return data["item"]
    if isinstance(data, dict) and "request" in data:
        return [data]
    return [{"name": f"{result.endpoint} (unstructured output)", "description": code, "item": []}]


def _unique(name: str, used: set[str]) -> str:
    candidate, n = name, 2
    while candidate in used:
        candidate = f"{name}{n}"
        n += 1
    used.add(candidate)
    return candidate
