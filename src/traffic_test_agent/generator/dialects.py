"""Output dialects: the mutually incompatible syntaxes a suite can be assembled into."""

import json
import re
from dataclasses import dataclass
from enum import Enum
from urllib.parse import parse_qsl

from traffic_test_agent.auth.classifier import AuthPattern, AuthVerdict

DEFAULT_BASE_URL = "http://localhost:8080"


class Dialect(str, Enum):
    JEST = "jest"
    VITEST = "vitest"
    MOCHA = "mocha"
    CYPRESS = "cypress"
    PLAYWRIGHT = "playwright"
    PYTEST = "pytest"
    POSTMAN = "postman"


class WrapperKind(str, Enum):
    DESCRIBE = "describe"  # describe('...', () => { ... });
    CLASS = "class"  # class TestApiSuite: ...
    COLLECTION = "collection"  # Postman collection JSON, no test-group concept


@dataclass(frozen=True)
class DialectProfile:
    dialect: Dialect
    wrapper: WrapperKind
    language: str  # fence language of generated fragments
    comment: str
    header: str
    instructions: str
    describe_call: str = "describe"
    before_all: str = "beforeAll"


_JS_BASE_URL = f"const BASE_URL = process.env.API_BASE_URL || '{DEFAULT_BASE_URL}';"

PROFILES = {
    Dialect.JEST: DialectProfile(
        dialect=Dialect.JEST,
        wrapper=WrapperKind.DESCRIBE,
        language="javascript",
        comment="//",
        header=f"const axios = require('axios');\n\n{_JS_BASE_URL}",
        instructions=(
            "Use Jest with axios. Wrap every test for the endpoint in exactly one "
            "describe('<METHOD> <path>', () => { ... }); block. Use async/await, "
            "validateStatus: () => true for negative cases, and expect() assertions."
        ),
    ),
    Dialect.VITEST: DialectProfile(
        dialect=Dialect.VITEST,
        wrapper=WrapperKind.DESCRIBE,
        language="javascript",
        comment="//",
        header=(
            "import { describe, it, expect, beforeAll } from 'vitest';\n"
            f"import axios from 'axios';\n\n{_JS_BASE_URL}"
        ),
        instructions=(
            "Use Vitest with axios (ES modules). Wrap every test for the endpoint in "
            "exactly one describe('<METHOD> <path>', () => { ... }); block using it()."
        ),
    ),
    Dialect.MOCHA: DialectProfile(
        dialect=Dialect.MOCHA,
        wrapper=WrapperKind.DESCRIBE,
        language="javascript",
        comment="//",
        header=(
            "const { expect } = require('chai');\n"
            f"const axios = require('axios');\n\n{_JS_BASE_URL}"
        ),
        instructions=(
            "Use Mocha with Chai expect and axios. Wrap every test for the endpoint "
            "in exactly one describe('<METHOD> <path>', function () { ... }); block. "
            "Use before()/after() hooks, never beforeAll()."
        ),
        before_all="before",
    ),
    Dialect.CYPRESS: DialectProfile(
        dialect=Dialect.CYPRESS,
        wrapper=WrapperKind.DESCRIBE,
        language="javascript",
        comment="//",
        header=f"/// <reference types=\"cypress\" />\n\nconst BASE_URL = Cypress.env('API_BASE_URL') || '{DEFAULT_BASE_URL}';",
        instructions=(
            "Use Cypress cy.request() with failOnStatusCode: false for negative cases. "
            "Wrap every test for the endpoint in exactly one describe('<METHOD> <path>', () => { ... }); block."
        ),
        before_all="before",
    ),
    Dialect.PLAYWRIGHT: DialectProfile(
        dialect=Dialect.PLAYWRIGHT,
        wrapper=WrapperKind.DESCRIBE,
        language="typescript",
        comment="//",
        header=(
            "import { test, expect } from '@playwright/test';\n\n"
            f"const BASE_URL = process.env.API_BASE_URL || '{DEFAULT_BASE_URL}';"
        ),
        instructions=(
            "Use @playwright/test with the request fixture. Wrap every test for the "
            "endpoint in exactly one test.describe('<METHOD> <path>', () => { ... }); block."
        ),
        describe_call="test.describe",
        before_all="test.beforeAll",
    ),
    Dialect.PYTEST: DialectProfile(
        dialect=Dialect.PYTEST,
        wrapper=WrapperKind.CLASS,
        language="python",
        comment="#",
        header=(
            "import os\n\nimport pytest\nimport requests\n\n"
            f"BASE_URL = os.getenv(\"API_BASE_URL\", \"{DEFAULT_BASE_URL}\")"
        ),
        instructions=(
            "Use pytest with requests. Put every test for the endpoint in exactly one "
            "class Test<Name>: with test_ methods. Read the base URL from BASE_URL and "
            "take the token from an auth_token fixture when authentication is needed."
        ),
    ),
    Dialect.POSTMAN: DialectProfile(
        dialect=Dialect.POSTMAN,
        wrapper=WrapperKind.COLLECTION,
        language="json",
        comment="",
        header="",
        instructions=(
            "Produce Postman Collection v2.1 items as a JSON array. Each item has a name, "
            "a request using {{baseUrl}} and {{authToken}} variables, and an event with a "
            "'test' script using pm.test / pm.expect."
        ),
    ),
}


def profile(dialect: Dialect | str) -> DialectProfile:
    return PROFILES[Dialect(dialect)]


# -- authentication setup ----------------------------------------------------

_USER_KEYS = ("username", "email", "login", "user")
_SECRET_KEYS = ("password", "passwd", "secret", "otp", "pin")


@dataclass(frozen=True)
class EnvRef:
    """An environment-variable placeholder standing in for a captured secret."""

    var: str
    default: str


def placeholder_credentials(verdict: AuthVerdict) -> dict:
    """Login body with identities and secrets replaced by EnvRef placeholders."""
    login = verdict.login_exchange
    if login is None:
        return {}
    try:
        body = login.request_json()
    except ValueError:
        body = dict(parse_qsl(login.request_text()))
    if not isinstance(body, dict):
        return {}

    credentials = {}
    for key, value in body.items():
        lower = key.lower()
        if any(k in lower for k in _SECRET_KEYS):
            var = "TEST_PASSWORD" if "pass" in lower else f"TEST_{_env_suffix(key)}"
            credentials[key] = EnvRef(var, "testpassword")
        elif any(k in lower for k in _USER_KEYS):
            credentials[key] = EnvRef("TEST_USERNAME", "test@example.com")
        else:
            credentials[key] = value
    return credentials


def _env_suffix(key: str) -> str:
    return re.sub(r"[^A-Za-z0-9]+", "_", key).strip("_").upper()


def _login_path(verdict: AuthVerdict) -> str:
    login = verdict.login_exchange
    try:
        return login.url_path()
    except ValueError:
        return login.url


def _token_path(verdict: AuthVerdict) -> list[str]:
    token = verdict.primary_token()
    if token is None:
        return ["token"]
    return (token.extraction_path or token.field).split(".")


def _js_object(credentials: dict, env_expr) -> str:
    parts = []
    for key, value in credentials.items():
        rendered = env_expr(value) if isinstance(value, EnvRef) else json.dumps(value)
        parts.append(f"{json.dumps(key)}: {rendered}")
    return "{ " + ", ".join(parts) + " }" if parts else "{}"


def _py_dict(credentials: dict) -> str:
    parts = []
    for key, value in credentials.items():
        if isinstance(value, EnvRef):
            rendered = f"os.getenv({json.dumps(value.var)}, {json.dumps(value.default)})"
        else:
            rendered = repr(value)
        parts.append(f"{json.dumps(key)}: {rendered}")
    return "{" + ", ".join(parts) + "}"


def render_auth_setup(verdict: AuthVerdict, dialect: Dialect | str) -> str:
    """Shared login setup for the suite, or "" when no login exchange was seen."""
    if verdict.login_exchange is None:
        return ""
    prof = profile(dialect)
    if prof.wrapper is WrapperKind.COLLECTION:
        return json.dumps(postman_login_item(verdict), indent=2)

    credentials = placeholder_credentials(verdict)
    path = _login_path(verdict)
    token_path = _token_path(verdict)
    cookie_based = verdict.pattern is AuthPattern.COOKIE_BASED

    if prof.wrapper is WrapperKind.CLASS:
        accessor = "".join(f"[{json.dumps(p)}]" for p in token_path)
        lines = [
            '@pytest.fixture(scope="class")',
            "def auth_session(self):",
            "    session = requests.Session()",
            f"    response = session.post(f\"{{BASE_URL}}{path}\", json={_py_dict(credentials)})",
            "    assert response.status_code in (200, 201)",
            "    return session, response",
            "",
            "@pytest.fixture(scope=\"class\")",
            "def auth_token(self, auth_session):",
            "    _, response = auth_session",
        ]
        if cookie_based:
            lines.append("    return None")
        else:
            lines.extend([
                f"    token = response.json(){accessor}",
                "    assert token, \"Failed to extract authentication token from login response\"",
                "    return token",
            ])
        return "\n".join(lines)

    js_accessor = "".join(f"[{json.dumps(p)}]" for p in token_path)
    body = _js_object(credentials, lambda ref: f"(process.env.{ref.var} || {json.dumps(ref.default)})")
    if prof.dialect is Dialect.CYPRESS:
        body = _js_object(credentials, lambda ref: f"(Cypress.env({json.dumps(ref.var)}) || {json.dumps(ref.default)})")
        return "\n".join([
            "let authToken;",
            "",
            "before(() => {",
            f"  cy.request('POST', `${{BASE_URL}}{path}`, {body}).then((response) => {{",
            "    expect(response.status).to.be.oneOf([200, 201]);",
            f"    authToken = response.body{js_accessor};",
            "  });",
            "});",
        ])
    if prof.dialect is Dialect.PLAYWRIGHT:
        return "\n".join([
            "let authToken;",
            "",
            "test.beforeAll(async ({ request }) => {",
            f"  const loginResponse = await request.post(`${{BASE_URL}}{path}`, {{ data: {body} }});",
            "  expect(loginResponse.ok()).toBeTruthy();",
            "  const responseBody = await loginResponse.json();",
            f"  authToken = responseBody{js_accessor};",
            "});",
        ])

    capture = (
        "  sessionCookie = loginResponse.headers['set-cookie'];"
        if cookie_based
        else f"  authToken = loginResponse.data{js_accessor};"
    )
    return "\n".join([
        "let authToken;",
        "let sessionCookie;",
        "",
        f"{prof.before_all}(async () => {{",
        f"  const loginResponse = await axios.post(`${{BASE_URL}}{path}`, {body});",
        capture,
        "  if (!authToken && !sessionCookie) {",
        "    throw new Error('Failed to extract authentication from login response');",
        "  }",
        "});",
    ])


def postman_login_item(verdict: AuthVerdict) -> dict:
    credentials = {
        key: "{{%s}}" % value.var if isinstance(value, EnvRef) else value
        for key, value in placeholder_credentials(verdict).items()
    }
    token_path = ".".join(_token_path(verdict))
    return {
        "name": "Authentication setup",
        "request": {
            "method": "POST",
            "header": [{"key": "Content-Type", "value": "application/json"}],
            "body": {"mode": "raw", "raw": json.dumps(credentials, indent=2)},
            "url": {"raw": "{{baseUrl}}" + _login_path(verdict)},
        },
        "event": [
            {
                "listen": "test",
                "script": {
                    "type": "text/javascript",
                    "exec": [
                        "pm.test('login succeeds', () => pm.expect(pm.response.code).to.be.oneOf([200, 201]));",
                        f"pm.collectionVariables.set('authToken', pm.response.json().{token_path});",
                    ],
                },
            }
        ],
    }


def placeholder_fragment(label: str, reason: str, dialect: Dialect | str) -> str:
    """Stand-in fragment for an endpoint whose generation did not succeed."""
    prof = profile(dialect)
    if prof.wrapper is WrapperKind.COLLECTION:
        return json.dumps({"name": f"{label} (not generated)", "description": reason, "item": []}, indent=2)
    lines = [f"Failed to generate tests for {label}", *f"Error: {reason}".splitlines()]
    return "\n".join(f"{prof.comment} {line}".rstrip() for line in lines)
