"""Auth flow classifier — infers how the recorded API authenticates.

The verdict is recomputed from scratch on every call and depends only on
the exchanges passed in. A parse failure on one exchange excludes that
exchange from the affected step; classification itself never raises.
"""

import base64
import binascii
import json
import logging
import re
from enum import Enum

from pydantic import BaseModel

from traffic_test_agent.parser.base import Exchange

logger = logging.getLogger(__name__)

LOGIN_PATH_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"/login$",
        r"/auth$",
        r"/authenticate$",
        r"/signin$",
        r"/oauth/token$",
        r"/api/auth$",
        r"/token$",
        r"/session$",
    )
]

LOGIN_FIELDS = ["username", "email", "password", "credentials", "grant_type", "client_id", "client_secret"]

AUTH_RESPONSE_FIELDS = [
    "token", "access_token", "jwt", "bearer", "session_id",
    "auth_token", "api_key", "refresh_token", "id_token",
]

AUTH_HEADERS = {"authorization", "x-api-key", "x-auth-token"}

PROTECTED_PATH_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"/api/.*/user",
        r"/api/.*/profile",
        r"/api/.*/admin",
        r"/api/.*/dashboard",
        r"/api/.*/private",
        r"/api/.*/secure",
        r"/api/.*/protected",
        r"/me$",
        r"/account",
    )
]

# Ordered: the first field found in a login response is the primary token.
TOKEN_FIELDS = [
    ("access_token", "bearer"),
    ("token", "bearer"),
    ("jwt", "bearer"),
    ("bearer_token", "bearer"),
    ("auth_token", "bearer"),
    ("api_key", "api_key"),
    ("apikey", "api_key"),
    ("key", "api_key"),
]

TOKEN_SEARCH_DEPTH = 3

SESSION_COOKIE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (r"session", r"sess", r"auth", r"token", r"jwt", r"connect\.sid", r"jsessionid")
]

OAUTH_AUTHORIZE_PATTERN = re.compile(r"/(?:oauth2?/)?authorize$", re.IGNORECASE)
OAUTH_TOKEN_PATTERN = re.compile(r"/(?:oauth2?/)?token$", re.IGNORECASE)


class AuthPattern(str, Enum):
    OAUTH = "oauth"
    JWT = "jwt"
    API_KEY = "api_key"
    MIXED = "mixed"
    COOKIE_BASED = "cookie_based"
    TOKEN_BASED = "token_based"


class AuthToken(BaseModel):
    """A credential observed in the session."""

    type: str  # bearer / api_key / custom
    value: str
    source: str  # header / body / cookie
    field: str
    extraction_path: str | None = None  # dotted path into the login response


class AuthVerdict(BaseModel):
    """Structured result of classifying one session."""

    login_exchange: Exchange | None = None
    protected_exchanges: list[Exchange] = []
    tokens: list[AuthToken] = []
    session_cookies: list[str] = []
    pattern: AuthPattern = AuthPattern.TOKEN_BASED

    def primary_token(self) -> AuthToken | None:
        for token in self.tokens:
            if token.type == "bearer":
                return token
        return self.tokens[0] if self.tokens else None

    def summary(self) -> dict:
        """Compact, secret-free description used in prompts and CLI output."""
        return {
            "pattern": self.pattern.value,
            "login_endpoint": (
                f"{self.login_exchange.method} {_path_or_url(self.login_exchange)}"
                if self.login_exchange else None
            ),
            "protected_endpoints": len(self.protected_exchanges),
            "tokens": [
                {"type": t.type, "source": t.source, "field": t.field, "extraction_path": t.extraction_path}
                for t in self.tokens
            ],
            "session_cookies": list(self.session_cookies),
        }


def classify(exchanges: list[Exchange]) -> AuthVerdict:
    """Classify the authentication shape of a session."""
    login = _detect_login(exchanges)
    protected = _detect_protected(exchanges)
    tokens = _extract_tokens(exchanges, login)
    cookies = _extract_session_cookies(exchanges)
    pattern = _decide_pattern(exchanges, tokens, cookies)
    return AuthVerdict(
        login_exchange=login,
        protected_exchanges=protected,
        tokens=tokens,
        session_cookies=cookies,
        pattern=pattern,
    )


# -- step 1: login ----------------------------------------------------------


def _detect_login(exchanges: list[Exchange]) -> Exchange | None:
    for exchange in exchanges:
        try:
            path = exchange.url_path()
        except ValueError:
            logger.debug("Skipping %s for login detection: unparsable URL", exchange.url)
            continue
        if exchange.method != "POST":
            continue
        if not any(p.search(path) for p in LOGIN_PATH_PATTERNS):
            continue
        if _mentions(exchange.request_text(), LOGIN_FIELDS) or _mentions(exchange.response_text(), AUTH_RESPONSE_FIELDS):
            return exchange
    return None


def _mentions(text: str, fields: list[str]) -> bool:
    lower = text.lower()
    return any(field in lower for field in fields)


# -- step 2: protected endpoints ---------------------------------------------


def _detect_protected(exchanges: list[Exchange]) -> list[Exchange]:
    protected = []
    for exchange in exchanges:
        has_auth_header = any(name.lower() in AUTH_HEADERS for name, _ in exchange.request_headers)
        has_auth_status = exchange.status in (401, 403)
        try:
            path = exchange.url_path()
        except ValueError:
            path = None
        is_protected_path = path is not None and any(p.search(path) for p in PROTECTED_PATH_PATTERNS)
        if has_auth_header or is_protected_path or has_auth_status:
            protected.append(exchange)
    return protected


# -- step 3: tokens ------------------------------------------------------------


def _extract_tokens(exchanges: list[Exchange], login: Exchange | None) -> list[AuthToken]:
    tokens: list[AuthToken] = []
    if login is not None:
        tokens.extend(_tokens_from_response(login))
    for exchange in exchanges:
        tokens.extend(_tokens_from_headers(exchange))
    return _dedupe_tokens(tokens)


def _tokens_from_response(exchange: Exchange) -> list[AuthToken]:
    try:
        body = exchange.response_json()
    except (ValueError, TypeError) as e:
        logger.debug("Login response of %s is not JSON: %s", exchange.url, e)
        return []

    tokens = []
    for field, token_type in TOKEN_FIELDS:
        found = _find_field(body, field, TOKEN_SEARCH_DEPTH)
        if found is None:
            continue
        path, value = found
        if isinstance(value, str) and value:
            tokens.append(AuthToken(type=token_type, value=value, source="body", field=field, extraction_path=path))
    return tokens


def _find_field(obj, target: str, depth: int, prefix: str = "") -> tuple[str, object] | None:
    """Depth-first search for ``target`` as a key; returns (dotted path, value)."""
    if not isinstance(obj, dict) or depth <= 0:
        return None
    if target in obj:
        return (f"{prefix}.{target}" if prefix else target), obj[target]
    for key, value in obj.items():
        if isinstance(value, dict):
            found = _find_field(value, target, depth - 1, f"{prefix}.{key}" if prefix else key)
            if found is not None:
                return found
    return None


def _tokens_from_headers(exchange: Exchange) -> list[AuthToken]:
    tokens = []
    for name, value in exchange.request_headers:
        lower = name.lower()
        value = str(value)
        if lower == "authorization":
            scheme, _, credential = value.partition(" ")
            if scheme.lower() == "bearer" and credential:
                tokens.append(AuthToken(type="bearer", value=credential.strip(), source="header", field="Authorization"))
            elif scheme.lower() == "apikey" and credential:
                tokens.append(AuthToken(type="api_key", value=credential.strip(), source="header", field="Authorization"))
        elif "api" in lower and "key" in lower:
            tokens.append(AuthToken(type="api_key", value=value, source="header", field=name))
        elif "token" in lower:
            tokens.append(AuthToken(type="custom", value=value, source="header", field=name))
    return tokens


def _dedupe_tokens(tokens: list[AuthToken]) -> list[AuthToken]:
    # Value is deliberately not part of the key: one token per field.
    seen = set()
    unique = []
    for token in tokens:
        key = (token.type, token.source, token.field)
        if key in seen:
            continue
        seen.add(key)
        unique.append(token)
    return unique


# -- step 4: cookies ----------------------------------------------------------


def _extract_session_cookies(exchanges: list[Exchange]) -> list[str]:
    cookies: list[str] = []
    for exchange in exchanges:
        for header in exchange.headers_named("set-cookie", response=True):
            name = header.split("=", 1)[0].strip()
            if name and name not in cookies and any(p.search(name) for p in SESSION_COOKIE_PATTERNS):
                cookies.append(name)
    return cookies


# -- step 5: pattern ------------------------------------------------------------


def _decide_pattern(exchanges: list[Exchange], tokens: list[AuthToken], cookies: list[str]) -> AuthPattern:
    has_tokens = bool(tokens)
    has_cookies = bool(cookies)

    if _has_oauth_flow(exchanges):
        return AuthPattern.OAUTH
    if any(t.type == "bearer" and looks_like_jwt(t.value) for t in tokens):
        return AuthPattern.JWT
    if any(t.type == "api_key" for t in tokens) and not has_cookies:
        return AuthPattern.API_KEY
    if has_tokens and has_cookies:
        return AuthPattern.MIXED
    if has_cookies:
        return AuthPattern.COOKIE_BASED
    return AuthPattern.TOKEN_BASED


def _has_oauth_flow(exchanges: list[Exchange]) -> bool:
    authorize = token = False
    for exchange in exchanges:
        try:
            path = exchange.url_path()
        except ValueError:
            continue
        authorize = authorize or bool(OAUTH_AUTHORIZE_PATTERN.search(path))
        token = token or bool(OAUTH_TOKEN_PATTERN.search(path))
    return authorize and token


def looks_like_jwt(value: str) -> bool:
    """Three base64url segments whose header and claims decode to JSON objects."""
    parts = value.split(".")
    if len(parts) != 3 or not all(parts[:2]):
        return False
    for segment in parts[:2]:
        try:
            decoded = base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))
            claims = json.loads(decoded)
        except (binascii.Error, ValueError):
            return False
        if not isinstance(claims, dict):
            return False
    return True


def _path_or_url(exchange: Exchange) -> str:
    try:
        return exchange.url_path()
    except ValueError:
        return exchange.url
