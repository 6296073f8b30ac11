import base64
import json

from fakes import exchange

from traffic_test_agent.auth.classifier import AuthPattern, classify, looks_like_jwt
from traffic_test_agent.parser.base import Exchange


def _b64(obj: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(obj).encode()).decode().rstrip("=")


def _jwt() -> str:
    return f"{_b64({'alg': 'HS256', 'typ': 'JWT'})}.{_b64({'sub': '42'})}.c2lnbmF0dXJl"


def _login(response_body, path: str = "/api/login", **overrides) -> Exchange:
    return exchange(
        "POST",
        path,
        request_body={"username": "alice", "password": "s3cret"},
        response_body=response_body,
        **overrides,
    )


class TestLoginDetection:
    def test_post_to_login_path_with_credentials(self):
        login = _login({"access_token": "abc"})
        verdict = classify([exchange("GET", "/api/items"), login])
        assert verdict.login_exchange == login

    def test_get_is_never_a_login(self):
        verdict = classify([exchange("GET", "/api/login", response_body={"token": "abc"})])
        assert verdict.login_exchange is None

    def test_login_path_without_auth_content(self):
        verdict = classify([exchange("POST", "/api/login", request_body={"theme": "dark"})])
        assert verdict.login_exchange is None

    def test_first_candidate_wins(self):
        first = _login({"token": "one"}, path="/auth")
        second = _login({"token": "two"}, path="/signin")
        assert classify([first, second]).login_exchange == first


class TestProtectedDetection:
    def test_auth_header_marks_protected(self):
        ex = exchange("GET", "/api/items", request_headers=[("Authorization", "Bearer abc")])
        assert classify([ex]).protected_exchanges == [ex]

    def test_denied_status_marks_protected(self):
        ex = exchange("GET", "/api/items", status=401)
        assert classify([ex]).protected_exchanges == [ex]

    def test_protected_path(self):
        ex = exchange("GET", "/me")
        assert classify([ex]).protected_exchanges == [ex]

    def test_public_endpoint(self):
        assert classify([exchange("GET", "/api/items")]).protected_exchanges == []


class TestTokenExtraction:
    def test_token_from_login_body(self):
        verdict = classify([_login({"access_token": "abc123"})])
        token = verdict.primary_token()
        assert token.type == "bearer"
        assert token.value == "abc123"
        assert token.source == "body"
        assert token.extraction_path == "access_token"

    def test_nested_token_path(self):
        verdict = classify([_login({"data": {"session": {"access_token": "abc"}}})])
        assert verdict.tokens[0].extraction_path == "data.session.access_token"

    def test_search_depth_is_bounded(self):
        verdict = classify([_login({"a": {"b": {"c": {"access_token": "abc"}}}})])
        assert verdict.tokens == []

    def test_bearer_header(self):
        ex = exchange("GET", "/api/items", request_headers=[("Authorization", "Bearer xyz")])
        token = classify([ex]).tokens[0]
        assert (token.type, token.source, token.field, token.value) == ("bearer", "header", "Authorization", "xyz")

    def test_api_key_header(self):
        ex = exchange("GET", "/api/items", request_headers=[("X-API-Key", "k-1")])
        token = classify([ex]).tokens[0]
        assert token.type == "api_key"
        assert token.field == "X-API-Key"

    def test_custom_token_header(self):
        ex = exchange("GET", "/api/items", request_headers=[("X-Session-Token", "t-1")])
        assert classify([ex]).tokens[0].type == "custom"

    def test_tokens_dedupe_on_type_source_field(self):
        exchanges = [
            exchange("GET", "/api/a", request_headers=[("Authorization", "Bearer first")]),
            exchange("GET", "/api/b", request_headers=[("Authorization", "Bearer second")]),
        ]
        tokens = classify(exchanges).tokens
        assert len(tokens) == 1
        assert tokens[0].value == "first"

    def test_non_json_login_response(self):
        verdict = classify([_login("<html>welcome, your token is ready</html>")])
        assert verdict.login_exchange is not None
        assert verdict.tokens == []


class TestPattern:
    def test_jwt(self):
        assert classify([_login({"token": _jwt()})]).pattern is AuthPattern.JWT

    def test_api_key(self):
        ex = exchange("GET", "/api/items", request_headers=[("X-API-Key", "k-1")])
        assert classify([ex]).pattern is AuthPattern.API_KEY

    def test_cookie_based(self):
        login = exchange(
            "POST",
            "/login",
            request_body="username=alice&password=s3cret",
            response_headers=[("Set-Cookie", "sessionid=abc; HttpOnly"), ("Set-Cookie", "theme=dark")],
        )
        verdict = classify([login])
        assert verdict.session_cookies == ["sessionid"]
        assert verdict.pattern is AuthPattern.COOKIE_BASED

    def test_mixed(self):
        login = _login({"access_token": "opaque"}, response_headers=[("Set-Cookie", "connect.sid=s%3Aabc")])
        assert classify([login]).pattern is AuthPattern.MIXED

    def test_oauth(self):
        exchanges = [
            exchange("GET", "/oauth/authorize?client_id=x"),
            exchange("POST", "/oauth/token", request_body={"grant_type": "authorization_code"},
                     response_body={"access_token": _jwt()}),
        ]
        assert classify(exchanges).pattern is AuthPattern.OAUTH

    def test_nothing_observed_is_token_based(self):
        assert classify([exchange("GET", "/api/items")]).pattern is AuthPattern.TOKEN_BASED

    def test_empty_session(self):
        verdict = classify([])
        assert verdict.login_exchange is None
        assert verdict.pattern is AuthPattern.TOKEN_BASED


class TestRobustness:
    def test_unparsable_url_does_not_raise(self):
        bad = Exchange(method="POST", url="::not-a-url::", request_body={"password": "x"})
        verdict = classify([bad, exchange("GET", "/api/items")])
        assert verdict.login_exchange is None

    def test_classification_is_deterministic(self):
        exchanges = [_login({"access_token": "abc"}), exchange("GET", "/me")]
        assert classify(exchanges) == classify(exchanges)


class TestSummary:
    def test_summary_omits_secret_values(self):
        verdict = classify([_login({"access_token": "super-secret-value"})])
        summary = verdict.summary()
        assert summary["pattern"] == "token_based"
        assert summary["login_endpoint"] == "POST /api/login"
        assert "super-secret-value" not in json.dumps(summary)


class TestLooksLikeJwt:
    def test_valid(self):
        assert looks_like_jwt(_jwt())

    def test_opaque(self):
        assert not looks_like_jwt("abc123def456")
        assert not looks_like_jwt("a.b.c")
