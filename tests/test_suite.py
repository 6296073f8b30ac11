import asyncio
from pathlib import Path

from fakes import ScriptedBackend

from traffic_test_agent.auth.classifier import AuthPattern
from traffic_test_agent.cancel import CancellationToken
from traffic_test_agent.config import Settings
from traffic_test_agent.errors import MalformedInputError
from traffic_test_agent.generator.suite import SuiteGenerator
from traffic_test_agent.parser.detect import load_session
from traffic_test_agent.ratelimit import RateLimit, RateLimiter

FIXTURES = Path(__file__).parent / "fixtures"

FAST = Settings(backoff_base=0.001, backoff_cap=0.002)


def _generator(backend) -> SuiteGenerator:
    return SuiteGenerator(backend, rate_limiter=RateLimiter(default=RateLimit(1000, 60.0)), settings=FAST)


class TestSuiteGenerator:
    def test_recorded_shop_session(self):
        session = load_session(FIXTURES / "shop.har")
        backend = ScriptedBackend()
        report = _generator(backend).generate(session, "jest")

        assert [k.signature for k in report.endpoints] == [
            "POST:/api/login",
            "GET:/api/products",
            "GET:/api/products/42",
            "GET:/api/orders",
            "GET:/api/categories",
            "GET:/api/health",
        ]
        assert report.verdict.pattern is AuthPattern.TOKEN_BASED
        assert len(report.verdict.tokens) == 1
        assert report.verdict.tokens[0].type == "bearer"

        merged = report.output
        assert merged.endpoint_count == 6
        assert merged.quality_score == 9.0
        assert merged.warnings == []
        assert "beforeAll(async () => {" in merged.code
        assert 'loginResponse.data["access_token"]' in merged.code
        assert merged.estimated_cost == merged.estimated_tokens * 0.00001

    def test_failing_endpoint_gets_one_warning(self):
        session = load_session(FIXTURES / "shop.har")
        backend = ScriptedBackend(script={"/api/orders": [MalformedInputError("content policy")]})
        report = _generator(backend).generate(session, "jest")

        merged = report.output
        assert merged.endpoint_count == 6
        assert len(merged.warnings) == 1
        assert merged.warnings[0].startswith("GET /api/orders:")
        assert "Failed to generate tests for GET /api/orders" in merged.code
        assert merged.quality_score == 9.0

    def test_excluded_endpoints(self):
        session = load_session(FIXTURES / "shop.har")
        report = _generator(ScriptedBackend()).generate(session, "jest", excluded=["GET:/api/health"])
        assert report.output.endpoint_count == 5
        assert "GET /api/health" not in report.output.code

    def test_pytest_dialect(self):
        session = load_session(FIXTURES / "shop.har")
        report = _generator(ScriptedBackend()).generate(session, "pytest")
        # Jest fragments do not fit the class structure and are kept verbatim.
        assert "class TestApiSuite:" in report.output.code
        assert report.output.code.count("generated output did not match") == 6

    def test_cancelled_session(self):
        session = load_session(FIXTURES / "shop.har")
        backend = ScriptedBackend()
        token = CancellationToken()
        token.cancel()
        report = asyncio.run(_generator(backend).agenerate(session, "jest", cancel_token=token))
        assert backend.calls == []
        assert report.output.quality_score == 0.0
        assert len(report.job_warnings) == 6

    def test_default_limiter_from_settings(self):
        settings = Settings(rate_limits={"fake": {"max_requests": 7}})
        generator = SuiteGenerator(ScriptedBackend(), settings=settings)
        assert generator.rate_limiter.limit_for("fake").max_requests == 7
