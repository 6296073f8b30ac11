"""Suite generator — session in, merged test suite out."""

import asyncio
import logging
from dataclasses import dataclass

from traffic_test_agent.auth.classifier import AuthVerdict, classify
from traffic_test_agent.backends import Backend
from traffic_test_agent.cancel import CancellationToken
from traffic_test_agent.config import Settings
from traffic_test_agent.fingerprint import EndpointKey, dedupe, filter_excluded
from traffic_test_agent.generator.dialects import Dialect
from traffic_test_agent.generator.dispatcher import BatchDispatcher, RetryPolicy
from traffic_test_agent.generator.merger import FragmentMerger, MergedOutput
from traffic_test_agent.parser.base import Session
from traffic_test_agent.ratelimit import RateLimiter

logger = logging.getLogger(__name__)


@dataclass
class GenerationReport:
    output: MergedOutput
    endpoints: list[EndpointKey]
    verdict: AuthVerdict
    job_warnings: list[str]


class SuiteGenerator:
    """Runs fingerprinting, classification, dispatch and merge for one session.

    A limiter passed in is shared with other generators; otherwise each
    generator gets its own.
    """

    def __init__(self, backend: Backend, rate_limiter: RateLimiter | None = None, settings: Settings | None = None):
        self.settings = settings or Settings()
        self.backend = backend
        self.rate_limiter = rate_limiter or self.settings.rate_limiter()
        self.dispatcher = BatchDispatcher(
            backend,
            self.rate_limiter,
            batch_size=self.settings.batch_size,
            retry_policy=RetryPolicy(
                max_retries=self.settings.max_retries,
                base_delay=self.settings.backoff_base,
                max_delay=self.settings.backoff_cap,
            ),
        )
        self.merger = FragmentMerger(estimator=backend)

    async def agenerate(
        self,
        session: Session,
        dialect: Dialect | str,
        excluded=None,
        cancel_token: CancellationToken | None = None,
    ) -> GenerationReport:
        dialect = Dialect(dialect)
        exchanges = filter_excluded(session.exchanges, excluded)
        endpoints = dedupe(exchanges)
        logger.info(
            "Session %s: %d exchanges, %d unique endpoints", session.id, len(exchanges), len(endpoints)
        )

        verdict = classify(exchanges)
        logger.info("Detected authentication pattern: %s", verdict.pattern.value)

        outcome = await self.dispatcher.dispatch(endpoints, verdict, dialect, cancel_token=cancel_token)
        output = self.merger.merge(outcome.results, verdict, dialect)
        return GenerationReport(
            output=output,
            endpoints=[ep.key for ep in endpoints],
            verdict=verdict,
            job_warnings=[w for r in outcome.results for w in r.warnings],
        )

    def generate(self, session: Session, dialect: Dialect | str, excluded=None) -> GenerationReport:
        """Blocking wrapper around :meth:`agenerate`."""
        return asyncio.run(self.agenerate(session, dialect, excluded))
