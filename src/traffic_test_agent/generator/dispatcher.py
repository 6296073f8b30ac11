"""Batch dispatcher: one generation job per endpoint, bounded concurrency.

Endpoints are cut into fixed-size batches. Jobs inside a batch run in
parallel; the next batch starts only after the whole batch finished.
Every endpoint ends with exactly one JobResult at its own index, whether
the job succeeded, failed or was cancelled.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum

from pydantic import BaseModel, ConfigDict

from traffic_test_agent.auth.classifier import AuthVerdict
from traffic_test_agent.backends import Backend
from traffic_test_agent.cancel import CancellationToken
from traffic_test_agent.errors import BackendError, GenerationCancelled
from traffic_test_agent.fingerprint import Endpoint, EndpointKey
from traffic_test_agent.generator.dialects import Dialect, placeholder_fragment
from traffic_test_agent.generator.prompts import EndpointRequest
from traffic_test_agent.parser.base import Exchange
from traffic_test_agent.ratelimit import RateLimiter

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5
QUALITY_FLOOR = 8.0
MAX_SCORE = 10.0


class JobStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobResult(BaseModel):
    """Outcome of one generation job."""

    model_config = ConfigDict(frozen=True)

    index: int
    endpoint: str  # "GET /api/users"
    signature: str  # "GET:/api/users"
    fragment: str
    quality_score: float
    warnings: list[str] = []
    status: JobStatus = JobStatus.SUCCEEDED
    attempts: int = 1


@dataclass
class GenerationJob:
    key: EndpointKey
    exchange: Exchange
    index: int
    attempt: int = 0


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff without jitter: ``min(base * 2**attempt, cap)``."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * 2 ** attempt, self.max_delay)


@dataclass
class DispatchOutcome:
    results: list[JobResult]
    running_min: float
    quality_score: float


def aggregate_quality(results: list[JobResult], floor: float = QUALITY_FLOOR) -> float:
    """Suite score: the floor or the weakest success, whichever is higher.

    Zero when no job succeeded.
    """
    succeeded = [r for r in results if r.status is JobStatus.SUCCEEDED]
    if not succeeded:
        return 0.0
    running_min = min(r.quality_score for r in succeeded)
    return max(floor, running_min)


class BatchDispatcher:
    """Drives one generation job per endpoint through a shared backend."""

    def __init__(
        self,
        backend: Backend,
        rate_limiter: RateLimiter,
        batch_size: int = DEFAULT_BATCH_SIZE,
        retry_policy: RetryPolicy | None = None,
    ):
        self.backend = backend
        self.rate_limiter = rate_limiter
        self.batch_size = batch_size
        self.retry_policy = retry_policy or RetryPolicy()

    async def dispatch(
        self,
        endpoints: list[Endpoint],
        verdict: AuthVerdict,
        dialect: Dialect,
        *,
        concurrency_limit: int | None = None,
        max_retries: int | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> DispatchOutcome:
        """Generate a fragment for every endpoint; ``results[i]`` belongs to ``endpoints[i]``.

        Only fatal-session errors (bad credentials) propagate. Everything
        else ends up as a placeholder result with a warning.
        """
        batch_size = max(1, concurrency_limit or self.batch_size)
        policy = self.retry_policy if max_retries is None else replace(self.retry_policy, max_retries=max_retries)
        parent = cancel_token or CancellationToken()
        token = parent.child()
        results: list[JobResult | None] = [None] * len(endpoints)
        try:
            await self._run_batches(endpoints, verdict, dialect, policy, token, results, batch_size)
        finally:
            parent.discard(token)

        final = [r for r in results if r is not None]
        running_min = min((r.quality_score for r in final), default=0.0)
        return DispatchOutcome(results=final, running_min=running_min, quality_score=aggregate_quality(final))

    async def _run_batches(
        self,
        endpoints: list[Endpoint],
        verdict: AuthVerdict,
        dialect: Dialect,
        policy: RetryPolicy,
        token: CancellationToken,
        results: list[JobResult | None],
        batch_size: int,
    ) -> None:
        for start in range(0, len(endpoints), batch_size):
            jobs = [
                GenerationJob(key=ep.key, exchange=ep.exchange, index=start + offset)
                for offset, ep in enumerate(endpoints[start:start + batch_size])
            ]
            if token.cancelled:
                for job in jobs:
                    results[job.index] = _cancelled_result(job, dialect)
                continue

            logger.info(
                "Dispatching endpoints %d-%d of %d", start + 1, start + len(jobs), len(endpoints)
            )
            outcomes = await asyncio.gather(
                *(self._run_job(job, verdict, dialect, policy, token, results) for job in jobs),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome

    async def _run_job(
        self,
        job: GenerationJob,
        verdict: AuthVerdict,
        dialect: Dialect,
        policy: RetryPolicy,
        token: CancellationToken,
        results: list,
    ) -> JobResult:
        request = EndpointRequest(key=job.key, exchange=job.exchange)
        label = job.key.label

        while True:
            try:
                await self.rate_limiter.wait_for_slot(self.backend.backend_id, token)
                logger.info("Generating tests for %s (attempt %d)", label, job.attempt + 1)
                generation = await token.run(self.backend.generate(request, verdict, dialect, token))
                result = JobResult(
                    index=job.index,
                    endpoint=label,
                    signature=job.key.signature,
                    fragment=generation.fragment,
                    quality_score=generation.quality_score,
                    warnings=generation.warnings,
                    attempts=job.attempt + 1,
                )
                break
            except GenerationCancelled:
                logger.info("Generation for %s cancelled", label)
                result = _cancelled_result(job, dialect)
                break
            except BackendError as e:
                if e.fatal:
                    token.cancel()
                    raise
                if e.retryable and job.attempt < policy.max_retries:
                    delay = policy.delay_for(job.attempt)
                    logger.warning("%s failed (%s); retrying in %.1fs", label, e, delay)
                    job.attempt += 1
                    try:
                        await token.sleep(delay)
                    except GenerationCancelled:
                        result = _cancelled_result(job, dialect)
                        break
                    continue
                logger.error("Giving up on %s after %d attempt(s): %s", label, job.attempt + 1, e)
                result = _failed_result(job, dialect, str(e))
                break
            except Exception as e:
                logger.exception("Unexpected error while generating tests for %s", label)
                result = _failed_result(job, dialect, f"{type(e).__name__}: {e}")
                break

        results[job.index] = result
        return result


def _failed_result(job: GenerationJob, dialect: Dialect, reason: str) -> JobResult:
    label = job.key.label
    return JobResult(
        index=job.index,
        endpoint=label,
        signature=job.key.signature,
        fragment=placeholder_fragment(label, reason, dialect),
        quality_score=0.0,
        warnings=[f"{label}: failed to generate tests: {reason}"],
        status=JobStatus.FAILED,
        attempts=job.attempt + 1,
    )


def _cancelled_result(job: GenerationJob, dialect: Dialect) -> JobResult:
    label = job.key.label
    return JobResult(
        index=job.index,
        endpoint=label,
        signature=job.key.signature,
        fragment=placeholder_fragment(label, "generation cancelled", dialect),
        quality_score=0.0,
        warnings=[f"{label}: generation cancelled"],
        status=JobStatus.CANCELLED,
        attempts=job.attempt,
    )
