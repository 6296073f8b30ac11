"""LLM client wrapper around litellm.

Provides a unified interface for calling any LLM model supported by litellm,
and maps litellm's exceptions onto the agent's error taxonomy.
"""

import asyncio

import litellm
from litellm import acompletion, completion

from traffic_test_agent.errors import (
    BackendAuthError,
    BackendError,
    MalformedInputError,
    ThroughputLimitError,
    TransientServiceError,
)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TIMEOUT = 60.0

# Order matters: ContextWindowExceededError subclasses BadRequestError.
_ERROR_MAP = [
    (litellm.AuthenticationError, BackendAuthError),
    (litellm.PermissionDeniedError, BackendAuthError),
    (litellm.RateLimitError, ThroughputLimitError),
    (litellm.Timeout, TransientServiceError),
    (litellm.ServiceUnavailableError, TransientServiceError),
    (litellm.InternalServerError, TransientServiceError),
    (litellm.APIConnectionError, TransientServiceError),
    (litellm.ContextWindowExceededError, MalformedInputError),
    (litellm.BadRequestError, MalformedInputError),
    (litellm.NotFoundError, MalformedInputError),
    (litellm.APIError, TransientServiceError),
]

_LITELLM_ERRORS = tuple(source for source, _ in _ERROR_MAP)


def translate_error(error: Exception) -> BackendError:
    """Map a litellm exception to the matching BackendError subclass."""
    for source, target in _ERROR_MAP:
        if isinstance(error, source):
            return target(str(error))
    return TransientServiceError(str(error))


class LlmClient:
    """Wrapper for LLM API calls via litellm."""

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        api_base: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.model = model or DEFAULT_MODEL
        self.api_key = api_key
        self.api_base = api_base
        self.timeout = timeout

    def _request(self, system: str, user: str) -> dict:
        kwargs = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": 0.3,
            "timeout": self.timeout,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        return kwargs

    def call(self, system: str, user: str) -> str:
        """Send a system+user message to the LLM and return the response text."""
        try:
            response = completion(**self._request(system, user))
        except _LITELLM_ERRORS as e:
            raise translate_error(e) from e
        return response.choices[0].message.content or ""

    async def acall(self, system: str, user: str) -> str:
        """Async variant of :meth:`call` bounded by ``timeout`` seconds."""
        try:
            response = await asyncio.wait_for(acompletion(**self._request(system, user)), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise TransientServiceError(f"{self.model} did not answer within {self.timeout:.0f}s") from e
        except _LITELLM_ERRORS as e:
            raise translate_error(e) from e
        return response.choices[0].message.content or ""
