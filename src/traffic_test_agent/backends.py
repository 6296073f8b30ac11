"""Generation backends, one variant per provider behind a single interface."""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import litellm

from traffic_test_agent.auth.classifier import AuthVerdict
from traffic_test_agent.cancel import CancellationToken
from traffic_test_agent.errors import MalformedInputError, MissingCredentialsError
from traffic_test_agent.generator.dialects import Dialect
from traffic_test_agent.generator.prompts import (
    EndpointRequest,
    build_system_prompt,
    build_user_prompt,
    extract_code,
)
from traffic_test_agent.generator.quality import find_placeholders, score_fragment
from traffic_test_agent.llm import DEFAULT_TIMEOUT, LlmClient

logger = logging.getLogger(__name__)

# Input share of the estimated tokens; the rest is billed as output.
INPUT_SHARE = 0.7


@dataclass
class Generation:
    """What a backend returns for one endpoint."""

    fragment: str
    quality_score: float
    warnings: list[str] = field(default_factory=list)


class Backend(ABC):
    """A text-generation capability invoked once per endpoint job."""

    backend_id: str = ""
    requires_credentials: bool = True

    @abstractmethod
    async def generate(
        self,
        request: EndpointRequest,
        verdict: AuthVerdict,
        dialect: Dialect,
        cancel_token: CancellationToken | None = None,
    ) -> Generation:
        ...

    @abstractmethod
    def estimate_cost(self, tokens: int) -> float:
        ...

    def count_tokens(self, text: str) -> int:
        return math.ceil(len(text) / 4)


class LiteLlmBackend(Backend):
    """Backend that talks to a hosted or local model through litellm."""

    default_model = ""
    model_prefix = ""
    api_base: str | None = None
    # USD per 1k tokens, (input, output); unknown models use the first entry.
    pricing: dict[str, tuple[float, float]] = {}
    max_input_chars = 400_000

    def __init__(self, model: str | None = None, api_key: str | None = None, timeout: float = DEFAULT_TIMEOUT):
        if self.requires_credentials and not api_key:
            raise MissingCredentialsError(f"No API key configured for backend '{self.backend_id}'")
        self.model = model or self.default_model
        self.client = LlmClient(
            model=self._qualified(self.model),
            api_key=api_key,
            api_base=self.api_base,
            timeout=timeout,
        )

    def _qualified(self, model: str) -> str:
        if not self.model_prefix or "/" in model:
            return model
        return f"{self.model_prefix}/{model}"

    async def generate(self, request, verdict, dialect, cancel_token=None) -> Generation:
        system = build_system_prompt(request, verdict)
        user = build_user_prompt(request, verdict, dialect)
        if len(system) + len(user) > self.max_input_chars:
            raise MalformedInputError(f"{request.key.label}: request too large for {self.model}")

        call = self.client.acall(system=system, user=user)
        response = await cancel_token.run(call) if cancel_token is not None else await call

        code = extract_code(response)
        if not code:
            raise MalformedInputError(f"{request.key.label}: backend returned an empty response")
        warnings = [
            f"{request.key.label}: placeholder left in generated code: {line}"
            for line in find_placeholders(code)
        ]
        return Generation(fragment=code, quality_score=score_fragment(code, dialect), warnings=warnings)

    def estimate_cost(self, tokens: int) -> float:
        if not self.pricing:
            return 0.0
        input_price, output_price = self.pricing.get(self.model, next(iter(self.pricing.values())))
        return (tokens * INPUT_SHARE / 1000) * input_price + (tokens * (1 - INPUT_SHARE) / 1000) * output_price


class OpenAIBackend(LiteLlmBackend):
    backend_id = "openai"
    default_model = "gpt-4o-mini"
    model_prefix = "openai"
    pricing = {
        "gpt-4o-mini": (0.00015, 0.0006),
        "gpt-4o": (0.005, 0.015),
        "gpt-4-turbo": (0.01, 0.03),
        "gpt-3.5-turbo": (0.0005, 0.0015),
    }

    def count_tokens(self, text: str) -> int:
        try:
            return litellm.token_counter(model=self.model, text=text)
        except Exception:  # tokenizer unavailable offline
            logger.debug("Falling back to character-based token estimate for %s", self.model)
            return super().count_tokens(text)


class AnthropicBackend(LiteLlmBackend):
    backend_id = "anthropic"
    default_model = "claude-sonnet-4-20250514"
    model_prefix = "anthropic"
    pricing = {
        "claude-sonnet-4-20250514": (0.003, 0.015),
        "claude-3-5-haiku-20241022": (0.0008, 0.004),
    }


class GeminiBackend(LiteLlmBackend):
    backend_id = "gemini"
    default_model = "gemini-2.0-flash"
    model_prefix = "gemini"
    pricing = {
        "gemini-2.0-flash": (0.0001, 0.0004),
        "gemini-1.5-pro": (0.00125, 0.005),
    }


class LocalBackend(LiteLlmBackend):
    """Ollama on localhost; free and credential-less."""

    backend_id = "local"
    requires_credentials = False
    default_model = "llama3.1"
    model_prefix = "ollama"
    api_base = "http://localhost:11434"


BACKENDS: dict[str, type[LiteLlmBackend]] = {
    cls.backend_id: cls for cls in (OpenAIBackend, AnthropicBackend, GeminiBackend, LocalBackend)
}


def create_backend(
    backend_id: str,
    api_key: str | None = None,
    model: str | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> Backend:
    """Construct the backend variant registered under ``backend_id``."""
    try:
        cls = BACKENDS[backend_id]
    except KeyError:
        raise ValueError(f"Unknown backend '{backend_id}'. Choose from: {', '.join(sorted(BACKENDS))}") from None
    return cls(model=model, api_key=api_key, timeout=timeout)
