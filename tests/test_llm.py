import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import litellm
import pytest

from traffic_test_agent.errors import (
    BackendAuthError,
    MalformedInputError,
    ThroughputLimitError,
    TransientServiceError,
)
from traffic_test_agent.llm import DEFAULT_MODEL, LlmClient, translate_error


def _response(content: str) -> MagicMock:
    mock_resp = MagicMock()
    mock_resp.choices = [MagicMock()]
    mock_resp.choices[0].message.content = content
    return mock_resp


class TestLlmClient:
    def test_default_model(self):
        client = LlmClient()
        assert client.model == DEFAULT_MODEL

    def test_custom_model(self):
        client = LlmClient(model="gpt-4o")
        assert client.model == "gpt-4o"

    @patch("traffic_test_agent.llm.completion")
    def test_call_returns_content(self, mock_completion):
        mock_completion.return_value = _response("test response")

        client = LlmClient(model="gpt-4o")
        result = client.call(system="You are helpful.", user="Hello")
        assert result == "test response"
        mock_completion.assert_called_once()

    @patch("traffic_test_agent.llm.completion")
    def test_call_passes_model_and_messages(self, mock_completion):
        mock_completion.return_value = _response("ok")

        client = LlmClient(model="anthropic/claude-sonnet-4-20250514", api_key="sk-test")
        client.call(system="sys", user="usr")

        call_kwargs = mock_completion.call_args[1]
        assert call_kwargs["model"] == "anthropic/claude-sonnet-4-20250514"
        assert call_kwargs["api_key"] == "sk-test"
        assert "api_base" not in call_kwargs
        messages = call_kwargs["messages"]
        assert messages[0]["role"] == "system"
        assert messages[1]["role"] == "user"

    @patch("traffic_test_agent.llm.completion")
    def test_call_translates_errors(self, mock_completion):
        mock_completion.side_effect = litellm.RateLimitError(
            message="slow down", llm_provider="openai", model="gpt-4o"
        )
        with pytest.raises(ThroughputLimitError):
            LlmClient().call(system="sys", user="usr")

    @patch("traffic_test_agent.llm.acompletion", new_callable=AsyncMock)
    def test_acall_returns_content(self, mock_acompletion):
        mock_acompletion.return_value = _response("async response")
        result = asyncio.run(LlmClient().acall(system="sys", user="usr"))
        assert result == "async response"

    @patch("traffic_test_agent.llm.acompletion", new_callable=AsyncMock)
    def test_acall_empty_content(self, mock_acompletion):
        mock_acompletion.return_value = _response(None)
        assert asyncio.run(LlmClient().acall(system="sys", user="usr")) == ""

    @patch("traffic_test_agent.llm.acompletion")
    def test_acall_timeout_is_transient(self, mock_acompletion):
        async def hang(**kwargs):
            await asyncio.sleep(10)

        mock_acompletion.side_effect = hang
        client = LlmClient(timeout=0.01)
        with pytest.raises(TransientServiceError):
            asyncio.run(client.acall(system="sys", user="usr"))

    @patch("traffic_test_agent.llm.acompletion", new_callable=AsyncMock)
    def test_acall_auth_failure_is_fatal(self, mock_acompletion):
        mock_acompletion.side_effect = litellm.AuthenticationError(
            message="bad key", llm_provider="openai", model="gpt-4o"
        )
        with pytest.raises(BackendAuthError) as excinfo:
            asyncio.run(LlmClient().acall(system="sys", user="usr"))
        assert excinfo.value.fatal


class TestTranslateError:
    def test_rate_limit(self):
        err = translate_error(litellm.RateLimitError(message="429", llm_provider="openai", model="m"))
        assert isinstance(err, ThroughputLimitError)
        assert err.retryable

    def test_service_unavailable(self):
        err = translate_error(litellm.ServiceUnavailableError(message="503", llm_provider="openai", model="m"))
        assert isinstance(err, TransientServiceError)

    def test_bad_request(self):
        err = translate_error(litellm.BadRequestError(message="400", model="m", llm_provider="openai"))
        assert isinstance(err, MalformedInputError)
        assert not err.retryable

    def test_unknown_error_is_transient(self):
        assert isinstance(translate_error(RuntimeError("?")), TransientServiceError)
