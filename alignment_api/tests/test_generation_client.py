"""
Tests for generation provider construction and error mapping.

All tests mock the provider SDK clients to avoid actual API calls.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from alignment_api.config import AnalysisSettings
from alignment_api.analysis_schema import ChatTurn
from alignment_api.errors import (
    GenerationModelNotFound,
    GenerationModelUnavailable,
    GenerationQuotaExceeded,
    GenerationUnauthorized,
)
from alignment_api.generation_client import (
    ClaudeGenerationClient,
    GeminiGenerationClient,
    OpenAIGenerationClient,
    build_generation_client,
    classify_service_error,
)

GENERATE_KWARGS = {
    "system_instruction": "Respond with JSON only.",
    "temperature": 0.1,
    "max_output_tokens": 1024,
}


class TestBuildGenerationClient:
    def test_missing_key_returns_none(self):
        assert build_generation_client(AnalysisSettings(generation_provider="openai")) is None

    def test_unknown_provider_returns_none(self):
        assert build_generation_client(AnalysisSettings(generation_provider="llama", openai_api_key="k")) is None

    def test_openai_provider(self):
        with patch("alignment_api.generation_client.OpenAI") as mock_openai:
            client = build_generation_client(AnalysisSettings(openai_api_key="test-openai-key"))
        mock_openai.assert_called_once_with(api_key="test-openai-key")
        assert isinstance(client, OpenAIGenerationClient)
        assert client.label == "openai:gpt-4o-mini"

    def test_gemini_provider_uses_configured_model(self):
        settings = AnalysisSettings(generation_provider="gemini", gemini_api_key="test-gemini-key", generation_model="gemini-2.0-flash")
        with patch("alignment_api.generation_client.genai") as mock_genai, \
             patch("alignment_api.generation_client.GENAI_AVAILABLE", True):
            client = build_generation_client(settings)
        mock_genai.Client.assert_called_once_with(api_key="test-gemini-key")
        assert client.label == "gemini:gemini-2.0-flash"

    def test_claude_provider_without_sdk_returns_none(self):
        settings = AnalysisSettings(generation_provider="claude", anthropic_api_key="test-anthropic-key")
        with patch("alignment_api.generation_client.ANTHROPIC_AVAILABLE", False):
            assert build_generation_client(settings) is None

    def test_from_env_reads_provider_and_model(self):
        env = {"GENERATION_PROVIDER": "Gemini", "GEMINI_API_KEY": "k", "GEMINI_MODEL": "gemini-x"}
        with patch.dict("os.environ", env, clear=False):
            settings = AnalysisSettings.from_env()
        assert settings.generation_provider == "gemini"
        assert settings.api_key == "k"
        assert settings.model == "gemini-x"


class TestClassifyServiceError:
    @pytest.mark.parametrize("message,expected", [
        ("API key not valid. Please pass a valid API key.", GenerationUnauthorized),
        ("Resource has been exhausted (e.g. check quota).", GenerationQuotaExceeded),
        ("models/gemini-9 is not found for API version v1beta", GenerationModelNotFound),
        ("models/x is not supported for generateContent", GenerationModelNotFound),
        ("The model is overloaded", GenerationModelUnavailable),
    ])
    def test_messages(self, message, expected):
        assert isinstance(classify_service_error(Exception(message)), expected)

    def test_status_codes(self):
        error = Exception("nope")
        error.status_code = 401
        assert isinstance(classify_service_error(error), GenerationUnauthorized)
        error.status_code = 429
        assert isinstance(classify_service_error(error), GenerationQuotaExceeded)
        error.status_code = 404
        assert isinstance(classify_service_error(error), GenerationModelNotFound)
        error.status_code = 503
        classified = classify_service_error(error)
        assert type(classified) is GenerationModelUnavailable
        assert classified.retryable is True
        assert GenerationModelNotFound("x").retryable is False


class TestProviders:
    def test_openai_sends_json_mode_request(self):
        sdk = MagicMock()
        sdk.chat.completions.create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content='{"findings": []}'))]
        )
        client = OpenAIGenerationClient(api_key="k", model="gpt-4o-mini", client=sdk)

        text = asyncio.run(client.generate("prompt", **GENERATE_KWARGS))

        assert text == '{"findings": []}'
        kwargs = sdk.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["max_tokens"] == 1024
        assert kwargs["messages"][0] == {"role": "system", "content": "Respond with JSON only."}

    def test_gemini_failure_is_typed(self):
        sdk = MagicMock()
        sdk.models.generate_content.side_effect = RuntimeError("429 RESOURCE_EXHAUSTED: quota exceeded")
        client = GeminiGenerationClient(api_key="k", model="gemini-2.5-flash", client=sdk)

        with pytest.raises(GenerationQuotaExceeded):
            asyncio.run(client.generate("prompt", **GENERATE_KWARGS))

    def test_claude_joins_text_blocks(self):
        sdk = MagicMock()
        sdk.messages.create.return_value = SimpleNamespace(content=[
            SimpleNamespace(text='{"findings": '), SimpleNamespace(text="[]}"),
        ])
        client = ClaudeGenerationClient(api_key="k", model="claude-sonnet-4-5", client=sdk)

        assert asyncio.run(client.generate("prompt", **GENERATE_KWARGS)) == '{"findings": []}'
        assert sdk.messages.create.call_args.kwargs["system"] == "Respond with JSON only."

    def test_history_is_sent_as_prior_turns(self):
        history = [ChatTurn(role="user", text="Hi"), ChatTurn(role="model", text="Hello")]

        openai_sdk = MagicMock()
        openai_sdk.chat.completions.create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="ok"))]
        )
        asyncio.run(OpenAIGenerationClient(api_key="k", model="m", client=openai_sdk).generate(
            "Next?", json_mode=False, history=history, **GENERATE_KWARGS
        ))
        openai_kwargs = openai_sdk.chat.completions.create.call_args.kwargs
        assert [m["role"] for m in openai_kwargs["messages"]] == ["system", "user", "assistant", "user"]
        assert "response_format" not in openai_kwargs

        claude_sdk = MagicMock()
        claude_sdk.messages.create.return_value = SimpleNamespace(content=[SimpleNamespace(text="ok")])
        asyncio.run(ClaudeGenerationClient(api_key="k", model="m", client=claude_sdk).generate(
            "Next?", json_mode=False, history=history, **GENERATE_KWARGS
        ))
        claude_messages = claude_sdk.messages.create.call_args.kwargs["messages"]
        assert claude_messages == [
            {"role": "user", "content": "Hi"},
            {"role": "assistant", "content": "Hello"},
            {"role": "user", "content": "Next?"},
        ]

        gemini_sdk = MagicMock()
        gemini_sdk.models.generate_content.return_value = SimpleNamespace(text="ok")
        asyncio.run(GeminiGenerationClient(api_key="k", model="m", client=gemini_sdk).generate(
            "Next?", json_mode=False, history=history, **GENERATE_KWARGS
        ))
        contents = gemini_sdk.models.generate_content.call_args.kwargs["contents"]
        assert [item["role"] for item in contents] == ["user", "model", "user"]
        assert contents[-1]["parts"] == [{"text": "Next?"}]
