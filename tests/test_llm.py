"""Tests for the OpenAI chat adapter, using a stand-in client."""

from types import SimpleNamespace

import pytest
from openai import OpenAIError

from studio_agent.tools.llm import LanguageModelError, OpenAIChatModel, estimate_tokens


class _Completions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _model(content=None, error=None):
    completions = _Completions(content, error)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return OpenAIChatModel(client=client, model="test-model"), completions


class TestOpenAIChatModel:
    @pytest.mark.asyncio
    async def test_json_mode_request(self):
        model, completions = _model('{"primaryIntent": "faq"}')
        result = await model.complete_json("system", [{"role": "user", "content": "hi"}], temperature=0.1)

        assert result == {"primaryIntent": "faq"}
        assert completions.kwargs["model"] == "test-model"
        assert completions.kwargs["temperature"] == 0.1
        assert completions.kwargs["response_format"] == {"type": "json_object"}
        assert completions.kwargs["messages"][0] == {"role": "system", "content": "system"}

    @pytest.mark.asyncio
    async def test_text_is_stripped(self):
        model, completions = _model("  Hello there!  ")
        assert await model.complete_text("system", []) == "Hello there!"
        assert "response_format" not in completions.kwargs

    @pytest.mark.asyncio
    async def test_malformed_json(self):
        model, _ = _model("not json")
        with pytest.raises(LanguageModelError, match="Malformed JSON"):
            await model.complete_json("system", [])

    @pytest.mark.asyncio
    async def test_json_array_rejected(self):
        model, _ = _model("[1, 2]")
        with pytest.raises(LanguageModelError, match="Expected a JSON object"):
            await model.complete_json("system", [])

    @pytest.mark.asyncio
    async def test_empty_response(self):
        model, _ = _model("")
        with pytest.raises(LanguageModelError, match="empty"):
            await model.complete_text("system", [])

    @pytest.mark.asyncio
    async def test_client_error_wrapped(self):
        model, _ = _model(error=OpenAIError("rate limited"))
        with pytest.raises(LanguageModelError, match="rate limited"):
            await model.complete_text("system", [])


def test_estimate_tokens():
    assert estimate_tokens("a" * 40, "b" * 40) == 21
