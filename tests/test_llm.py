"""GenerativeClient tests.

Uses mocks for LiteLLM and instructor to avoid API costs in tests.
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import BaseModel

from src.dealflow.core.monitoring import llm_requests_total, llm_tokens_used_total
from src.dealflow.pipeline.llm import GenerativeClient


class Verdict(BaseModel):
    label: str


def _completion(content: str | None, prompt_tokens: int = 12, completion_tokens: int = 7):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
    )


def _client() -> GenerativeClient:
    return GenerativeClient(fast_model="fast-model", quality_model="quality-model", timeout=5.0)


class TestText:
    @pytest.mark.asyncio
    async def test_fast_model_by_default(self):
        acompletion = AsyncMock(return_value=_completion("  A summary.  "))

        with patch("litellm.acompletion", acompletion):
            result = await _client().text([{"role": "user", "content": "hi"}], "summary")

        assert result == "A summary."
        kwargs = acompletion.await_args.kwargs
        assert kwargs["model"] == "fast-model"
        assert kwargs["timeout"] == 5.0

    @pytest.mark.asyncio
    async def test_quality_model_and_token_metrics(self):
        before = llm_tokens_used_total.labels(model="quality-model", token_type="prompt")._value.get()
        acompletion = AsyncMock(return_value=_completion("Body", prompt_tokens=40))

        with patch("litellm.acompletion", acompletion):
            await _client().text([], "memo_section", quality=True)

        assert acompletion.await_args.kwargs["model"] == "quality-model"
        after = llm_tokens_used_total.labels(model="quality-model", token_type="prompt")._value.get()
        assert after == before + 40

    @pytest.mark.asyncio
    async def test_empty_content_is_empty_string(self):
        with patch("litellm.acompletion", AsyncMock(return_value=_completion(None))):
            assert await _client().text([], "summary") == ""

    @pytest.mark.asyncio
    async def test_provider_error_propagates_and_is_counted(self):
        labels = {"model": "fast-model", "purpose": "failing_call", "status": "error"}
        before = llm_requests_total.labels(**labels)._value.get()

        with patch("litellm.acompletion", AsyncMock(side_effect=TimeoutError("slow"))):
            with pytest.raises(TimeoutError):
                await _client().text([], "failing_call")

        assert llm_requests_total.labels(**labels)._value.get() == before + 1


class TestStructured:
    @pytest.mark.asyncio
    async def test_validated_model_returned(self):
        create = AsyncMock(return_value=Verdict(label="founder-pitch"))
        instructor_client = MagicMock()
        instructor_client.chat.completions.create = create

        with patch("instructor.from_litellm", return_value=instructor_client):
            result = await _client().structured(
                Verdict, [{"role": "user", "content": "classify"}], "classification"
            )

        assert result == Verdict(label="founder-pitch")
        kwargs = create.await_args.kwargs
        assert kwargs["response_model"] is Verdict
        assert kwargs["model"] == "fast-model"
        assert kwargs["max_retries"] == 2

    @pytest.mark.asyncio
    async def test_validation_failure_propagates(self):
        instructor_client = MagicMock()
        instructor_client.chat.completions.create = AsyncMock(side_effect=ValueError("bad json"))

        with patch("instructor.from_litellm", return_value=instructor_client):
            with pytest.raises(ValueError, match="bad json"):
                await _client().structured(Verdict, [], "classification")
