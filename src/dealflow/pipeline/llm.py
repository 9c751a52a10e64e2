"""GenerativeClient -- thin async wrapper over LiteLLM and instructor.

Two call shapes cover every stage:

- ``text()``: free-form completion via ``litellm.acompletion``.
- ``structured()``: validated pydantic output via
  ``instructor.from_litellm(litellm.acompletion)``.

Both raise on failure. Callers on enrichment paths catch, log, and fall
back to empty results. Every call is recorded by ``track_llm_call``.
"""

from __future__ import annotations

from typing import Any, TypeVar

import structlog
from pydantic import BaseModel

from src.dealflow.core.monitoring import track_llm_call

logger = structlog.get_logger(__name__)

T = TypeVar("T", bound=BaseModel)


class GenerativeClient:
    """Model-agnostic generative calls for the pipeline stages.

    Args:
        fast_model: LiteLLM model id for cheap calls (classification,
            summaries, extraction).
        quality_model: LiteLLM model id for memo content.
        timeout: Per-call timeout in seconds.
    """

    def __init__(self, fast_model: str, quality_model: str, timeout: float = 30.0) -> None:
        self.fast_model = fast_model
        self.quality_model = quality_model
        self._timeout = timeout

    def _model(self, quality: bool) -> str:
        return self.quality_model if quality else self.fast_model

    async def text(
        self,
        messages: list[dict[str, str]],
        purpose: str,
        *,
        quality: bool = False,
        max_tokens: int = 1024,
        temperature: float = 0.3,
    ) -> str:
        """Run a free-form completion and return the stripped text."""
        import litellm

        model = self._model(quality)
        async with track_llm_call(model, purpose) as usage:
            response = await litellm.acompletion(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
                timeout=self._timeout,
            )
            usage.add(getattr(response, "usage", None))

        content = response.choices[0].message.content or ""
        return content.strip()

    async def structured(
        self,
        response_model: type[T],
        messages: list[dict[str, str]],
        purpose: str,
        *,
        quality: bool = False,
        max_tokens: int = 2048,
        temperature: float = 0.1,
        **kwargs: Any,
    ) -> T:
        """Run an instructor extraction validated against ``response_model``."""
        import instructor
        import litellm

        model = self._model(quality)
        client = instructor.from_litellm(litellm.acompletion)
        async with track_llm_call(model, purpose):
            result = await client.chat.completions.create(
                model=model,
                response_model=response_model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
                max_retries=2,
                timeout=self._timeout,
                **kwargs,
            )

        logger.debug("structured_extraction_complete", purpose=purpose, model=model)
        return result
