"""Anthropic Messages API client for code generation and narrative insights."""

import logging
from typing import Any

import anthropic

from finsight.config.constants import ErrorCode
from finsight.config.prompts import (
    build_code_generation_system_prompt,
    build_insights_system_prompt,
    build_insights_user_input,
)
from finsight.config.settings import Settings
from finsight.errors import UpstreamError
from finsight.models.results import Insight, coerce_insights
from finsight.utils.json_parser import JSONParser
from finsight.utils.retry import retry_kwargs, run_with_retry
from finsight.utils.text_processing import extract_code_block

logger = logging.getLogger(__name__)


def _response_text(message: Any) -> str:
    """Concatenate the text blocks of a Messages API response."""
    parts = [
        getattr(block, "text", "")
        for block in getattr(message, "content", None) or []
        if getattr(block, "type", "text") == "text"
    ]
    return "".join(parts)


class LLMClient:
    """Thin wrapper over ``anthropic.AsyncAnthropic``.

    The SDK's own retries are disabled; transient transport errors are
    retried by :func:`run_with_retry` so the backoff settings apply.
    """

    def __init__(self, settings: Settings, client: anthropic.AsyncAnthropic | None = None):
        self.settings = settings
        if client is None:
            if not settings.anthropic_api_key:
                logger.warning("anthropic_api_key is empty; LLM calls will fail")
            client = anthropic.AsyncAnthropic(
                api_key=settings.anthropic_api_key,
                base_url=settings.anthropic_base_url,
                timeout=settings.llm_timeout,
                max_retries=0,
            )
        self._client = client

    async def _create(self, *, system: str, user: str, max_tokens: int, temperature: float) -> Any:
        async def call() -> Any:
            return await self._client.messages.create(
                model=self.settings.llm_model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system,
                messages=[{"role": "user", "content": user}],
            )

        return await run_with_retry(call, **retry_kwargs(self.settings))

    async def generate_code(self, enriched_prompt: str) -> str:
        """Ask the model for analysis code and return it without Markdown fences.

        Raises:
            UpstreamError: LLM_API_ERROR on transport/API failure,
                LLM_EMPTY_RESPONSE when no code came back.
        """
        try:
            message = await self._create(
                system=build_code_generation_system_prompt(),
                user=enriched_prompt,
                max_tokens=self.settings.code_generation_max_tokens,
                temperature=self.settings.code_generation_temperature,
            )
        except anthropic.APIError as e:
            logger.error("Claude API error during code generation: %s", e)
            raise UpstreamError(
                f"Error from Claude API: {getattr(e, 'message', None) or e}",
                code=ErrorCode.LLM_API_ERROR,
            ) from e
        except (TimeoutError, OSError) as e:
            logger.error("Claude API transport failure during code generation: %s", e)
            raise UpstreamError("Failed to reach Claude API", code=ErrorCode.LLM_API_ERROR) from e

        code = extract_code_block(_response_text(message))
        if not code:
            raise UpstreamError("Claude API returned empty response", code=ErrorCode.LLM_EMPTY_RESPONSE)

        usage = getattr(message, "usage", None)
        logger.info(
            "Code generated: %d chars, input_tokens=%s, output_tokens=%s",
            len(code),
            getattr(usage, "input_tokens", None),
            getattr(usage, "output_tokens", None),
        )
        return code

    async def generate_insights(
        self,
        execution_result: dict[str, Any],
        original_prompt: str,
        language: str | None = None,
    ) -> list[Insight]:
        """Produce narrative insights for an execution result.

        Never raises: any API, parsing or validation problem yields ``[]``.
        """
        try:
            message = await self._create(
                system=build_insights_system_prompt(language),
                user=build_insights_user_input(execution_result, original_prompt),
                max_tokens=self.settings.insights_max_tokens,
                temperature=self.settings.insights_temperature,
            )
        except Exception as e:
            logger.error("Claude API insights error: %s", e)
            return []

        items = JSONParser.extract_json_array(_response_text(message))
        if items is None:
            logger.error("Could not parse insights from Claude response")
            return []
        return coerce_insights(items, limit=self.settings.sandbox_max_insights)

    async def close(self) -> None:
        await self._client.close()
