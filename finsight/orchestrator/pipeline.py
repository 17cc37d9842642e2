"""Prompt pipeline: enrichment, code generation, sandbox execution, insights."""

import asyncio
import logging
from typing import Any

from finsight.config.constants import ErrorCode, PipelineStage, PipelineStep, PromptStatus
from finsight.config.settings import Settings
from finsight.errors import AppError
from finsight.infrastructure.llm.claude_client import LLMClient
from finsight.infrastructure.logging.logger import StructuredLogger
from finsight.infrastructure.storage.document_store import DocumentStore
from finsight.models.prompt import ExecutionOptions, Principal, PromptRecord
from finsight.orchestrator.state import PromptRepository
from finsight.orchestrator.step_timer import timed_step
from finsight.services.access import can_access_dataset
from finsight.services.enrichment.enricher import ContextEnricher
from finsight.services.enrichment.sample_data import cached_sample_rows
from finsight.services.sandbox.executor import CodeExecutionSandbox

logger = logging.getLogger(__name__)


class PromptPipeline:
    """Runs the two pipeline stages against the persisted prompt record.

    ``process`` covers ``created -> processing -> generated``; ``execute``
    covers ``executing -> completed``. Each stage re-reads the record before
    acting, records failures on the prompt with the stage that failed, and is
    never retried.
    """

    def __init__(
        self,
        settings: Settings,
        store: DocumentStore,
        repository: PromptRepository,
        enricher: ContextEnricher,
        llm: LLMClient,
        sandbox: CodeExecutionSandbox,
    ):
        self.settings = settings
        self.store = store
        self.repository = repository
        self.enricher = enricher
        self.llm = llm
        self.sandbox = sandbox
        self.events = StructuredLogger("finsight.pipeline")

    async def _record_failure(
        self,
        prompt_id: str,
        error: BaseException,
        stage: PipelineStage,
        fallback_code: ErrorCode,
    ) -> PromptRecord | None:
        if isinstance(error, asyncio.CancelledError):
            message, code = "Processing was cancelled", ErrorCode.CANCELLED.value
        elif isinstance(error, AppError):
            message, code = error.message, error.code
        else:
            message, code = f"Unexpected error: {error}", fallback_code.value
        return await self.repository.fail(prompt_id, message, code, stage)

    async def process(self, prompt_id: str, principal: Principal) -> PromptRecord | None:
        """Enrich the prompt and generate analysis code.

        Returns the ``generated`` record, or the ``failed`` one. Raises
        ``InvalidState`` only if the prompt was not in ``created``.
        """
        record = await self.repository.transition(
            prompt_id, PromptStatus.PROCESSING, expected=PromptStatus.CREATED
        )
        try:
            async with timed_step(PipelineStep.ENRICH, self.events, prompt_id) as step:
                enriched = await self.enricher.enrich(
                    record.prompt, record.dataset_ids, principal, record.settings
                )
                step.record(datasets=len(record.dataset_ids), chars=len(enriched))

            record = await self.repository.load(prompt_id)
            record = await self.repository.update_fields(record, {"enrichedPrompt": enriched})

            async with timed_step(PipelineStep.GENERATE, self.events, prompt_id) as step:
                code = await self.llm.generate_code(enriched)
                step.record(chars=len(code))

            return await self.repository.transition(
                prompt_id,
                PromptStatus.GENERATED,
                {"generatedCode": code},
                expected=PromptStatus.PROCESSING,
            )
        except asyncio.CancelledError as e:
            await self._record_failure(prompt_id, e, PipelineStage.CODE_GENERATION, ErrorCode.CANCELLED)
            raise
        except Exception as e:
            logger.error("Code generation failed for prompt %s: %s", prompt_id, e)
            return await self._record_failure(
                prompt_id, e, PipelineStage.CODE_GENERATION, ErrorCode.PROCESSING_ERROR
            )

    async def build_execution_context(
        self,
        record: PromptRecord,
        principal: Principal | None,
        options: ExecutionOptions,
    ) -> dict[str, Any]:
        """Cached sample rows of the referenced datasets the caller may access."""
        owner = principal or Principal(uid=record.user_id, team_id=record.team_id)
        fetched = await asyncio.gather(
            *(self.store.get(self.settings.datasets_collection, ds_id) for ds_id in record.dataset_ids)
        )
        datasets = []
        for dataset in fetched:
            if not can_access_dataset(dataset, owner):
                continue
            datasets.append(
                {
                    "id": dataset["id"],
                    "name": dataset.get("name"),
                    "data": cached_sample_rows(dataset) or [],
                }
            )
        return {
            "datasets": datasets,
            "options": {
                "visualizationType": record.settings.visualization_type.value,
                "language": record.settings.language,
                "timeout": options.timeout,
                "memoryLimit": options.memory_limit,
            },
        }

    async def execute(
        self,
        prompt_id: str,
        options: ExecutionOptions | None = None,
        principal: Principal | None = None,
    ) -> PromptRecord | None:
        """Run the generated code for a prompt the caller moved to ``executing``."""
        options = options or ExecutionOptions()
        try:
            record = await self.repository.load(prompt_id)
            if record.status != PromptStatus.EXECUTING:
                logger.warning("Prompt %s is %s, skipping execution", prompt_id, record.status.value)
                return record

            context = await self.build_execution_context(record, principal, options)
            limits = self.sandbox.resolve_limits(options)

            async with timed_step(PipelineStep.EXECUTE, self.events, prompt_id) as step:
                result = await self.sandbox.run(record.generated_code or "", context, limits)
                step.record(
                    visualizations=len(result.visualizations),
                    insights=len(result.insights),
                    timeout_s=limits.timeout_seconds,
                    memory_mb=limits.memory_mb,
                )

            insights = list(result.insights)
            if not insights and record.settings.include_insights:
                async with timed_step(PipelineStep.SUMMARIZE, self.events, prompt_id) as step:
                    insights = await self.llm.generate_insights(
                        result.model_dump(mode="json"), record.prompt, record.settings.language
                    )
                    step.record(insights=len(insights))

            return await self.repository.transition(
                prompt_id,
                PromptStatus.COMPLETED,
                {
                    "executionResults": result.model_dump(mode="json"),
                    "insights": [insight.model_dump(mode="json") for insight in insights],
                },
                expected=PromptStatus.EXECUTING,
            )
        except asyncio.CancelledError as e:
            await self._record_failure(prompt_id, e, PipelineStage.CODE_EXECUTION, ErrorCode.CANCELLED)
            raise
        except Exception as e:
            logger.error("Execution failed for prompt %s: %s", prompt_id, e)
            return await self._record_failure(
                prompt_id, e, PipelineStage.CODE_EXECUTION, ErrorCode.EXECUTION_ERROR
            )
