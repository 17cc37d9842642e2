"""Prompt submission, execution, polling and cancellation."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from finsight.config.constants import ErrorCode, PromptStatus
from finsight.config.settings import Settings
from finsight.errors import AccessDenied, InvalidState, ResultsNotAvailable, SubscriptionRequired
from finsight.infrastructure.storage.document_store import QueryCondition
from finsight.models.prompt import ExecutionOptions, Principal, PromptRecord, PromptSettings
from finsight.orchestrator.pipeline import PromptPipeline
from finsight.orchestrator.state import PromptRepository
from finsight.orchestrator.task_registry import StageTaskRegistry
from finsight.services.access import can_access_prompt

logger = logging.getLogger(__name__)

_CANCEL_WAIT_SECONDS = 5.0


def redact(record: PromptRecord) -> dict[str, Any]:
    """Client view of a prompt.

    Results appear only once completed, the error only once failed, and the
    generated code once generation finished.
    """
    view: dict[str, Any] = {
        "id": record.id,
        "userId": record.user_id,
        "teamId": record.team_id,
        "prompt": record.prompt,
        "datasetIds": record.dataset_ids,
        "settings": record.settings.to_document(),
        "status": record.status.value,
        "created": record.created or record.created_at,
        "updatedAt": record.updated_at,
    }
    if record.generated_code is not None and record.status != PromptStatus.PROCESSING:
        view["generatedCode"] = record.generated_code
    if record.status == PromptStatus.COMPLETED:
        results = record.execution_results
        view["results"] = {
            "visualizations": [v.model_dump(mode="json") for v in results.visualizations] if results else [],
            "insights": [i.model_dump(mode="json") for i in record.insights or []],
        }
    if record.status == PromptStatus.FAILED and record.error is not None:
        view["error"] = record.error.to_document()
    return view


class PromptService:
    """Entry points behind the prompt API."""

    def __init__(
        self,
        settings: Settings,
        repository: PromptRepository,
        pipeline: PromptPipeline,
        registry: StageTaskRegistry,
    ):
        self.settings = settings
        self.repository = repository
        self.pipeline = pipeline
        self.registry = registry

    def _require_subscription(self, principal: Principal) -> None:
        if self.settings.require_subscription and not principal.subscription.is_active():
            raise SubscriptionRequired("An active subscription is required for this feature")

    async def _load_accessible(self, prompt_id: str, principal: Principal) -> PromptRecord:
        record = await self.repository.load(prompt_id)
        if not can_access_prompt(record, principal):
            raise AccessDenied("You do not have access to this prompt")
        return record

    async def submit_prompt(
        self,
        text: str,
        dataset_ids: list[str],
        settings: PromptSettings | None,
        principal: Principal,
    ) -> dict[str, Any]:
        """Persist a new prompt and start processing without waiting for it."""
        self._require_subscription(principal)
        prompt_settings = settings or PromptSettings()
        record = await self.repository.create(
            {
                "userId": principal.uid,
                "teamId": principal.team_id,
                "created": datetime.now(timezone.utc).isoformat(),
                "prompt": text,
                "datasetIds": list(dataset_ids),
                "settings": prompt_settings.to_document(),
                "status": PromptStatus.CREATED.value,
                "enrichedPrompt": None,
                "generatedCode": None,
                "executionResults": None,
                "insights": None,
                "error": None,
            }
        )
        self.registry.start(record.id, self.pipeline.process(record.id, principal), name=f"process-{record.id}")
        logger.info("Prompt %s submitted by %s", record.id, principal.uid)
        return {
            "promptId": record.id,
            "status": PromptStatus.CREATED.value,
            "message": "Prompt submitted successfully and is being processed",
        }

    async def execute_prompt(
        self,
        prompt_id: str,
        options: ExecutionOptions | None,
        principal: Principal,
    ) -> dict[str, Any]:
        """Move a generated prompt to ``executing`` and start the sandbox run."""
        self._require_subscription(principal)
        record = await self._load_accessible(prompt_id, principal)
        if record.status != PromptStatus.GENERATED:
            raise InvalidState(
                f"Prompt cannot be executed in {record.status.value} state",
                details={"status": record.status.value},
            )
        await self.repository.transition(prompt_id, PromptStatus.EXECUTING, expected=PromptStatus.GENERATED)
        self.registry.start(
            prompt_id,
            self.pipeline.execute(prompt_id, options or ExecutionOptions(), principal),
            name=f"execute-{prompt_id}",
        )
        return {
            "promptId": prompt_id,
            "status": PromptStatus.EXECUTING.value,
            "message": "Code execution started",
        }

    async def get_prompt(self, prompt_id: str, principal: Principal) -> dict[str, Any]:
        record = await self._load_accessible(prompt_id, principal)
        return redact(record)

    async def get_results(self, prompt_id: str, principal: Principal) -> dict[str, Any]:
        record = await self._load_accessible(prompt_id, principal)
        if record.status != PromptStatus.COMPLETED:
            raise ResultsNotAvailable(
                f"Results not available. Prompt is in {record.status.value} state",
                details={"status": record.status.value},
            )
        results = record.execution_results
        return {
            "promptId": record.id,
            "status": record.status.value,
            "visualizations": [v.model_dump(mode="json") for v in results.visualizations] if results else [],
            "insights": [i.model_dump(mode="json") for i in record.insights or []],
        }

    async def list_prompts(self, principal: Principal, limit: int, page: int = 1) -> dict[str, Any]:
        """Own prompts and team prompts, newest first."""
        collection = self.repository.collection
        store = self.repository.store
        window = page * limit + 1
        queries = [
            store.query(
                collection,
                [QueryCondition("userId", "==", principal.uid)],
                order_by="createdAt",
                direction="desc",
                limit=window,
            )
        ]
        if principal.team_id:
            queries.append(
                store.query(
                    collection,
                    [QueryCondition("teamId", "==", principal.team_id)],
                    order_by="createdAt",
                    direction="desc",
                    limit=window,
                )
            )
        merged: dict[str, dict[str, Any]] = {}
        for documents in await asyncio.gather(*queries):
            for document in documents:
                merged[document["id"]] = document
        ordered = sorted(merged.values(), key=lambda d: d.get("createdAt") or "", reverse=True)
        start = (page - 1) * limit
        items = [redact(PromptRecord.from_document(d)) for d in ordered[start:start + limit]]
        return {"prompts": items, "page": page, "limit": limit, "hasMore": len(ordered) > start + limit}

    async def cancel_prompt(self, prompt_id: str, principal: Principal) -> dict[str, Any]:
        """Cancel the running stage, or fail a prompt that is waiting between stages."""
        record = await self._load_accessible(prompt_id, principal)
        if record.status in (PromptStatus.COMPLETED, PromptStatus.FAILED):
            raise InvalidState(
                f"Prompt is already {record.status.value}",
                details={"status": record.status.value},
            )

        task = self.registry.get(prompt_id)
        if self.registry.cancel(prompt_id) and task is not None:
            await asyncio.wait({task}, timeout=_CANCEL_WAIT_SECONDS)

        record = await self.repository.load(prompt_id)
        if record.status not in (PromptStatus.COMPLETED, PromptStatus.FAILED):
            await self.repository.fail(prompt_id, "Processing was cancelled", ErrorCode.CANCELLED.value, None)
            record = await self.repository.load(prompt_id)
        logger.info("Prompt %s cancel requested by %s, now %s", prompt_id, principal.uid, record.status.value)
        return {"promptId": prompt_id, "status": record.status.value}
