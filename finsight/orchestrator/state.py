"""Prompt lifecycle: legal transitions and version-guarded persistence."""

import logging
from typing import Any

from finsight.config.constants import ErrorCode, PipelineStage, PromptStatus
from finsight.errors import ConcurrencyConflict, InvalidState, NotFound
from finsight.infrastructure.storage.document_store import DocumentStore
from finsight.models.prompt import PromptError, PromptRecord

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[PromptStatus, frozenset[PromptStatus]] = {
    PromptStatus.CREATED: frozenset({PromptStatus.PROCESSING, PromptStatus.FAILED}),
    PromptStatus.PROCESSING: frozenset({PromptStatus.GENERATED, PromptStatus.FAILED}),
    PromptStatus.GENERATED: frozenset({PromptStatus.EXECUTING, PromptStatus.FAILED}),
    PromptStatus.EXECUTING: frozenset({PromptStatus.COMPLETED, PromptStatus.FAILED}),
    PromptStatus.COMPLETED: frozenset(),
    PromptStatus.FAILED: frozenset(),
}

# Fields only the matching transition may write
_RESULT_FIELDS = frozenset({"executionResults", "insights"})
_ERROR_FIELDS = frozenset({"error"})

# A transition re-reads and retries after losing a race on an unrelated write
_TRANSITION_ATTEMPTS = 3


def can_transition(current: PromptStatus, target: PromptStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


class PromptRepository:
    """Reads and writes prompt records.

    Every status change is a compare-and-set: the record is read, the move
    is checked against :data:`ALLOWED_TRANSITIONS`, and the write is made
    conditional on the version that was read.
    """

    def __init__(self, store: DocumentStore, collection: str = "prompts"):
        self.store = store
        self.collection = collection

    async def create(self, data: dict[str, Any]) -> PromptRecord:
        document = await self.store.create(self.collection, data)
        return PromptRecord.from_document(document)

    async def find(self, prompt_id: str) -> PromptRecord | None:
        document = await self.store.get(self.collection, prompt_id)
        return PromptRecord.from_document(document) if document else None

    async def load(self, prompt_id: str) -> PromptRecord:
        record = await self.find(prompt_id)
        if record is None:
            raise NotFound("Prompt not found", code=ErrorCode.PROMPT_NOT_FOUND)
        return record

    async def update_fields(self, record: PromptRecord, fields: dict[str, Any]) -> PromptRecord:
        """Partial write that leaves ``status`` alone, guarded by ``record.version``."""
        forbidden = set(fields) & (_RESULT_FIELDS | _ERROR_FIELDS | {"status"})
        if forbidden:
            raise ValueError(f"Fields {sorted(forbidden)} can only be written by a transition")
        document = await self.store.update(
            self.collection, record.id, fields, expected_version=record.version
        )
        return PromptRecord.from_document(document)

    async def transition(
        self,
        prompt_id: str,
        target: PromptStatus,
        fields: dict[str, Any] | None = None,
        expected: PromptStatus | None = None,
    ) -> PromptRecord:
        """Move the prompt to ``target`` and write ``fields`` in the same update.

        Args:
            prompt_id: Prompt to move
            target: Desired status
            fields: Extra camelCase fields written with the status
            expected: Status the caller believes the prompt is in

        Raises:
            InvalidState: the move is illegal from the current status, or the
                prompt left ``expected`` before the write landed.
        """
        fields = dict(fields or {})
        if set(fields) & _RESULT_FIELDS and target != PromptStatus.COMPLETED:
            raise ValueError("Results can only be written by the transition into completed")
        if set(fields) & _ERROR_FIELDS and target != PromptStatus.FAILED:
            raise ValueError("Errors can only be written by the transition into failed")

        for _ in range(_TRANSITION_ATTEMPTS):
            record = await self.load(prompt_id)
            if expected is not None and record.status != expected:
                raise InvalidState(
                    f"Prompt is {record.status.value}, expected {expected.value}",
                    details={"status": record.status.value, "expected": expected.value},
                )
            if not can_transition(record.status, target):
                raise InvalidState(
                    f"Cannot move prompt from {record.status.value} to {target.value}",
                    details={"status": record.status.value, "target": target.value},
                )
            try:
                document = await self.store.update(
                    self.collection,
                    prompt_id,
                    {**fields, "status": target.value},
                    expected_version=record.version,
                )
            except ConcurrencyConflict:
                logger.debug("Lost transition race on prompt %s, re-reading", prompt_id)
                continue
            logger.info("Prompt %s: %s -> %s", prompt_id, record.status.value, target.value)
            return PromptRecord.from_document(document)

        raise InvalidState(
            "Prompt was modified concurrently",
            details={"target": target.value},
        )

    async def fail(
        self,
        prompt_id: str,
        message: str,
        code: str,
        stage: PipelineStage | None,
    ) -> PromptRecord | None:
        """Move the prompt to ``failed``; returns None when it is already terminal."""
        error = PromptError(message=message, code=code, stage=stage)
        try:
            return await self.transition(
                prompt_id, PromptStatus.FAILED, {"error": error.to_document()}
            )
        except InvalidState as e:
            logger.warning("Could not mark prompt %s failed: %s", prompt_id, e.message)
            return None
