"""Tests for the prompt state machine and PromptRepository."""

import asyncio

import pytest

from finsight.config.constants import PipelineStage, PromptStatus
from finsight.errors import InvalidState, NotFound
from finsight.orchestrator.state import ALLOWED_TRANSITIONS, PromptRepository, can_transition


@pytest.fixture
def repository(store):
    return PromptRepository(store)


async def _create(repository, **overrides):
    data = {
        "userId": "user-1",
        "teamId": "team-1",
        "prompt": "Show monthly revenue",
        "datasetIds": [],
        "status": "created",
    }
    data.update(overrides)
    return await repository.create(data)


# ==========================================
#  Transition table
# ==========================================


def test_happy_path_is_legal():
    """created -> processing -> generated -> executing -> completed."""
    path = [
        PromptStatus.CREATED,
        PromptStatus.PROCESSING,
        PromptStatus.GENERATED,
        PromptStatus.EXECUTING,
        PromptStatus.COMPLETED,
    ]
    for current, target in zip(path, path[1:]):
        assert can_transition(current, target)


def test_every_non_terminal_state_can_fail():
    for status in (PromptStatus.CREATED, PromptStatus.PROCESSING, PromptStatus.GENERATED, PromptStatus.EXECUTING):
        assert can_transition(status, PromptStatus.FAILED)


def test_terminal_states_have_no_exits():
    assert ALLOWED_TRANSITIONS[PromptStatus.COMPLETED] == frozenset()
    assert ALLOWED_TRANSITIONS[PromptStatus.FAILED] == frozenset()


def test_skipping_states_is_illegal():
    assert not can_transition(PromptStatus.CREATED, PromptStatus.GENERATED)
    assert not can_transition(PromptStatus.GENERATED, PromptStatus.COMPLETED)
    assert not can_transition(PromptStatus.EXECUTING, PromptStatus.GENERATED)


# ==========================================
#  Repository
# ==========================================


async def test_transition_bumps_version(repository):
    record = await _create(repository)
    moved = await repository.transition(record.id, PromptStatus.PROCESSING, expected=PromptStatus.CREATED)
    assert moved.status == PromptStatus.PROCESSING
    assert moved.version == record.version + 1


async def test_transition_rejects_unexpected_state(repository):
    record = await _create(repository)
    with pytest.raises(InvalidState):
        await repository.transition(record.id, PromptStatus.EXECUTING, expected=PromptStatus.GENERATED)


async def test_illegal_transition_raises(repository):
    record = await _create(repository)
    with pytest.raises(InvalidState) as exc:
        await repository.transition(record.id, PromptStatus.COMPLETED)
    assert exc.value.code == "INVALID_PROMPT_STATE"


async def test_results_only_written_on_completion(repository):
    record = await _create(repository)
    with pytest.raises(ValueError):
        await repository.transition(record.id, PromptStatus.PROCESSING, {"insights": []})


async def test_error_only_written_on_failure(repository):
    record = await _create(repository)
    with pytest.raises(ValueError):
        await repository.transition(record.id, PromptStatus.PROCESSING, {"error": {"message": "x", "code": "y"}})


async def test_update_fields_cannot_touch_status(repository):
    record = await _create(repository)
    with pytest.raises(ValueError):
        await repository.update_fields(record, {"status": "completed"})


async def test_concurrent_transitions_only_one_wins(repository):
    """Two callers moving generated -> executing: exactly one succeeds."""
    record = await _create(repository, status="generated")
    outcomes = await asyncio.gather(
        repository.transition(record.id, PromptStatus.EXECUTING, expected=PromptStatus.GENERATED),
        repository.transition(record.id, PromptStatus.EXECUTING, expected=PromptStatus.GENERATED),
        return_exceptions=True,
    )
    successes = [o for o in outcomes if not isinstance(o, BaseException)]
    failures = [o for o in outcomes if isinstance(o, InvalidState)]
    assert len(successes) == 1
    assert len(failures) == 1


async def test_fail_records_error_and_stage(repository):
    record = await _create(repository)
    failed = await repository.fail(record.id, "boom", "PROCESSING_ERROR", PipelineStage.CODE_GENERATION)
    assert failed.status == PromptStatus.FAILED
    assert failed.error.message == "boom"
    assert failed.error.stage == PipelineStage.CODE_GENERATION


async def test_fail_on_terminal_prompt_is_noop(repository):
    record = await _create(repository, status="completed")
    assert await repository.fail(record.id, "late", "CANCELLED", None) is None
    assert (await repository.load(record.id)).status == PromptStatus.COMPLETED


async def test_load_missing_prompt(repository):
    with pytest.raises(NotFound) as exc:
        await repository.load("missing")
    assert exc.value.code == "PROMPT_NOT_FOUND"
