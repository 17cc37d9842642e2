"""Async context manager for timing and logging pipeline steps."""

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from finsight.config.constants import PipelineStep
from finsight.infrastructure.logging.logger import StructuredLogger


class StepContext:
    """Mutable context for a timed pipeline step."""

    def __init__(self) -> None:
        self.state: dict[str, Any] = {}

    def record(self, **state: Any) -> None:
        self.state.update(state)


@asynccontextmanager
async def timed_step(
    step: PipelineStep,
    logger: StructuredLogger,
    prompt_id: str,
) -> AsyncGenerator[StepContext, None]:
    """Time a pipeline step and log its outcome.

    Failures (including cancellation) are logged with the elapsed time and
    re-raised.
    """
    ctx = StepContext()
    start = time.perf_counter()
    try:
        yield ctx
    except BaseException as e:
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.log_error(
            step.value,
            e,
            context={"prompt_id": prompt_id, "duration_ms": round(elapsed_ms, 2), **ctx.state},
        )
        raise
    elapsed_ms = (time.perf_counter() - start) * 1000
    logger.log_step(step.value, {"prompt_id": prompt_id, "outcome": "ok", **ctx.state}, elapsed_ms)
