"""Host-side validation of what generated code returned."""

import logging
from typing import Any

from finsight.errors import ExecutionError
from finsight.models.results import ExecutionResult, coerce_insights, coerce_visualizations

logger = logging.getLogger(__name__)


def validate_result(raw: Any, max_visualizations: int, max_insights: int) -> ExecutionResult:
    """Coerce a raw sandbox result into an :class:`ExecutionResult`.

    Raises:
        ExecutionError: the result is not an object.
    """
    if not isinstance(raw, dict):
        raise ExecutionError(
            f"Analysis code must return an object, got {type(raw).__name__}",
            details={"resultType": type(raw).__name__},
        )

    raw_visualizations = raw.get("visualizations") or []
    raw_insights = raw.get("insights") or []
    visualizations = coerce_visualizations(raw_visualizations, limit=max_visualizations)
    insights = coerce_insights(raw_insights, limit=max_insights)

    dropped_viz = (len(raw_visualizations) if isinstance(raw_visualizations, list) else 1) - len(visualizations)
    dropped_insights = (len(raw_insights) if isinstance(raw_insights, list) else 1) - len(insights)
    if dropped_viz > 0 or dropped_insights > 0:
        logger.info(
            "Sandbox result trimmed: %d visualizations and %d insights dropped or over the cap",
            max(dropped_viz, 0),
            max(dropped_insights, 0),
        )
    return ExecutionResult(visualizations=visualizations, insights=insights)
