"""Execution result models and the lenient coercion applied to sandbox and LLM output."""

import logging
import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from finsight.config.constants import (
    INSIGHT_IMPORTANCE_DEFAULT,
    INSIGHT_IMPORTANCE_MAX,
    INSIGHT_IMPORTANCE_MIN,
)

logger = logging.getLogger(__name__)


class Visualization(BaseModel):
    """A chart configuration produced by generated code."""

    model_config = ConfigDict(extra="ignore")

    type: str = Field(min_length=1)
    title: str = ""
    data: Any = None
    config: dict[str, Any] = Field(default_factory=dict)

    @field_validator("type", "title", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> Any:
        if v is None:
            return ""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("config", mode="before")
    @classmethod
    def default_config(cls, v: Any) -> Any:
        return {} if v is None else v


def clamp_importance(value: Any) -> int:
    """Clamp to [1, 5]; missing or non-numeric values fall back to 3."""
    if isinstance(value, bool):
        return INSIGHT_IMPORTANCE_DEFAULT
    try:
        number = float(value)
    except (TypeError, ValueError):
        return INSIGHT_IMPORTANCE_DEFAULT
    if math.isnan(number):
        return INSIGHT_IMPORTANCE_DEFAULT
    return int(min(INSIGHT_IMPORTANCE_MAX, max(INSIGHT_IMPORTANCE_MIN, round(number))))


class Insight(BaseModel):
    """A narrative finding."""

    model_config = ConfigDict(extra="ignore")

    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    importance: int = INSIGHT_IMPORTANCE_DEFAULT

    @field_validator("importance", mode="before")
    @classmethod
    def clamp(cls, v: Any) -> int:
        return clamp_importance(v)


class ExecutionResult(BaseModel):
    visualizations: list[Visualization] = Field(default_factory=list)
    insights: list[Insight] = Field(default_factory=list)


def coerce_visualizations(items: Any, limit: int | None = None) -> list[Visualization]:
    """Validate items one by one, dropping the invalid ones."""
    if not isinstance(items, list):
        return []
    valid: list[Visualization] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            valid.append(Visualization.model_validate(item))
        except ValidationError as e:
            logger.debug("Dropping invalid visualization: %s", e.errors()[:1])
        if limit is not None and len(valid) >= limit:
            break
    return valid


def coerce_insights(items: Any, limit: int | None = None) -> list[Insight]:
    """Validate items one by one, dropping the invalid ones."""
    if not isinstance(items, list):
        return []
    valid: list[Insight] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            valid.append(Insight.model_validate(item))
        except ValidationError as e:
            logger.debug("Dropping invalid insight: %s", e.errors()[:1])
        if limit is not None and len(valid) >= limit:
            break
    return valid
