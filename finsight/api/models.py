"""Request/Response models for API endpoints."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from finsight.config.constants import PROMPT_MAX_LENGTH, PROMPT_MIN_LENGTH
from finsight.models.prompt import ExecutionOptions, PromptSettings
from finsight.models.results import Insight, Visualization


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreatePromptRequest(ApiModel):
    """Body of ``POST /api/prompts``."""

    prompt: str = Field(
        ...,
        min_length=PROMPT_MIN_LENGTH,
        max_length=PROMPT_MAX_LENGTH,
        description="Natural language analysis request",
    )
    dataset_ids: list[str] = Field(default_factory=list, description="Datasets to analyze")
    settings: PromptSettings = Field(default_factory=PromptSettings)

    @field_validator("prompt")
    @classmethod
    def reject_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Prompt text is required")
        return v


class ExecutePromptRequest(ApiModel):
    """Body of ``POST /api/prompts/{id}/execute``."""

    execution_options: ExecutionOptions = Field(default_factory=ExecutionOptions)


class PromptAccepted(ApiModel):
    prompt_id: str
    status: str
    message: str


class PromptResults(ApiModel):
    prompt_id: str
    status: str
    visualizations: list[Visualization]
    insights: list[Insight]


class PromptStatusResponse(ApiModel):
    prompt_id: str
    status: str


class PromptList(ApiModel):
    prompts: list[dict[str, Any]]
    page: int
    limit: int
    has_more: bool


class HealthResponse(BaseModel):
    """Response model for health endpoint."""

    status: str = Field(..., description="Service status")
    version: str = Field(..., description="Application version")
