"""Prompt record, principal and option models.

Stored documents and API payloads use camelCase keys; Python code uses
snake_case attributes through the alias generator.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from finsight.config.constants import (
    EXECUTION_MEMORY_DEFAULT_MB,
    EXECUTION_MEMORY_MAX_MB,
    EXECUTION_MEMORY_MIN_MB,
    EXECUTION_TIMEOUT_DEFAULT_MS,
    EXECUTION_TIMEOUT_MAX_MS,
    EXECUTION_TIMEOUT_MIN_MS,
    PipelineStage,
    PromptStatus,
    VisualizationType,
)
from finsight.models.results import ExecutionResult, Insight


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        use_enum_values=False,
    )

    def to_document(self, **kwargs: Any) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", **kwargs)


class PromptSettings(CamelModel):
    visualization_type: VisualizationType = VisualizationType.AUTO
    include_insights: bool = True
    language: str = "en"


class PromptError(CamelModel):
    message: str
    code: str
    stage: PipelineStage | None = None


class ExecutionOptions(CamelModel):
    """Per-run sandbox options, as accepted by the execute endpoint."""

    timeout: int = Field(
        EXECUTION_TIMEOUT_DEFAULT_MS, ge=EXECUTION_TIMEOUT_MIN_MS, le=EXECUTION_TIMEOUT_MAX_MS
    )
    memory_limit: int = Field(
        EXECUTION_MEMORY_DEFAULT_MB, ge=EXECUTION_MEMORY_MIN_MB, le=EXECUTION_MEMORY_MAX_MB
    )


class PromptRecord(CamelModel):
    """A persisted analysis request and its pipeline state."""

    id: str
    user_id: str
    team_id: str | None = None
    created: str | None = None
    prompt: str
    dataset_ids: list[str] = Field(default_factory=list)
    settings: PromptSettings = Field(default_factory=PromptSettings)
    status: PromptStatus = PromptStatus.CREATED
    enriched_prompt: str | None = None
    generated_code: str | None = None
    execution_results: ExecutionResult | None = None
    insights: list[Insight] | None = None
    error: PromptError | None = None
    version: int = 1
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "PromptRecord":
        return cls.model_validate(document)


class AIContext(CamelModel):
    financial_year: str | None = None
    reporting_period: str | None = None
    company_size: str | None = None
    analysis_preference: str | None = None


class UserPreferences(CamelModel):
    industry: str | None = None
    business_type: str | None = None
    ai_context: AIContext = Field(default_factory=AIContext)


class UserSettings(CamelModel):
    currency: str | None = None
    date_format: str | None = None
    language: str | None = None


class Subscription(CamelModel):
    status: str | None = None
    plan: str | None = None
    trial_end: datetime | None = None

    def is_active(self, now: datetime | None = None) -> bool:
        """Active plans and unexpired trials grant access."""
        if self.status == "active":
            return True
        if self.trial_end is None:
            return False
        now = now or datetime.now(timezone.utc)
        trial_end = self.trial_end
        if trial_end.tzinfo is None:
            trial_end = trial_end.replace(tzinfo=timezone.utc)
        return trial_end > now


class Principal(CamelModel):
    """The authenticated caller, built from the token and the ``users`` record."""

    uid: str
    email: str | None = None
    team_id: str | None = None
    preferences: UserPreferences = Field(default_factory=UserPreferences)
    settings: UserSettings = Field(default_factory=UserSettings)
    subscription: Subscription = Field(default_factory=Subscription)

    @classmethod
    def from_user_record(cls, uid: str, email: str | None, record: dict[str, Any]) -> "Principal":
        data = {k: v for k, v in record.items() if v is not None}
        data["uid"] = uid
        if email and not data.get("email"):
            data["email"] = email
        return cls.model_validate(data)
