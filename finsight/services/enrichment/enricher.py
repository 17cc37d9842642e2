"""
Context enrichment: turns a raw analysis request into the prompt sent to the
code-generation model.

Sections, in order: original request, user preferences, team context,
analysis settings, datasets, code instructions. Team and per-dataset failures
degrade to empty or error-note sections; only a failure of the assembly
itself raises.
"""

import asyncio
import json
import logging
from typing import Any

from finsight.config.constants import ErrorCode, VisualizationType
from finsight.config.prompts import build_code_instructions
from finsight.config.settings import Settings
from finsight.errors import InternalError
from finsight.infrastructure.storage.document_store import DocumentStore
from finsight.models.prompt import Principal, PromptSettings
from finsight.services.access import can_access_dataset
from finsight.services.enrichment.sample_data import SampleDataLoader

logger = logging.getLogger(__name__)

DATASET_ERROR_NOTE = "Error retrieving dataset information."
NO_DATASETS_NOTE = "No valid datasets available."


def _bullet(label: str, value: Any) -> str:
    return f"- {label}: {value}\n"


def build_user_section(principal: Principal) -> str:
    """USER PREFERENCES section, omitted when every field is empty."""
    settings = principal.settings
    preferences = principal.preferences
    ai_context = preferences.ai_context
    fields = [
        ("Currency", settings.currency),
        ("Date Format", settings.date_format),
        ("Language", settings.language),
        ("Industry", preferences.industry),
        ("Business Type", preferences.business_type),
        ("Financial Year", ai_context.financial_year),
        ("Reporting Period", ai_context.reporting_period),
        ("Company Size", ai_context.company_size),
        ("Analysis Preference", ai_context.analysis_preference),
    ]
    lines = [_bullet(label, value) for label, value in fields if value not in (None, "")]
    if not lines:
        return ""
    return "USER PREFERENCES:\n" + "".join(lines) + "\n"


def build_team_section(team: dict[str, Any] | None) -> str:
    if not team:
        return ""
    context = team.get("context") or {}
    lines = []
    if context.get("business"):
        lines.append(_bullet("Business", context["business"]))
    if context.get("industry"):
        lines.append(_bullet("Industry", context["industry"]))
    for key, value in (context.get("preferences") or {}).items():
        lines.append(_bullet(key, value))
    return "TEAM CONTEXT:\n" + "".join(lines) + "\n"


def build_settings_section(prompt_settings: PromptSettings | None) -> str:
    if prompt_settings is None:
        return ""
    lines = []
    if prompt_settings.visualization_type != VisualizationType.AUTO:
        lines.append(_bullet("Preferred Visualization", prompt_settings.visualization_type.value))
    if prompt_settings.language:
        lines.append(_bullet("Response Language", prompt_settings.language))
    if not lines:
        return ""
    return "ANALYSIS SETTINGS:\n" + "".join(lines) + "\n"


def describe_dataset(dataset: dict[str, Any], sample_rows: list[dict[str, Any]], examples_limit: int) -> str:
    """Render one dataset block: name, description, metadata, schema and samples."""
    text = f"\nDATASET: {dataset.get('name') or dataset.get('id')}\n"
    if dataset.get("description"):
        text += f"Description: {dataset['description']}\n"

    metadata = dataset.get("metadata") or {}
    if metadata:
        text += "Metadata:\n"
        for key, value in metadata.items():
            text += _bullet(key, value)

    columns = (dataset.get("schema") or {}).get("columns") or []
    if columns:
        text += "\nSchema:\n"
        for column in columns:
            text += f"- Column: {column.get('name')}, Type: {column.get('type')}"
            if column.get("description"):
                text += f", Description: {column['description']}"
            text += "\n"
            examples = column.get("examples") or []
            if examples:
                text += f"  Examples: {', '.join(str(e) for e in examples[:examples_limit])}\n"

    text += "\nSample Data:\n"
    text += json.dumps(sample_rows, indent=2, ensure_ascii=False, default=str) + "\n"
    return text


class ContextEnricher:
    """Builds enriched prompts from request text, principal and datasets."""

    def __init__(
        self,
        settings: Settings,
        store: DocumentStore,
        sample_loader: SampleDataLoader,
    ):
        self.settings = settings
        self.store = store
        self.sample_loader = sample_loader

    async def enrich(
        self,
        prompt_text: str,
        dataset_ids: list[str],
        principal: Principal,
        prompt_settings: PromptSettings | None = None,
    ) -> str:
        """Return the enriched prompt.

        Raises:
            InternalError: CONTEXT_ENHANCEMENT_ERROR when assembly itself fails.
        """
        try:
            sections = [f"ORIGINAL REQUEST: {prompt_text}\n\n", build_user_section(principal)]
            if principal.team_id:
                sections.append(await self._team_section(principal.team_id))
            sections.append(build_settings_section(prompt_settings))
            if dataset_ids:
                sections.append(await self._dataset_section(dataset_ids, principal))
            sections.append(build_code_instructions(self.settings.sandbox_allowed_modules))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Error enhancing prompt: %s", e, exc_info=True)
            raise InternalError(
                "Error preparing analysis context", code=ErrorCode.CONTEXT_ENHANCEMENT_ERROR
            ) from e

        logger.info("Enhanced prompt created with %d datasets", len(dataset_ids or []))
        return "".join(sections)

    async def _team_section(self, team_id: str) -> str:
        try:
            team = await self.store.get(self.settings.teams_collection, team_id)
            return build_team_section(team)
        except Exception as e:
            logger.error("Error getting team context for %s: %s", team_id, e)
            return ""

    async def _fetch_dataset(self, dataset_id: str) -> dict[str, Any] | Exception | None:
        try:
            return await self.store.get(self.settings.datasets_collection, dataset_id)
        except Exception as e:
            logger.error("Error fetching dataset %s: %s", dataset_id, e)
            return e

    async def _describe(self, dataset: dict[str, Any]) -> str:
        try:
            rows = await self.sample_loader.load(dataset)
            return describe_dataset(dataset, rows, self.settings.column_examples_limit)
        except Exception as e:
            logger.error("Error adding dataset %s to context: %s", dataset.get("id"), e)
            return f"\nDATASET: {dataset.get('name') or dataset.get('id')}\n{DATASET_ERROR_NOTE}\n"

    async def _dataset_section(self, dataset_ids: list[str], principal: Principal) -> str:
        fetched = await asyncio.gather(*(self._fetch_dataset(ds_id) for ds_id in dataset_ids))

        blocks: list[str] = []
        accessible: list[dict[str, Any]] = []
        for dataset_id, result in zip(dataset_ids, fetched):
            if isinstance(result, Exception):
                blocks.append(f"\n{DATASET_ERROR_NOTE} (dataset {dataset_id})\n")
            elif can_access_dataset(result, principal):
                accessible.append(result)
            elif result is not None:
                logger.info("Dataset %s excluded: no access for user %s", dataset_id, principal.uid)

        if not accessible and not blocks:
            return f"{NO_DATASETS_NOTE}\n\n"

        described = await asyncio.gather(*(self._describe(ds) for ds in accessible))
        return "DATASETS:\n" + "".join(described) + "".join(blocks) + "\n"
