"""Prompt endpoints."""

from typing import Any

from fastapi import APIRouter, Body, Depends, Query

from finsight.api.dependencies import get_principal, get_prompt_service, get_settings_dependency
from finsight.api.models import (
    CreatePromptRequest,
    ExecutePromptRequest,
    PromptAccepted,
    PromptList,
    PromptResults,
    PromptStatusResponse,
)
from finsight.config.settings import Settings
from finsight.models.prompt import Principal
from finsight.services.prompts.service import PromptService

router = APIRouter()


@router.post("", response_model=PromptAccepted, response_model_by_alias=True, status_code=201)
async def create_prompt(
    request: CreatePromptRequest,
    principal: Principal = Depends(get_principal),
    service: PromptService = Depends(get_prompt_service),
) -> dict[str, Any]:
    """Submit an analysis request; processing continues in the background."""
    return await service.submit_prompt(request.prompt, request.dataset_ids, request.settings, principal)


@router.get("", response_model=PromptList, response_model_by_alias=True)
async def list_prompts(
    limit: int | None = Query(None, ge=1),
    page: int = Query(1, ge=1),
    principal: Principal = Depends(get_principal),
    service: PromptService = Depends(get_prompt_service),
    settings: Settings = Depends(get_settings_dependency),
) -> dict[str, Any]:
    """List the caller's and their team's prompts, newest first."""
    page_size = min(limit or settings.default_page_size, settings.max_page_size)
    return await service.list_prompts(principal, page_size, page)


@router.get("/{prompt_id}")
async def get_prompt(
    prompt_id: str,
    principal: Principal = Depends(get_principal),
    service: PromptService = Depends(get_prompt_service),
) -> dict[str, Any]:
    """Poll a prompt's status."""
    return await service.get_prompt(prompt_id, principal)


@router.post(
    "/{prompt_id}/execute",
    response_model=PromptAccepted,
    response_model_by_alias=True,
    status_code=202,
)
async def execute_prompt(
    prompt_id: str,
    request: ExecutePromptRequest | None = Body(None),
    principal: Principal = Depends(get_principal),
    service: PromptService = Depends(get_prompt_service),
) -> dict[str, Any]:
    """Run the generated code for a prompt in ``generated`` state."""
    options = request.execution_options if request else None
    return await service.execute_prompt(prompt_id, options, principal)


@router.get("/{prompt_id}/results", response_model=PromptResults, response_model_by_alias=True)
async def get_prompt_results(
    prompt_id: str,
    principal: Principal = Depends(get_principal),
    service: PromptService = Depends(get_prompt_service),
) -> dict[str, Any]:
    """Visualizations and insights of a completed prompt."""
    return await service.get_results(prompt_id, principal)


@router.post("/{prompt_id}/cancel", response_model=PromptStatusResponse, response_model_by_alias=True)
async def cancel_prompt(
    prompt_id: str,
    principal: Principal = Depends(get_principal),
    service: PromptService = Depends(get_prompt_service),
) -> dict[str, Any]:
    """Cancel a prompt that has not finished yet."""
    return await service.cancel_prompt(prompt_id, principal)
