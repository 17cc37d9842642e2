"""Tenant access rules shared by enrichment, execution and the prompt API."""

from typing import Any

from finsight.models.prompt import Principal, PromptRecord


def can_access_dataset(dataset: dict[str, Any] | None, principal: Principal) -> bool:
    """Owner, or a member of the team the dataset is scoped to."""
    if not dataset:
        return False
    if dataset.get("ownerId") == principal.uid:
        return True
    team_id = dataset.get("teamId")
    return bool(team_id) and team_id == principal.team_id


def can_access_prompt(prompt: PromptRecord, principal: Principal) -> bool:
    if prompt.user_id == principal.uid:
        return True
    return bool(prompt.team_id) and prompt.team_id == principal.team_id
