"""FastAPI dependencies."""

import logging

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from finsight.config.constants import ErrorCode
from finsight.config.settings import Settings
from finsight.container import Container
from finsight.errors import MissingToken, NotFound
from finsight.infrastructure.auth.identity import ensure_not_revoked
from finsight.models.prompt import Principal
from finsight.services.prompts.service import PromptService

logger = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)


def get_container(request: Request) -> Container:
    """The component container built at startup."""
    return request.app.state.container


def get_settings_dependency(container: Container = Depends(get_container)) -> Settings:
    return container.settings


def get_prompt_service(container: Container = Depends(get_container)) -> PromptService:
    return container.prompt_service


async def get_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    container: Container = Depends(get_container),
) -> Principal:
    """Verify the bearer token and load the caller's user record."""
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise MissingToken("No token provided")

    token = await container.identity.verify_token(credentials.credentials)
    user = await container.store.get(container.settings.users_collection, token.subject_id)
    if user is None:
        raise NotFound("User not found", code=ErrorCode.USER_NOT_FOUND)
    if container.settings.auth_check_revoked:
        ensure_not_revoked(token, user)
    return Principal.from_user_record(token.subject_id, token.email, user)
