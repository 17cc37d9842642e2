"""Firebase Auth ID-token verification using google-auth."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import requests
from google.auth import exceptions as google_auth_exceptions
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import id_token

from finsight.config.settings import Settings
from finsight.errors import ExpiredToken, InvalidToken, RevokedToken

logger = logging.getLogger(__name__)

_FIREBASE_ISSUER = "https://securetoken.google.com/{project_id}"


@dataclass(frozen=True)
class VerifiedToken:
    """Claims the API relies on."""

    subject_id: str
    email: str | None
    auth_time: int | None
    claims: dict[str, Any]


class IdentityVerifier(Protocol):
    async def verify_token(self, bearer: str) -> VerifiedToken: ...


def ensure_not_revoked(token: VerifiedToken, user_record: dict[str, Any] | None) -> None:
    """Reject tokens issued before the user's ``tokensValidAfter`` cut-off."""
    if not user_record:
        return
    valid_after = user_record.get("tokensValidAfter")
    if valid_after is None:
        return
    if token.auth_time is None or token.auth_time < int(valid_after):
        raise RevokedToken("Token has been revoked")


class FirebaseIdentityVerifier:
    """Verify Firebase ID tokens against Google's public certificates.

    Certificate fetches go through a shared ``requests`` session; the
    blocking verification runs in a worker thread.
    """

    def __init__(self, settings: Settings, session: requests.Session | None = None):
        self.settings = settings
        self._project_id = settings.firebase_project_id
        self._session = session or requests.Session()
        self._request = GoogleAuthRequest(session=self._session)

    def _verify_sync(self, bearer: str) -> dict[str, Any]:
        return id_token.verify_firebase_token(
            bearer,
            self._request,
            audience=self._project_id or None,
            clock_skew_in_seconds=10,
        )

    async def verify_token(self, bearer: str) -> VerifiedToken:
        if not bearer:
            raise InvalidToken("Empty token")
        try:
            claims = await asyncio.to_thread(self._verify_sync, bearer)
        except (ValueError, google_auth_exceptions.GoogleAuthError) as e:
            message = str(e)
            if "expired" in message.lower():
                raise ExpiredToken("Token has expired") from e
            logger.info("Token verification failed: %s", message)
            raise InvalidToken("Invalid authentication token") from e

        if claims is None:
            raise InvalidToken("Invalid authentication token")
        if self._project_id and claims.get("iss") != _FIREBASE_ISSUER.format(project_id=self._project_id):
            raise InvalidToken("Token issuer mismatch")

        subject = claims.get("sub") or claims.get("user_id")
        if not subject:
            raise InvalidToken("Token has no subject")

        auth_time = claims.get("auth_time")
        return VerifiedToken(
            subject_id=str(subject),
            email=claims.get("email"),
            auth_time=int(auth_time) if auth_time is not None else None,
            claims=claims,
        )

    async def close(self) -> None:
        self._session.close()
