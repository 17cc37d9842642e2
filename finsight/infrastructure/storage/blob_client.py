"""Google Cloud Storage client for dataset files."""

import asyncio
import logging
from datetime import timedelta
from typing import Protocol

from google.api_core import exceptions as google_exceptions
from google.cloud import storage
from google.oauth2 import service_account

from finsight.config.constants import ErrorCode
from finsight.config.settings import Settings
from finsight.errors import NotFound, UpstreamError

logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    async def download(self, path: str) -> bytes: ...

    async def signed_url(self, path: str, ttl_minutes: int = 15) -> str: ...

    async def close(self) -> None: ...


def _object_name(path: str, bucket_name: str) -> str:
    """Accept both ``gs://bucket/object`` URLs and bare object names."""
    prefix = f"gs://{bucket_name}/"
    if path.startswith(prefix):
        return path[len(prefix):]
    return path.lstrip("/")


class GCSBlobStore:
    """Read-only access to the dataset bucket.

    The storage SDK is synchronous, so every call runs in a worker thread.
    """

    def __init__(self, settings: Settings, client: storage.Client | None = None):
        """Initialize the client.

        Args:
            settings: Application settings with the bucket name and optional
                service account file
            client: Pre-built client (tests)
        """
        self.settings = settings
        self._client = client
        self._bucket_name = settings.gcs_bucket_name

    def _get_client(self) -> storage.Client:
        if self._client is None:
            if self.settings.gcp_credentials_file:
                credentials = service_account.Credentials.from_service_account_file(
                    self.settings.gcp_credentials_file
                )
                self._client = storage.Client(
                    project=self.settings.gcp_project_id or credentials.project_id,
                    credentials=credentials,
                )
                logger.info("GCS client initialized with service account")
            else:
                self._client = storage.Client(project=self.settings.gcp_project_id)
                logger.info("GCS client initialized with application default credentials")
        return self._client

    def _blob(self, path: str) -> storage.Blob:
        if not self._bucket_name:
            raise UpstreamError("gcs_bucket_name is not configured", code=ErrorCode.STORAGE_ERROR)
        bucket = self._get_client().bucket(self._bucket_name)
        return bucket.blob(_object_name(path, self._bucket_name))

    async def download(self, path: str) -> bytes:
        """Download an object's bytes."""
        try:
            return await asyncio.to_thread(lambda: self._blob(path).download_as_bytes())
        except google_exceptions.NotFound as e:
            raise NotFound(f"Blob not found: {path}") from e
        except google_exceptions.GoogleAPICallError as e:
            logger.error("Failed to download blob %s: %s", path, e)
            raise UpstreamError(f"Failed to download {path}", code=ErrorCode.STORAGE_ERROR) from e

    async def signed_url(self, path: str, ttl_minutes: int = 15) -> str:
        """Generate a v4 signed GET URL valid for ``ttl_minutes``."""

        def _sign() -> str:
            return self._blob(path).generate_signed_url(
                version="v4",
                expiration=timedelta(minutes=ttl_minutes),
                method="GET",
            )

        try:
            return await asyncio.to_thread(_sign)
        except google_exceptions.GoogleAPICallError as e:
            raise UpstreamError(f"Failed to sign URL for {path}", code=ErrorCode.STORAGE_ERROR) from e

    async def close(self) -> None:
        if self._client is not None:
            await asyncio.to_thread(self._client.close)
            self._client = None
