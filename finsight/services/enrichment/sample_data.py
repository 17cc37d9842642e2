"""Sample rows for dataset context, read from cached schema data or the dataset file."""

import asyncio
import io
import json
import logging
from typing import Any

import pandas as pd

from finsight.config.settings import Settings
from finsight.errors import ValidationError
from finsight.infrastructure.cache.bounded_cache import BoundedCache
from finsight.infrastructure.storage.blob_client import BlobStore

logger = logging.getLogger(__name__)

_CSV_TYPES = ("text/csv", "application/csv", "text/plain")
_EXCEL_MARKERS = ("spreadsheetml", "excel", "ms-excel")


def cached_sample_rows(dataset: dict[str, Any]) -> list[dict[str, Any]] | None:
    """Rows stored on the dataset record at upload time, if any."""
    schema = dataset.get("schema") or {}
    rows = schema.get("sampleData")
    if isinstance(rows, list):
        return [row for row in rows if isinstance(row, dict)]
    return None


def parse_sample(content: bytes, content_type: str, limit: int) -> list[dict[str, Any]]:
    """Parse the first ``limit`` rows of a CSV or spreadsheet file."""
    content_type = (content_type or "").lower()
    if content_type in _CSV_TYPES or content_type.endswith("csv"):
        frame = pd.read_csv(io.BytesIO(content), nrows=limit)
    elif any(marker in content_type for marker in _EXCEL_MARKERS):
        frame = pd.read_excel(io.BytesIO(content), nrows=limit)
    else:
        raise ValidationError(f"Unsupported dataset file type: {content_type or 'unknown'}")
    # Round-trip through JSON so NaN, numpy scalars and timestamps become plain values
    return json.loads(frame.head(limit).to_json(orient="records", date_format="iso"))


class SampleDataLoader:
    """Loads up to ``sample_rows_limit`` rows per dataset.

    Live downloads are parsed in a worker thread and memoised per dataset
    and storage path.
    """

    def __init__(
        self,
        settings: Settings,
        blob_store: BlobStore,
        cache: BoundedCache[list[dict[str, Any]]] | None = None,
    ):
        self.settings = settings
        self.blob_store = blob_store
        self.cache = cache or BoundedCache(
            max_size=settings.sample_cache_max_size,
            ttl_seconds=settings.sample_cache_ttl,
        )

    async def load(self, dataset: dict[str, Any]) -> list[dict[str, Any]]:
        limit = self.settings.sample_rows_limit
        cached = cached_sample_rows(dataset)
        if cached is not None:
            return cached[:limit]

        file_info = dataset.get("fileInfo") or {}
        path = file_info.get("storageUrl")
        if not path:
            return []

        cache_key = f"{dataset.get('id')}:{path}"
        hit = self.cache.get(cache_key)
        if hit is not None:
            return hit

        content = await self.blob_store.download(path)
        rows = await asyncio.to_thread(parse_sample, content, file_info.get("type", ""), limit)
        self.cache.set(cache_key, rows)
        logger.debug("Parsed %d sample rows for dataset %s", len(rows), dataset.get("id"))
        return rows
