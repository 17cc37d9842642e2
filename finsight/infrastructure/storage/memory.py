"""In-process document and blob stores for development and tests."""

import asyncio
import copy
from typing import Any

from finsight.errors import ConcurrencyConflict, NotFound, ValidationError
from finsight.infrastructure.storage.document_store import (
    QueryCondition,
    SortDirection,
    new_document_id,
    strip_managed,
    utc_now_iso,
)

_MISSING = object()


def _matches(document: dict[str, Any], condition: QueryCondition) -> bool:
    actual = document.get(condition.field, _MISSING)
    value = condition.value
    if condition.op == "==":
        return actual is not _MISSING and actual == value
    if condition.op == "!=":
        return actual is not _MISSING and actual != value
    if condition.op == "in":
        return actual is not _MISSING and actual in value
    if condition.op == "not-in":
        return actual is not _MISSING and actual not in value
    if actual is _MISSING or actual is None:
        return False
    try:
        if condition.op == "<":
            return actual < value
        if condition.op == "<=":
            return actual <= value
        if condition.op == ">":
            return actual > value
        if condition.op == ">=":
            return actual >= value
    except TypeError:
        return False
    raise ValidationError(f"Unsupported query operator: {condition.op}")


class InMemoryDocumentStore:
    """Dict-backed document store with the same versioning rules as the SQL store.

    Reads and writes hand out deep copies so callers never share state with
    the store.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def init(self) -> None:
        return None

    async def create(
        self, collection: str, data: dict[str, Any], doc_id: str | None = None
    ) -> dict[str, Any]:
        async with self._lock:
            documents = self._collections.setdefault(collection, {})
            doc_id = doc_id or new_document_id()
            if doc_id in documents:
                raise ConcurrencyConflict(
                    f"Document {collection}/{doc_id} already exists",
                    details={"collection": collection, "id": doc_id},
                )
            now = utc_now_iso()
            document = {
                **copy.deepcopy(strip_managed(data)),
                "id": doc_id,
                "version": 1,
                "createdAt": now,
                "updatedAt": now,
            }
            documents[doc_id] = document
            return copy.deepcopy(document)

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        async with self._lock:
            document = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(document) if document is not None else None

    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> dict[str, Any]:
        async with self._lock:
            document = self._collections.get(collection, {}).get(doc_id)
            if document is None:
                raise NotFound(f"Document {collection}/{doc_id} not found")
            if expected_version is not None and document["version"] != expected_version:
                raise ConcurrencyConflict(
                    f"Version mismatch on {collection}/{doc_id}",
                    details={"expected": expected_version, "actual": document["version"]},
                )
            document.update(copy.deepcopy(strip_managed(fields)))
            document["version"] += 1
            document["updatedAt"] = utc_now_iso()
            return copy.deepcopy(document)

    async def delete(self, collection: str, doc_id: str) -> bool:
        async with self._lock:
            return self._collections.get(collection, {}).pop(doc_id, None) is not None

    async def query(
        self,
        collection: str,
        conditions: list[QueryCondition] | tuple[QueryCondition, ...] = (),
        order_by: str | None = None,
        direction: SortDirection = "asc",
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        async with self._lock:
            matched = [
                doc
                for doc in self._collections.get(collection, {}).values()
                if all(_matches(doc, condition) for condition in conditions)
            ]
            if order_by:
                present = [doc for doc in matched if doc.get(order_by) is not None]
                absent = [doc for doc in matched if doc.get(order_by) is None]
                present.sort(key=lambda doc: doc[order_by], reverse=direction == "desc")
                matched = present + absent
            end = offset + limit if limit is not None else None
            return copy.deepcopy(matched[offset:end])

    async def close(self) -> None:
        return None


class InMemoryBlobStore:
    """Blob store holding object bytes in a dict."""

    def __init__(self, objects: dict[str, bytes] | None = None):
        self._objects: dict[str, bytes] = dict(objects or {})

    def put(self, path: str, data: bytes) -> None:
        self._objects[path] = data

    async def download(self, path: str) -> bytes:
        try:
            return self._objects[path]
        except KeyError:
            raise NotFound(f"Blob not found: {path}") from None

    async def signed_url(self, path: str, ttl_minutes: int = 15) -> str:
        if path not in self._objects:
            raise NotFound(f"Blob not found: {path}")
        return f"memory://{path}?ttl={ttl_minutes * 60}"

    async def close(self) -> None:
        return None
