"""Document and blob storage."""

from finsight.infrastructure.storage.blob_client import BlobStore, GCSBlobStore
from finsight.infrastructure.storage.document_store import (
    DocumentStore,
    QueryCondition,
    SQLDocumentStore,
)
from finsight.infrastructure.storage.memory import InMemoryBlobStore, InMemoryDocumentStore

__all__ = [
    "BlobStore",
    "DocumentStore",
    "GCSBlobStore",
    "InMemoryBlobStore",
    "InMemoryDocumentStore",
    "QueryCondition",
    "SQLDocumentStore",
]
