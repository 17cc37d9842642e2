"""Component wiring.

Everything the API needs is built once from an explicit :class:`Settings`
object and handed around through :class:`Container`; nothing is created at
import time.
"""

import logging
from dataclasses import dataclass

from finsight.config.settings import Settings
from finsight.infrastructure.auth.identity import FirebaseIdentityVerifier, IdentityVerifier
from finsight.infrastructure.cache import BoundedCache
from finsight.infrastructure.llm import LLMClient
from finsight.infrastructure.storage import (
    BlobStore,
    DocumentStore,
    GCSBlobStore,
    InMemoryBlobStore,
    InMemoryDocumentStore,
    SQLDocumentStore,
)
from finsight.orchestrator.pipeline import PromptPipeline
from finsight.orchestrator.state import PromptRepository
from finsight.orchestrator.task_registry import StageTaskRegistry
from finsight.services.enrichment.enricher import ContextEnricher
from finsight.services.enrichment.sample_data import SampleDataLoader
from finsight.services.prompts.service import PromptService
from finsight.services.sandbox.executor import CodeExecutionSandbox

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    store: DocumentStore
    blob_store: BlobStore
    identity: IdentityVerifier
    llm: LLMClient
    sandbox: CodeExecutionSandbox
    enricher: ContextEnricher
    repository: PromptRepository
    pipeline: PromptPipeline
    registry: StageTaskRegistry
    prompt_service: PromptService

    async def startup(self) -> None:
        await self.store.init()

    async def shutdown(self) -> None:
        """Cancel running stages, then release clients."""
        await self.registry.shutdown()
        for name, resource in (
            ("llm", self.llm),
            ("identity", self.identity),
            ("blob_store", self.blob_store),
            ("store", self.store),
        ):
            close = getattr(resource, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logger.error("Error closing %s: %s", name, e, exc_info=True)


def build_store(settings: Settings) -> DocumentStore:
    if settings.storage_backend == "memory":
        return InMemoryDocumentStore()
    return SQLDocumentStore(settings)


def build_blob_store(settings: Settings) -> BlobStore:
    if settings.blob_backend == "memory":
        return InMemoryBlobStore()
    return GCSBlobStore(settings)


def build_container(
    settings: Settings,
    *,
    store: DocumentStore | None = None,
    blob_store: BlobStore | None = None,
    identity: IdentityVerifier | None = None,
    llm: LLMClient | None = None,
    sandbox: CodeExecutionSandbox | None = None,
) -> Container:
    """Construct every component once. Keyword overrides replace single collaborators."""
    store = store or build_store(settings)
    blob_store = blob_store or build_blob_store(settings)
    identity = identity or FirebaseIdentityVerifier(settings)
    llm = llm or LLMClient(settings)
    sandbox = sandbox or CodeExecutionSandbox(settings)

    sample_loader = SampleDataLoader(
        settings,
        blob_store,
        BoundedCache(max_size=settings.sample_cache_max_size, ttl_seconds=settings.sample_cache_ttl),
    )
    enricher = ContextEnricher(settings, store, sample_loader)
    repository = PromptRepository(store, settings.prompts_collection)
    pipeline = PromptPipeline(settings, store, repository, enricher, llm, sandbox)
    registry = StageTaskRegistry()
    prompt_service = PromptService(settings, repository, pipeline, registry)

    return Container(
        settings=settings,
        store=store,
        blob_store=blob_store,
        identity=identity,
        llm=llm,
        sandbox=sandbox,
        enricher=enricher,
        repository=repository,
        pipeline=pipeline,
        registry=registry,
        prompt_service=prompt_service,
    )
