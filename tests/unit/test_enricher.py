"""Tests for ContextEnricher and sample loading."""

from unittest.mock import AsyncMock

import pytest

from finsight.config.constants import VisualizationType
from finsight.errors import InternalError, UpstreamError, ValidationError
from finsight.infrastructure.cache import BoundedCache
from finsight.infrastructure.storage.memory import InMemoryBlobStore
from finsight.models.prompt import Principal, PromptSettings
from finsight.services.enrichment.enricher import (
    DATASET_ERROR_NOTE,
    NO_DATASETS_NOTE,
    ContextEnricher,
    build_settings_section,
    build_user_section,
)
from finsight.services.enrichment.sample_data import SampleDataLoader, parse_sample


@pytest.fixture
def loader(settings, blob_store):
    return SampleDataLoader(settings, blob_store, BoundedCache(max_size=10, ttl_seconds=60))


@pytest.fixture
def enricher(settings, seeded_store, loader):
    return ContextEnricher(settings, seeded_store, loader)


# ==========================================
#  Sections
# ==========================================


def test_user_section_omitted_when_empty():
    assert build_user_section(Principal(uid="u")) == ""


def test_user_section_lists_present_fields():
    principal = Principal.model_validate(
        {
            "uid": "u",
            "settings": {"currency": "EUR"},
            "preferences": {"industry": "Retail", "aiContext": {"financialYear": "2024"}},
        }
    )
    section = build_user_section(principal)
    assert section.startswith("USER PREFERENCES:")
    assert "- Currency: EUR" in section
    assert "- Industry: Retail" in section
    assert "- Financial Year: 2024" in section
    assert "Date Format" not in section


def test_settings_section_skips_auto_visualization():
    section = build_settings_section(PromptSettings(visualization_type=VisualizationType.AUTO, language="es"))
    assert "Preferred Visualization" not in section
    assert "- Response Language: es" in section


def test_settings_section_names_preferred_chart():
    section = build_settings_section(PromptSettings(visualization_type=VisualizationType.BAR))
    assert "- Preferred Visualization: bar" in section


# ==========================================
#  enrich()
# ==========================================


async def test_enrich_includes_accessible_dataset_only(enricher, principal):
    """ds1 is shared with the caller's team; ds2 belongs to another team."""
    text = await enricher.enrich("Show monthly revenue", ["ds1", "ds2"], principal)

    assert text.startswith("ORIGINAL REQUEST: Show monthly revenue")
    assert "DATASET: Monthly revenue" in text
    assert "Other team payroll" not in text
    assert "salary" not in text
    assert '"amount": 150' in text
    assert "Examples: Jan, Feb" in text


async def test_enrich_includes_team_context(enricher, principal):
    text = await enricher.enrich("Show monthly revenue", [], principal)
    assert "TEAM CONTEXT:" in text
    assert "- Business: Retail" in text


async def test_enrich_without_datasets_has_no_dataset_section(enricher, principal):
    text = await enricher.enrich("Show monthly revenue", [], principal)
    assert "DATASETS:" not in text
    assert NO_DATASETS_NOTE not in text


async def test_enrich_with_only_inaccessible_datasets(enricher, principal):
    text = await enricher.enrich("Show monthly revenue", ["ds2", "missing"], principal)
    assert NO_DATASETS_NOTE in text


async def test_enrich_ends_with_code_instructions(enricher, principal):
    text = await enricher.enrich("Show monthly revenue", ["ds1"], principal)
    assert "analyze(context)" in text
    assert text.index("DATASETS:") < text.index("analyze(context)")


async def test_team_lookup_failure_degrades(settings, seeded_store, loader, principal):
    seeded_store.get = AsyncMock(side_effect=UpstreamError("down"))
    enricher = ContextEnricher(settings, seeded_store, loader)
    text = await enricher.enrich("Show monthly revenue", ["ds1"], principal)
    assert "TEAM CONTEXT:" not in text
    assert DATASET_ERROR_NOTE in text


@pytest.mark.parametrize(
    "team_context",
    [{"preferences": ["quarterly"]}, "retail", {"preferences": "monthly"}],
)
async def test_malformed_team_record_degrades(enricher, settings, seeded_store, team_context):
    await seeded_store.create(settings.teams_collection, {"context": team_context}, doc_id="team-bad")
    principal = Principal(uid="user-1", team_id="team-bad")

    text = await enricher.enrich("Show monthly revenue", ["ds1"], principal)

    assert "TEAM CONTEXT:" not in text
    assert "DATASET: Monthly revenue" in text


async def test_sample_failure_becomes_error_note(settings, seeded_store, principal):
    broken = SampleDataLoader(settings, InMemoryBlobStore())
    broken.load = AsyncMock(side_effect=RuntimeError("parse failure"))
    enricher = ContextEnricher(settings, seeded_store, broken)
    text = await enricher.enrich("Show monthly revenue", ["ds1"], principal)
    assert "DATASET: Monthly revenue" in text
    assert DATASET_ERROR_NOTE in text


async def test_assembly_failure_raises_context_error(settings, seeded_store, loader, principal, monkeypatch):
    def broken_instructions(modules):
        raise RuntimeError("template broken")

    monkeypatch.setattr("finsight.services.enrichment.enricher.build_code_instructions", broken_instructions)
    enricher = ContextEnricher(settings, seeded_store, loader)
    with pytest.raises(InternalError) as exc:
        await enricher.enrich("Show monthly revenue", [], principal)
    assert exc.value.code == "CONTEXT_ENHANCEMENT_ERROR"


# ==========================================
#  Sample loading
# ==========================================


def test_parse_csv_sample():
    rows = parse_sample(b"month,amount\nJan,100\nFeb,\nMar,300\n", "text/csv", limit=2)
    assert rows == [{"month": "Jan", "amount": 100.0}, {"month": "Feb", "amount": None}]


def test_parse_unsupported_type():
    with pytest.raises(ValidationError) as exc:
        parse_sample(b"{}", "application/json", limit=5)
    assert "Unsupported" in exc.value.message


async def test_loader_prefers_cached_schema_rows(settings, loader):
    dataset = {"id": "d", "schema": {"sampleData": [{"a": i} for i in range(10)]}}
    rows = await loader.load(dataset)
    assert len(rows) == settings.sample_rows_limit


async def test_loader_downloads_and_memoises(settings):
    blobs = InMemoryBlobStore({"files/d.csv": b"a,b\n1,2\n3,4\n"})
    blobs.download = AsyncMock(wraps=blobs.download)
    loader = SampleDataLoader(settings, blobs)
    dataset = {"id": "d", "fileInfo": {"storageUrl": "files/d.csv", "type": "text/csv"}}

    first = await loader.load(dataset)
    second = await loader.load(dataset)

    assert first == [{"a": 1, "b": 2}, {"a": 3, "b": 4}]
    assert second == first
    assert blobs.download.await_count == 1
