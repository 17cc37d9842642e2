"""Pytest configuration and fixtures."""

from typing import Any

import pytest

from finsight.config.settings import Settings
from finsight.infrastructure.auth.identity import VerifiedToken
from finsight.infrastructure.storage.memory import InMemoryBlobStore, InMemoryDocumentStore
from finsight.models.prompt import Principal
from finsight.models.results import Insight

GENERATED_CODE = """
def analyze(context):
    rows = context["datasets"][0]["data"] if context["datasets"] else []
    total = sum(row["amount"] for row in rows)
    return {
        "visualizations": [
            {"type": "bar", "title": "Revenue", "data": rows, "config": {"xAxis": "month"}}
        ],
        "insights": [],
        "total": total,
    }
"""


class FakeLLM:
    """Stands in for LLMClient; records calls."""

    def __init__(self, code: str = GENERATED_CODE, insights: list[Insight] | None = None):
        self.code = code
        self.insights = insights if insights is not None else [
            Insight(title="Revenue grows", content="Revenue rose every month.", importance=4)
        ]
        self.code_error: Exception | None = None
        self.code_calls: list[str] = []
        self.insight_calls: list[dict[str, Any]] = []

    async def generate_code(self, enriched_prompt: str) -> str:
        self.code_calls.append(enriched_prompt)
        if self.code_error is not None:
            raise self.code_error
        return self.code

    async def generate_insights(self, execution_result, original_prompt, language=None):
        self.insight_calls.append(execution_result)
        return list(self.insights)

    async def close(self) -> None:
        return None


class FakeIdentity:
    """Accepts ``token-<uid>`` bearer strings."""

    async def verify_token(self, bearer: str) -> VerifiedToken:
        from finsight.errors import InvalidToken

        if not bearer.startswith("token-"):
            raise InvalidToken("Invalid authentication token")
        uid = bearer[len("token-"):]
        return VerifiedToken(subject_id=uid, email=f"{uid}@example.com", auth_time=2_000_000_000, claims={"sub": uid})

    async def close(self) -> None:
        return None


@pytest.fixture
def settings():
    """Provide settings fixture."""
    return Settings(
        _env_file=None,
        storage_backend="memory",
        blob_backend="memory",
        anthropic_api_key="test-key",
        firebase_project_id="finsight-test",
        require_subscription=True,
        llm_max_retries=0,
        sandbox_timeout=10.0,
    )


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def blob_store():
    return InMemoryBlobStore()


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def fake_identity():
    return FakeIdentity()


@pytest.fixture
def principal():
    return Principal(
        uid="user-1",
        email="user-1@example.com",
        team_id="team-1",
        subscription={"status": "active", "plan": "pro"},
    )


@pytest.fixture
async def seeded_store(store):
    """Users, a team and three datasets: owned, team-shared and foreign."""
    await store.create(
        "users",
        {
            "email": "user-1@example.com",
            "teamId": "team-1",
            "subscription": {"status": "active", "plan": "pro"},
            "settings": {"currency": "EUR"},
        },
        doc_id="user-1",
    )
    await store.create(
        "users",
        {"email": "user-2@example.com", "teamId": "team-2", "subscription": {"status": "canceled"}},
        doc_id="user-2",
    )
    await store.create(
        "teams",
        {"name": "Finance", "context": {"business": "Retail", "industry": "Consumer goods"}},
        doc_id="team-1",
    )
    await store.create(
        "datasets",
        {
            "name": "Monthly revenue",
            "ownerId": "user-1",
            "teamId": "team-1",
            "schema": {
                "columns": [
                    {"name": "month", "type": "string", "examples": ["Jan", "Feb"]},
                    {"name": "amount", "type": "number"},
                ],
                "sampleData": [{"month": "Jan", "amount": 100}, {"month": "Feb", "amount": 150}],
            },
        },
        doc_id="ds1",
    )
    await store.create(
        "datasets",
        {
            "name": "Other team payroll",
            "ownerId": "user-9",
            "teamId": "team-9",
            "schema": {"sampleData": [{"employee": "x", "salary": 1}]},
        },
        doc_id="ds2",
    )
    return store
