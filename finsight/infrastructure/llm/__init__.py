"""LLM infrastructure module."""

from finsight.infrastructure.llm.claude_client import LLMClient

__all__ = [
    "LLMClient",
]
