"""
Narrative insight prompts.
"""

import json
from typing import Any


def build_insights_system_prompt(language: str | None = None) -> str:
    """System prompt asking for 3-5 insights as a bare JSON array."""
    language_rule = ""
    if language and language.lower() not in ("en", "english"):
        language_rule = f"Write the title and content in the language with code '{language}'.\n\n"
    return (
        "You are a financial analyst assistant. Based on the data analysis results "
        "and the original question, provide 3-5 key insights about the data. Each "
        "insight should be valuable and directly related to the user's question.\n\n"
        "Format your response as a JSON array of insight objects with:\n"
        "- title: Short title for the insight (max 50 chars)\n"
        "- content: Detailed explanation (max 200 words)\n"
        "- importance: Number from 1 (interesting) to 5 (critical)\n\n"
        f"{language_rule}"
        "Respond ONLY with the JSON array, no other text or explanation."
    )


def build_insights_user_input(results: dict[str, Any], original_prompt: str) -> str:
    """User message carrying the question and the execution results."""
    return (
        f'Original question: "{original_prompt}"\n\n'
        f"Analysis results: {json.dumps(results, ensure_ascii=False, default=str)}"
    )
