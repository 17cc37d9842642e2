"""Text processing utilities."""

import re

_FENCE = re.compile(r"```[ \t]*(?:python|py|python3)?[ \t]*\n(.*?)```", re.DOTALL | re.IGNORECASE)
_OPEN_FENCE = re.compile(r"^```[ \t]*(?:python|py|python3)?[ \t]*\n", re.IGNORECASE)


def extract_code_block(text: str) -> str:
    """
    Strip Markdown fences from an LLM code reply.

    When the reply holds one or more fenced blocks, the largest block wins.
    An unterminated opening fence is dropped. Unfenced text is returned
    trimmed.

    Args:
        text: Raw model reply

    Returns:
        The bare source code
    """
    if not text:
        return ""
    blocks = _FENCE.findall(text)
    if blocks:
        return max(blocks, key=len).strip()
    stripped = text.strip()
    stripped = _OPEN_FENCE.sub("", stripped)
    if stripped.endswith("```"):
        stripped = stripped[:-3]
    return stripped.strip()


def truncate(text: str, limit: int, suffix: str = "...") -> str:
    """Cut ``text`` to at most ``limit`` characters."""
    if len(text) <= limit:
        return text
    return text[: max(0, limit - len(suffix))] + suffix
