"""
JSON Parser utility for extracting JSON from LLM responses.
"""
import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_FENCED_ARRAY = re.compile(r"```(?:json)?\s*(\[.*?\])\s*```", re.DOTALL)
_FENCED_OBJECT = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
_BARE_ARRAY = re.compile(r"(\[.*\])", re.DOTALL)
_BARE_OBJECT = re.compile(r"(\{.*\})", re.DOTALL)


def _try_load(candidate: str) -> Any:
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        return None


class JSONParser:
    """Helper class to extract clean JSON from LLM responses."""

    @staticmethod
    def extract_json(text: str) -> dict[str, Any]:
        """Attempts to extract a JSON object from text."""
        parsed = _try_load(text)
        if isinstance(parsed, dict):
            return parsed

        for pattern in (_FENCED_OBJECT, _BARE_OBJECT):
            match = pattern.search(text)
            if match:
                parsed = _try_load(match.group(1))
                if isinstance(parsed, dict):
                    return parsed

        logger.warning("JSONParser: Could not extract JSON object from text, returning empty dict")
        return {}

    @staticmethod
    def extract_json_array(text: str) -> list[Any] | None:
        """Attempts to extract a JSON array from text.

        Returns None when no array can be recovered; an explicit empty
        array in the text yields ``[]``.
        """
        parsed = _try_load(text.strip())
        if isinstance(parsed, list):
            return parsed

        for pattern in (_FENCED_ARRAY, _BARE_ARRAY):
            match = pattern.search(text)
            if match:
                parsed = _try_load(match.group(1))
                if isinstance(parsed, list):
                    return parsed

        logger.warning("JSONParser: Could not extract JSON array from text")
        return None
