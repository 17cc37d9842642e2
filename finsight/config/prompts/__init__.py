"""System prompts for the analysis pipeline."""

from finsight.config.prompts.code_generation import (
    build_code_generation_system_prompt,
    build_code_instructions,
)
from finsight.config.prompts.insights import (
    build_insights_system_prompt,
    build_insights_user_input,
)

__all__ = [
    "build_code_generation_system_prompt",
    "build_code_instructions",
    "build_insights_system_prompt",
    "build_insights_user_input",
]
