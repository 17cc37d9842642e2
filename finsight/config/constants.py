"""
Constants, enums, and static values.
"""

from enum import Enum


class PromptStatus(str, Enum):
    """Lifecycle status of a prompt record."""

    CREATED = "created"  # Persisted, processing not started
    PROCESSING = "processing"  # Enrichment and code generation in flight
    GENERATED = "generated"  # Code generated, waiting for an execute call
    EXECUTING = "executing"  # Sandbox run in flight
    COMPLETED = "completed"  # Results available
    FAILED = "failed"  # Terminal error, see record.error


TERMINAL_STATUSES = frozenset({PromptStatus.COMPLETED, PromptStatus.FAILED})


class PipelineStage(str, Enum):
    """Stage tags recorded on failed prompts."""

    CODE_GENERATION = "code_generation"
    CODE_EXECUTION = "code_execution"


class PipelineStep(str, Enum):
    """Timed pipeline steps used for structured logging."""

    ENRICH = "enrich"
    GENERATE = "generate"
    EXECUTE = "execute"
    SUMMARIZE = "summarize"


class VisualizationType(str, Enum):
    """Visualization hints accepted on prompt submission."""

    AUTO = "auto"
    BAR = "bar"
    LINE = "line"
    PIE = "pie"
    TABLE = "table"
    MIXED = "mixed"


class ErrorCode(str, Enum):
    """Machine-readable error codes exposed to clients."""

    VALIDATION_ERROR = "INVALID_INPUT"
    MISSING_TOKEN = "MISSING_TOKEN"
    INVALID_TOKEN = "INVALID_TOKEN"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_REVOKED = "TOKEN_REVOKED"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    ACCESS_DENIED = "ACCESS_DENIED"
    SUBSCRIPTION_REQUIRED = "SUBSCRIPTION_REQUIRED"
    NOT_FOUND = "NOT_FOUND"
    PROMPT_NOT_FOUND = "PROMPT_NOT_FOUND"
    RESULTS_NOT_AVAILABLE = "RESULTS_NOT_AVAILABLE"
    INVALID_PROMPT_STATE = "INVALID_PROMPT_STATE"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"
    LLM_API_ERROR = "LLM_API_ERROR"
    LLM_EMPTY_RESPONSE = "LLM_EMPTY_RESPONSE"
    STORAGE_ERROR = "STORAGE_ERROR"
    CONTEXT_ENHANCEMENT_ERROR = "CONTEXT_ENHANCEMENT_ERROR"
    CODE_EXECUTION_ERROR = "CODE_EXECUTION_ERROR"
    EXECUTION_TIMEOUT = "EXECUTION_TIMEOUT"
    EXECUTION_RESOURCE_EXCEEDED = "EXECUTION_RESOURCE_EXCEEDED"
    PROCESSING_ERROR = "PROCESSING_ERROR"
    EXECUTION_ERROR = "EXECUTION_ERROR"
    CANCELLED = "CANCELLED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# Execution option bounds (milliseconds / megabytes), as accepted by the API
EXECUTION_TIMEOUT_MIN_MS = 1000
EXECUTION_TIMEOUT_MAX_MS = 60000
EXECUTION_TIMEOUT_DEFAULT_MS = 30000
EXECUTION_MEMORY_MIN_MB = 128
EXECUTION_MEMORY_MAX_MB = 1024
EXECUTION_MEMORY_DEFAULT_MB = 512

PROMPT_MIN_LENGTH = 10
PROMPT_MAX_LENGTH = 1000

INSIGHT_IMPORTANCE_MIN = 1
INSIGHT_IMPORTANCE_MAX = 5
INSIGHT_IMPORTANCE_DEFAULT = 3
