"""
Error taxonomy and retry policy for Contract RAG.

Every failure the pipeline surfaces is a RAGError subclass:

    RAGError
        ServiceError                collaborator call failed
            TransientServiceError   retried with backoff, then surfaced
            PersistentServiceError  credentials/quota/model; never retried
        ValidationError             bad input; never retried
        CheckpointError             post-write verification mismatch
        IndexingError               any other unrecoverable insert failure

EmbeddingError and CompletionError are mix-ins naming the collaborator, so
callers can catch "any embedding failure" or "any persistent failure".
"""

import asyncio
import enum
import logging
from typing import Any, Awaitable, Callable, Optional

import openai

logger = logging.getLogger(__name__)


class RAGError(Exception):
    """Base class for every error raised by the pipeline."""


class ServiceError(RAGError):
    """An external collaborator (embedding, completion, classification) failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientServiceError(ServiceError):
    """Network reset, timeout, rate limit or 5xx - worth retrying."""


class PersistentServiceError(ServiceError):
    """Invalid credentials, exhausted quota or unknown model - retrying is futile."""


class EmbeddingError(ServiceError):
    """Marker for failures of the embedding collaborator."""


class CompletionError(ServiceError):
    """Marker for failures of the completion collaborator."""


class TransientEmbeddingError(EmbeddingError, TransientServiceError):
    pass


class PersistentEmbeddingError(EmbeddingError, PersistentServiceError):
    pass


class TransientCompletionError(CompletionError, TransientServiceError):
    pass


class PersistentCompletionError(CompletionError, PersistentServiceError):
    pass


class ValidationError(RAGError):
    """Malformed input, unsupported file type or empty extracted text."""


class CheckpointError(RAGError):
    """
    A persisted checkpoint did not read back as written.

    Attributes:
        document_id: Document whose insert was aborted
        processed_count: Chunks covered by the last verified checkpoint
    """

    def __init__(self, message: str, document_id: str, processed_count: int):
        super().__init__(
            f"Processing failed at checkpoint ({processed_count} chunks verified): {message}"
        )
        self.document_id = document_id
        self.processed_count = processed_count


class IndexingError(RAGError):
    """An insert failed for a reason other than checkpoint verification."""

    def __init__(self, message: str, document_id: str, processed_count: int = 0):
        super().__init__(message)
        self.document_id = document_id
        self.processed_count = processed_count


class ErrorKind(enum.Enum):
    TRANSIENT = "transient"
    PERSISTENT = "persistent"
    UNKNOWN = "unknown"


PERSISTENT_STATUS_CODES = frozenset({401, 403, 404})
TRANSIENT_STATUS_CODES = frozenset({408, 409, 429})

_PERSISTENT_MARKERS = (
    "invalid api key", "incorrect api key", "invalid_api_key", "unauthorized",
    "insufficient_quota", "quota", "billing", "permission", "model_not_found",
    "does not exist",
)
_TRANSIENT_MARKERS = (
    "timeout", "timed out", "connection reset", "connection aborted",
    "connection error", "temporarily unavailable", "rate limit", "overloaded",
    "service unavailable", "bad gateway",
)


def _status_code(exc: BaseException) -> Optional[int]:
    code = getattr(exc, "status_code", None)
    if code is None:
        response = getattr(exc, "response", None)
        code = getattr(response, "status_code", None)
    try:
        return int(code) if code is not None else None
    except (TypeError, ValueError):
        return None


def classify_error(exc: BaseException) -> ErrorKind:
    """
    Decide whether a collaborator failure is worth retrying.

    Checks, in order: our own taxonomy, the OpenAI SDK exception classes,
    HTTP status codes carried on the exception, socket/timeout builtins, and
    finally well-known phrases in the message. Quota exhaustion arrives as a
    429 but is persistent, so the message check runs before the status check
    for rate limits.
    """
    if isinstance(exc, PersistentServiceError):
        return ErrorKind.PERSISTENT
    if isinstance(exc, TransientServiceError):
        return ErrorKind.TRANSIENT

    message = str(exc).lower()
    code = getattr(exc, "code", None)
    if isinstance(code, str) and code.lower() in ("insufficient_quota", "invalid_api_key", "model_not_found"):
        return ErrorKind.PERSISTENT

    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError, openai.NotFoundError)):
        return ErrorKind.PERSISTENT
    if isinstance(exc, openai.RateLimitError):
        if "quota" in message or "billing" in message:
            return ErrorKind.PERSISTENT
        return ErrorKind.TRANSIENT
    if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError, openai.InternalServerError)):
        return ErrorKind.TRANSIENT

    status = _status_code(exc)
    if status is not None:
        if status in PERSISTENT_STATUS_CODES:
            return ErrorKind.PERSISTENT
        if status == 429 and ("quota" in message or "billing" in message):
            return ErrorKind.PERSISTENT
        if status in TRANSIENT_STATUS_CODES or status >= 500:
            return ErrorKind.TRANSIENT

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return ErrorKind.TRANSIENT

    if any(marker in message for marker in _PERSISTENT_MARKERS):
        return ErrorKind.PERSISTENT
    if any(marker in message for marker in _TRANSIENT_MARKERS):
        return ErrorKind.TRANSIENT

    return ErrorKind.UNKNOWN


async def call_with_retry(
    operation: Callable[[], Awaitable[Any]],
    *,
    label: str,
    max_retries: int = 3,
    base_delay: float = 1.0,
    transient_error: type = TransientServiceError,
    persistent_error: type = PersistentServiceError,
    on_persistent: Optional[Callable[[], None]] = None,
) -> Any:
    """
    Run an async collaborator call under the retry policy.

    Transient failures are retried up to ``max_retries`` times, sleeping
    ``base_delay * (attempt + 1)`` seconds between attempts. Persistent
    failures call ``on_persistent`` (typically dropping the cached client)
    and raise immediately. Unclassified failures are surfaced as persistent
    without a retry, so a malformed request is never hammered.

    Args:
        operation: Zero-argument coroutine factory performing one attempt
        label: Name used in log messages
        max_retries: Retry ceiling for transient failures
        base_delay: Seconds multiplied by (attempt + 1) between attempts
        transient_error: Exception class raised once retries are exhausted
        persistent_error: Exception class raised for persistent failures
        on_persistent: Hook run before raising a persistent failure

    Returns:
        Whatever ``operation`` returns.
    """
    for attempt in range(max_retries + 1):
        try:
            return await operation()
        except RAGError as e:
            if isinstance(e, (ValidationError, CheckpointError)):
                raise
            kind = classify_error(e)
            if kind is ErrorKind.TRANSIENT and attempt < max_retries:
                delay = base_delay * (attempt + 1)
                logger.warning(f"{label}: transient failure (attempt {attempt + 1}), retrying in {delay:.1f}s: {e}")
                await asyncio.sleep(delay)
                continue
            if kind is ErrorKind.PERSISTENT and on_persistent:
                on_persistent()
            raise
        except Exception as e:
            kind = classify_error(e)
            status = _status_code(e)

            if kind is ErrorKind.TRANSIENT:
                if attempt < max_retries:
                    delay = base_delay * (attempt + 1)
                    logger.warning(
                        f"{label}: transient failure (attempt {attempt + 1}/{max_retries + 1}), "
                        f"retrying in {delay:.1f}s: {e}"
                    )
                    await asyncio.sleep(delay)
                    continue
                logger.error(f"{label}: giving up after {attempt + 1} attempts: {e}")
                raise transient_error(f"{label} failed after {attempt + 1} attempts: {e}", status) from e

            if kind is ErrorKind.PERSISTENT:
                logger.error(f"{label}: persistent failure, not retrying: {e}")
            else:
                logger.error(f"{label}: unclassified failure, not retrying: {e}")
            if on_persistent:
                on_persistent()
            raise persistent_error(f"{label} failed: {e}", status) from e
