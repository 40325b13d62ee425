"""
Typed errors for the quote reconciliation engine.

Every error carries a machine-readable ``code`` and a ``context`` dict of
identifiers. Context never holds document contents, so errors can be logged
as-is.
"""

from typing import Any, Dict, Optional


class QuoteEngineError(Exception):
    """Base class for all engine errors."""

    code: str = "QUOTE_ENGINE_ERROR"

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "context": self.context}


class ValidationError(QuoteEngineError):
    """Structurally invalid input, rejected before any side effect."""

    code = "VALIDATION_ERROR"


class NotFoundError(QuoteEngineError):
    """Referenced record is absent or outside the caller's organization."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: Any, **context: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}", entity=entity, entity_id=entity_id, **context)


class ConflictError(QuoteEngineError):
    """State conflict: already ordered, duplicate number, finalized session."""

    code = "CONFLICT"


class UpstreamError(QuoteEngineError):
    """Extraction provider unavailable or returned unparseable output."""

    code = "UPSTREAM_ERROR"

    def __init__(self, message: str, provider: Optional[str] = None, **context: Any):
        self.provider = provider
        super().__init__(message, provider=provider, **context)


class TransientError(QuoteEngineError):
    """Provider rate limiting. Retryable by the caller, never retried here."""

    code = "TRANSIENT_ERROR"

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        retry_after: Optional[int] = None,
        **context: Any,
    ):
        self.provider = provider
        self.retry_after = retry_after
        super().__init__(message, provider=provider, retry_after=retry_after, **context)
