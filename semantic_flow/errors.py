"""Error taxonomy for the AI synchronization core.

Every connector failure is expressed as one of these exceptions internally and
converted into a ``GenerationResult(success=False, error=...)`` before it
leaves a connector. Only ``ConnectorContractError`` is allowed to escape, and
only at registry/load time.
"""

from __future__ import annotations

# Bound on provider-supplied error text surfaced to the editor.
MAX_ERROR_CHARS: int = 500

# Bound on the raw-content preview attached to a ParseError.
PREVIEW_CHARS: int = 200


class SemanticFlowError(Exception):
    """Base class for all semantic_flow errors."""


class ConfigurationError(SemanticFlowError):
    """Required connector configuration is missing.

    errors: one entry per missing field, never short-circuited.
    """

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = errors


class ConnectorContractError(SemanticFlowError):
    """A connector class does not implement the full connector contract."""


class TransportError(SemanticFlowError):
    """The request was sent but no response came back."""

    def __init__(self, message: str = "No response from server - check network connection") -> None:
        super().__init__(message)


class ProviderError(SemanticFlowError):
    """The provider answered with a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        if len(message) > MAX_ERROR_CHARS:
            message = message[:MAX_ERROR_CHARS]
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(ProviderError):
    """HTTP 429. retry_after is the server hint in seconds, when one was sent."""

    def __init__(
        self,
        message: str = "Rate limited",
        status_code: int | None = 429,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status_code)
        self.retry_after = retry_after


class RetryExhaustedError(RateLimitError):
    """Raised once the retry ceiling is reached while still rate limited."""

    def __init__(self, attempts: int) -> None:
        super().__init__("Maximum retry attempts reached due to rate limiting")
        self.attempts = attempts


class ParseError(SemanticFlowError):
    """Model output was not valid JSON once unwrapped."""

    def __init__(self, content: str) -> None:
        self.preview = (content or "")[:PREVIEW_CHARS]
        super().__init__(f"AI returned invalid JSON. Response preview: {self.preview}")


class SemanticValidationError(SemanticFlowError):
    """JSON parsed but required fields are missing or empty."""
