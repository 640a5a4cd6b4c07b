"""Common exceptions for domain, repository and delivery layers."""
from __future__ import annotations


class WebhookEngineError(Exception):
    """Base error for the webhook engine."""


class RepositoryError(WebhookEngineError):
    """Raised when repository operations fail."""


class NotFoundError(RepositoryError):
    """Raised when requested entity is missing."""


class ValidationError(WebhookEngineError):
    """Bad endpoint configuration or admin input. Never retried."""


class InvalidStatusTransitionError(WebhookEngineError):
    """Raised when a delivery attempts an unsupported status change."""


class TransientDeliveryError(WebhookEngineError):
    """Network error, timeout or non-2xx response. Retried per backoff."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        response_snippet: str | None = None,
        retry_after: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_snippet = response_snippet
        self.retry_after = retry_after


class SignatureError(WebhookEngineError):
    """Inbound signature does not match the recomputed HMAC."""


class ReplayError(ValidationError):
    """Inbound timestamp is outside the tolerance window."""
