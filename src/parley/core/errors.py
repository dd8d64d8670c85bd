"""Error taxonomy shared by the delivery engine and its transports."""

from __future__ import annotations


class DeliveryError(RuntimeError):
    """Base exception for failures surfaced to the caller of a core operation.

    Every subclass carries a stable ``code`` that transports echo back to
    clients (as an HTTP status or a ``message-error`` event).
    """

    code = "delivery_error"

    def __init__(self, message: str, *, client_token: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.client_token = client_token


class ValidationError(DeliveryError):
    """Malformed or incomplete send/delete request. No partial effect."""

    code = "validation_error"


class NotFoundError(DeliveryError):
    """Sender, recipient, group or message could not be resolved."""

    code = "not_found"


class PermissionDeniedError(DeliveryError):
    """Requester is not allowed to perform the operation."""

    code = "permission_denied"


class TransientStoreError(DeliveryError):
    """A durable-store operation failed; the caller may retry."""

    code = "store_unavailable"
