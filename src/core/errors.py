"""Domain exceptions raised by the webhook reconciliation pipeline.

Routes translate these into the API error types defined in
``src.api.middleware.error_handler``; services never build HTTP responses.
"""


class ReconciliationError(Exception):
    """Base class for reconciliation pipeline errors."""


class SignatureInvalidError(ReconciliationError):
    """Webhook signature is missing or does not match the shared secret."""


class MalformedPayloadError(ReconciliationError):
    """Webhook body cannot be parsed into a canonical event."""


class UpstreamFetchError(ReconciliationError):
    """The POS platform could not be reached or returned a server error."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class StoreWriteConflictError(ReconciliationError):
    """A unique constraint rejected a write; the row was created concurrently."""


class NotifierError(ReconciliationError):
    """A notification could not be delivered."""
