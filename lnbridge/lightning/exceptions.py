from typing import Optional


class LightningClientError(Exception):
    """Base class for every failure raised by a lightning backend client."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message: str = message


class BackendConnectionError(LightningClientError):
    """Raised when the backend could not be reached, even after retrying."""

    def __init__(self, url: str, attempts: int, cause: Optional[Exception] = None):
        super().__init__(
            f"Unable to reach lightning backend at {url} after {attempts} attempt(s)"
            + (f": {cause}" if cause is not None else "")
        )
        self.url = url
        self.attempts = attempts


class BackendApiError(LightningClientError):
    """Raised when the backend answered with a non-success status.

    The backend's own error text is kept in `message`, classification
    happens further up.
    """

    def __init__(self, method: str, status: int, message: str) -> None:
        super().__init__(message)
        self.method = method
        self.status = status


class InvoiceNotFoundError(LightningClientError):
    def __init__(self, invoice_id: str) -> None:
        super().__init__(f"Invoice {invoice_id} not found")
        self.invoice_id = invoice_id


class NotSupportedError(LightningClientError, NotImplementedError):
    """Raised when an operation needs a collaborator that was not configured."""
