"""Error types raised by the transfer engine."""


class CloudError(Exception):
    """Base class for all cloud store failures."""


class AuthorizationError(CloudError):
    """The signing authority rejected our credentials."""

    def __init__(self, message: str = "Login to cloud store failed, check your credentials") -> None:
        super().__init__(message)


class UnsupportedTypeError(CloudError):
    """The file suffix is not one we are allowed to upload."""


class TransferError(CloudError):
    """A non-success response from the gateway or the object store.

    Carries the HTTP status (None for connection-level failures) and the
    response body so callers can log them.
    """

    def __init__(self, message: str, status: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class QuotaError(TransferError):
    """The gateway refused to sign an upload, typically because the bucket is full."""


class PartCountMismatchError(TransferError):
    """The gateway returned a different number of part URLs than our part size implies."""


class ClockMissingError(TransferError):
    """The bucket has no logical clock yet."""


class InitializationError(CloudError):
    """The logical clock could not be bootstrapped."""
