"""Error definitions for the r2drop storage client."""


class R2DropError(Exception):
    """Base error for every failure surfaced by the storage client.

    Attributes:
        code: Short machine-readable error code (e.g. "TransportError").
        message: Human-readable error description.
        retryable: Whether the retry policy may attempt the operation again.
    """

    retryable: bool = True

    def __init__(self, code: str, message: str, retryable: bool | None = None) -> None:
        """Initialize the error.

        Args:
            code: Error code.
            message: Error description.
            retryable: Override the class-level retryable flag.
        """
        super().__init__(message)
        self.code = code
        self.message = message
        if retryable is not None:
            self.retryable = retryable


# -- Fatal environment / configuration errors ---------------------------------


class CryptoUnavailable(R2DropError):
    """The interpreter does not expose a usable SHA-256 implementation."""

    retryable = False

    def __init__(
        self,
        message: str = "SHA-256 is not available in this Python build; requests cannot be signed.",
    ) -> None:
        super().__init__(code="CryptoUnavailable", message=message)


class ConfigMissing(R2DropError):
    """No storage credentials could be resolved."""

    retryable = False

    def __init__(
        self,
        message: str = "Storage configuration not found. Please configure your R2 settings.",
    ) -> None:
        super().__init__(code="ConfigMissing", message=message)


class InvalidPresignRequest(R2DropError):
    """A presigned URL was requested with invalid parameters."""

    retryable = False

    def __init__(self, message: str = "Invalid presigned URL request.") -> None:
        super().__init__(code="InvalidPresignRequest", message=message)


# -- Transport errors ----------------------------------------------------------


class TransportError(R2DropError):
    """A request failed on the wire or returned a non-2xx status.

    Attributes:
        status: The HTTP status code, or 0 when no response was received.
        error_code: The S3 error code from the response body, if any.
    """

    def __init__(self, status: int, message: str, error_code: str = "") -> None:
        super().__init__(code="TransportError", message=message)
        self.status = status
        self.error_code = error_code


# -- Multipart lifecycle errors ------------------------------------------------


class InitiationError(R2DropError):
    """The store did not return an upload id for a new multipart upload."""

    def __init__(self, message: str = "Failed to get UploadId from response") -> None:
        super().__init__(code="InitiationError", message=message)


class PartUploadError(R2DropError):
    """A multipart part could not be uploaded within the retry budget.

    Attributes:
        part_number: The 1-based number of the failing part.
    """

    def __init__(self, part_number: int, message: str = "") -> None:
        super().__init__(
            code="PartUploadError",
            message=message or f"Part {part_number} failed to upload",
        )
        self.part_number = part_number


class CompletionError(R2DropError):
    """The store rejected the CompleteMultipartUpload request."""

    def __init__(self, message: str = "Failed to complete multipart upload") -> None:
        super().__init__(code="CompletionError", message=message)
