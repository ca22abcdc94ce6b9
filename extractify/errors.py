"""Error taxonomy for the extraction worker.

``PreconditionError`` subclasses are fatal and never retried by the queue. Everything
else raised from a job is eligible for queue-level retries.
"""


class ExtractifyError(RuntimeError):
    """Base error for worker failures."""


class PreconditionError(ExtractifyError):
    """Raised when a job cannot succeed no matter how often it is retried."""


class ModelVersionNotFoundError(PreconditionError):
    def __init__(self, model_version_id: str) -> None:
        super().__init__(f"Model version {model_version_id} not found")
        self.model_version_id = model_version_id


class UnsupportedFileTypeError(PreconditionError):
    def __init__(self, file_type: str) -> None:
        super().__init__(f"Unsupported file type: {file_type}")
        self.file_type = file_type


class MissingMediaUriError(PreconditionError):
    """Raised when a remote-only strategy receives a file without a durable location."""


class ConfigurationError(PreconditionError):
    """Raised when a required setting is absent or malformed."""


class StorageError(ExtractifyError):
    """Raised when source files cannot be read from or removed in object storage."""


class TranscriptionError(ExtractifyError):
    """Raised when the remote transcription job fails."""


class TranscriptionTimeoutError(TranscriptionError):
    """Raised when the remote transcription job does not finish in time."""


class LLMExtractionError(ExtractifyError):
    """Raised when AI extraction is misconfigured or the provider response is invalid."""


class SecretDecryptionError(ExtractifyError):
    """Raised when an encrypted integration secret cannot be opened."""


class GoogleOAuthError(ExtractifyError):
    """Raised when a Google access token cannot be resolved."""


class GoogleSheetsApiError(ExtractifyError):
    """Raised for failed Google Sheets API calls, carrying the HTTP status when known."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class HttpTransportError(ExtractifyError):
    """Raised when an outbound HTTP request fails before a response arrives."""
