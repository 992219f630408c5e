"""Custom exception hierarchy for the transcription engine.

All exceptions inherit from TranscriptionError, enabling targeted handling
at component boundaries while preserving specific failure context.
Provider failures carry a machine-readable code and a recoverable flag that
the recording state machine uses to choose between retrying and failing.
"""


class TranscriptionError(Exception):
    """Base exception for all transcription engine errors."""

    def __init__(self, message: str, recording_id: str | None = None) -> None:
        self.recording_id = recording_id
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        if self.recording_id:
            return f"[recording={self.recording_id}] {super().__str__()}"
        return super().__str__()


class ProviderError(TranscriptionError):
    """Raised when a speech-to-text provider call fails."""

    default_code = "provider_error"
    default_recoverable = True

    def __init__(
        self,
        message: str,
        recording_id: str | None = None,
        provider: str | None = None,
        code: str | None = None,
        recoverable: bool | None = None,
        job_id: str | None = None,
    ) -> None:
        self.provider = provider
        self.code = code or self.default_code
        self.recoverable = (
            self.default_recoverable if recoverable is None else recoverable
        )
        self.job_id = job_id
        super().__init__(message, recording_id)


class ProviderUnavailable(ProviderError):
    """Raised on network, authentication or throttling failures."""

    default_code = "provider_unavailable"
    default_recoverable = True


class ProviderRejected(ProviderError):
    """Raised when the provider rejects the input or returns unusable output."""

    default_code = "provider_rejected"
    default_recoverable = False


class JobNotFound(ProviderError):
    """Raised when a provider job id is unknown or has been deleted."""

    default_code = "job_not_found"
    default_recoverable = False


class UnsupportedProviderError(ProviderError):
    """Raised when a provider name is unknown or not configured."""

    default_code = "unsupported_provider"
    default_recoverable = False


class RetryBudgetExhausted(TranscriptionError):
    """Raised when a recording has used all of its retries."""

    code = "retry_budget_exhausted"

    def __init__(
        self,
        message: str,
        recording_id: str | None = None,
        attempts: int = 0,
    ) -> None:
        self.attempts = attempts
        super().__init__(message, recording_id)


class CorrelationMismatch(TranscriptionError):
    """Raised when a webhook callback cannot be matched to a recording."""

    def __init__(
        self,
        message: str,
        recording_id: str | None = None,
        correlation_id: str | None = None,
    ) -> None:
        self.correlation_id = correlation_id
        super().__init__(message, recording_id)


class InvalidWebhookPayload(TranscriptionError):
    """Raised when a webhook callback is missing its id or output."""


class InvalidTransition(TranscriptionError):
    """Raised when a state transition is requested from the wrong state."""

    def __init__(
        self,
        message: str,
        recording_id: str | None = None,
        current_status: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.current_status = current_status
        self.operation = operation
        super().__init__(message, recording_id)


class StorageError(TranscriptionError):
    """Raised when persistence or object storage operations fail."""

    def __init__(
        self,
        message: str,
        recording_id: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.operation = operation
        super().__init__(message, recording_id)


class AudioFetchError(StorageError):
    """Raised when fetching audio from object storage fails."""

    def __init__(
        self, message: str, recording_id: str | None = None, key: str | None = None
    ) -> None:
        self.key = key
        super().__init__(message, recording_id, operation="fetch_object")


class AudioProbeError(TranscriptionError):
    """Raised when ffprobe cannot read an audio file."""

    def __init__(
        self,
        message: str,
        recording_id: str | None = None,
        input_path: str | None = None,
    ) -> None:
        self.input_path = input_path
        super().__init__(message, recording_id)


class SentimentAnalysisError(TranscriptionError):
    """Raised when sentiment analysis fails."""

    def __init__(
        self,
        message: str,
        recording_id: str | None = None,
        detail: str | None = None,
    ) -> None:
        self.detail = detail
        super().__init__(message, recording_id)
