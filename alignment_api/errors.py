"""Exception taxonomy for the curriculum analysis pipeline."""

from typing import Optional


class AlignmentError(Exception):
    """Base class for all pipeline errors."""


# Extraction -----------------------------------------------------------------

class ExtractionError(AlignmentError):
    """Text could not be extracted from a stored document."""


class UnsupportedTypeError(ExtractionError):
    def __init__(self, media_type: str):
        self.media_type = media_type
        super().__init__(f"Unsupported media type: {media_type or '(none)'}")


class MalformedDocumentError(ExtractionError):
    def __init__(self, media_type: str, message: str):
        self.media_type = media_type
        super().__init__(f"Could not decode {media_type} document: {message}")


# Generation service ---------------------------------------------------------

class GenerationServiceError(AlignmentError):
    """Typed failure raised by a GenerationClient provider."""

    retryable = False


class GenerationUnauthorized(GenerationServiceError):
    pass


class GenerationQuotaExceeded(GenerationServiceError):
    retryable = True


class GenerationModelUnavailable(GenerationServiceError):
    retryable = True


class GenerationModelNotFound(GenerationModelUnavailable):
    """The configured model does not exist or does not support generation."""

    retryable = False


# Structured completion ------------------------------------------------------

class CompletionError(AlignmentError):
    pass


class GenerationUnavailable(CompletionError):
    """The generation service is not configured or refused the request."""


class InvalidOutput(CompletionError):
    """No attempt produced a parsable JSON object."""

    def __init__(self, message: str, raw_response: Optional[str] = None, attempts: int = 0):
        super().__init__(message)
        self.raw_response = raw_response
        self.attempts = attempts


class EvaluationError(AlignmentError):
    """A benchmark aspect could not be evaluated."""

    def __init__(self, aspect: str, message: str):
        self.aspect = aspect
        super().__init__(f"{aspect}: {message}")


# Gateways -------------------------------------------------------------------

class StorageFetchError(AlignmentError):
    def __init__(self, address: str, message: str, status_code: Optional[int] = None):
        self.address = address
        self.status_code = status_code
        detail = f"{message} (status {status_code})" if status_code else message
        super().__init__(detail)


class PersistenceError(AlignmentError):
    pass


class PollingError(AlignmentError):
    pass


class RunSuperseded(AlignmentError):
    """A newer trigger replaced this run; it must not write its result."""


class ChatRequestError(AlignmentError):
    """An advisor chat request carried an empty message or an unusable history."""
