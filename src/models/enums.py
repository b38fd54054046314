"""Enums for database models."""
import enum


class AnalysisStatus(str, enum.Enum):
    """Per-photo analysis job status."""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class AnalysisErrorCode(str, enum.Enum):
    """Failure codes stored as the bracketed prefix of an error message."""
    TIMEOUT = "TIMEOUT"
    RATE_LIMIT = "RATE_LIMIT"
    API_ERROR = "API_ERROR"
    IMAGE_ERROR = "IMAGE_ERROR"
    PARSE_ERROR = "PARSE_ERROR"

    @property
    def retryable(self) -> bool:
        return self in RETRYABLE_ERROR_CODES

    @property
    def prefix(self) -> str:
        return f"[{self.value}]"

    @classmethod
    def from_message(cls, message):
        """Parse the leading ``[CODE]`` of an error message."""
        if not message or not message.startswith("["):
            return None
        end = message.find("]")
        if end == -1:
            return None
        try:
            return cls(message[1:end])
        except ValueError:
            return None


RETRYABLE_ERROR_CODES = frozenset({
    AnalysisErrorCode.TIMEOUT,
    AnalysisErrorCode.RATE_LIMIT,
    AnalysisErrorCode.API_ERROR,
})


class AnalysisMode(str, enum.Enum):
    """How a gallery analysis run is started."""
    initial = "initial"
    reanalyze = "reanalyze"
    retry_failed = "retryFailed"


class ResolutionMethod(str, enum.Enum):
    """Strategy that produced a find-person result."""
    cluster = "cluster"
    rekognition = "rekognition"
    role_fallback = "role_fallback"


class SearchMode(str, enum.Enum):
    """Gallery search resolution mode."""
    instant = "instant"
    ai = "ai"
