"""
Analysis error taxonomy.

Every failure that reaches the orchestrator from an external collaborator
is reduced to one ``AnalysisErrorCode`` and stored as a ``[CODE] message``
prefix on the photo's analysis record. Store errors are deliberately not
part of this taxonomy.
"""

import json
import socket
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Optional

from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    ReadTimeoutError,
    EndpointConnectionError,
    BotoCoreError,
)
from google.api_core import exceptions as google_exceptions

from src.models.enums import AnalysisErrorCode


THROTTLING_ERROR_CODES = frozenset({
    "ThrottlingException",
    "ProvisionedThroughputExceededException",
    "LimitExceededException",
    "TooManyRequestsException",
    "SlowDown",
})

IMAGE_ERROR_CODES = frozenset({
    "InvalidImageFormatException",
    "ImageTooLargeException",
    "NoSuchKey",
    "404",
})


class AnalysisError(Exception):
    """Failure carrying a classified error code."""

    def __init__(self, message: str, code: AnalysisErrorCode, original: Optional[BaseException] = None):
        super().__init__(message)
        self.code = AnalysisErrorCode(code)
        self.original = original

    @property
    def retryable(self) -> bool:
        return self.code.retryable

    def to_message(self) -> str:
        return format_error_message(self.code, str(self))


def format_error_message(code: AnalysisErrorCode, message: str) -> str:
    """Render ``[CODE] message`` as stored on ``PhotoAnalysis.error_message``."""
    message = (message or "").strip() or "Unknown error"
    if AnalysisErrorCode.from_message(message) is not None:
        return message
    return f"{AnalysisErrorCode(code).prefix} {message}"


def classify_exception(exc: BaseException) -> AnalysisErrorCode:
    """Map a collaborator exception onto the analysis error taxonomy."""
    if isinstance(exc, AnalysisError):
        return exc.code

    if isinstance(exc, (ConnectTimeoutError, ReadTimeoutError, FutureTimeoutError, TimeoutError, socket.timeout)):
        return AnalysisErrorCode.TIMEOUT

    if isinstance(exc, ClientError):
        error_code = exc.response.get("Error", {}).get("Code", "")
        if error_code in THROTTLING_ERROR_CODES:
            return AnalysisErrorCode.RATE_LIMIT
        if error_code in IMAGE_ERROR_CODES:
            return AnalysisErrorCode.IMAGE_ERROR
        return AnalysisErrorCode.API_ERROR

    if isinstance(exc, (EndpointConnectionError, BotoCoreError)):
        return AnalysisErrorCode.API_ERROR

    if isinstance(exc, google_exceptions.DeadlineExceeded):
        return AnalysisErrorCode.TIMEOUT
    if isinstance(exc, (google_exceptions.ResourceExhausted, google_exceptions.TooManyRequests)):
        return AnalysisErrorCode.RATE_LIMIT
    if isinstance(exc, google_exceptions.GoogleAPIError):
        return AnalysisErrorCode.API_ERROR

    if isinstance(exc, json.JSONDecodeError):
        return AnalysisErrorCode.PARSE_ERROR

    # Untyped socket and connection errors only carry their cause in the text
    if isinstance(exc, OSError):
        message = str(exc).lower()
        if "timed out" in message or "timeout" in message:
            return AnalysisErrorCode.TIMEOUT
        if "throttl" in message or "rate limit" in message or "429" in message:
            return AnalysisErrorCode.RATE_LIMIT

    return AnalysisErrorCode.API_ERROR


def to_analysis_error(exc: BaseException) -> AnalysisError:
    """Wrap any collaborator exception as an ``AnalysisError``."""
    if isinstance(exc, AnalysisError):
        return exc
    return AnalysisError(str(exc) or exc.__class__.__name__, classify_exception(exc), original=exc)
