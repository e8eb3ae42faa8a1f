"""Error taxonomy and classification for extraction work."""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Optional

import httpx
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from hotel_rates.mappers import PackageDecompositionUnavailable
from hotel_rates.validation import RecordValidationError


class ErrorClass(str, Enum):
    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    STRUCTURAL = "structural"
    AUTHENTICATION = "authentication"
    VALIDATION = "validation"


RETRYABLE_CLASSES = frozenset({ErrorClass.TRANSIENT, ErrorClass.RATE_LIMITED})


class ExtractionError(Exception):
    """Base class for failures raised by extractor adapters and sinks."""

    error_class = ErrorClass.STRUCTURAL


class TransientError(ExtractionError):
    error_class = ErrorClass.TRANSIENT


class RateLimitedError(ExtractionError):
    error_class = ErrorClass.RATE_LIMITED

    def __init__(self, message: str = "rate limited", retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class StructuralError(ExtractionError):
    error_class = ErrorClass.STRUCTURAL


class AuthenticationError(ExtractionError):
    error_class = ErrorClass.AUTHENTICATION


class SinkDeliveryError(TransientError):
    """The ingest sink could not accept a batch."""


class DuplicateActiveSession(Exception):
    def __init__(self, fingerprint: str, session_id: str) -> None:
        super().__init__(f"Session {session_id} is already active for this trip/site/search")
        self.fingerprint = fingerprint
        self.session_id = session_id


class SessionNotResumable(Exception):
    def __init__(self, session_id: str, status: str) -> None:
        super().__init__(f"Session {session_id} is {status} and cannot be resumed")
        self.session_id = session_id
        self.status = status


class SessionNotFound(KeyError):
    pass


class InvalidTransition(RuntimeError):
    pass


def classify_exception(exc: BaseException) -> ErrorClass:
    """Map an exception to its retry class.

    Anything not recognised is structural so that site changes are not
    mistaken for flakiness.
    """

    if isinstance(exc, ExtractionError):
        return exc.error_class
    if isinstance(exc, RecordValidationError):
        return ErrorClass.VALIDATION
    if isinstance(exc, (asyncio.TimeoutError, PlaywrightTimeoutError, httpx.TimeoutException, httpx.TransportError)):
        return ErrorClass.TRANSIENT
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status == 429:
            return ErrorClass.RATE_LIMITED
        if status in (401, 403):
            return ErrorClass.AUTHENTICATION
        if status >= 500:
            return ErrorClass.TRANSIENT
    return ErrorClass.STRUCTURAL


def retry_after_hint(exc: BaseException) -> Optional[float]:
    if isinstance(exc, RateLimitedError):
        return exc.retry_after
    if isinstance(exc, httpx.HTTPStatusError):
        header = exc.response.headers.get("retry-after")
        try:
            return float(header) if header else None
        except ValueError:
            return None
    return None


__all__ = [
    "ErrorClass",
    "RETRYABLE_CLASSES",
    "ExtractionError",
    "TransientError",
    "RateLimitedError",
    "StructuralError",
    "AuthenticationError",
    "SinkDeliveryError",
    "RecordValidationError",
    "PackageDecompositionUnavailable",
    "DuplicateActiveSession",
    "SessionNotResumable",
    "SessionNotFound",
    "InvalidTransition",
    "classify_exception",
    "retry_after_hint",
]
