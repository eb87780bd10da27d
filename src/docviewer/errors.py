"""Exception hierarchy and failure classification."""

from __future__ import annotations

import asyncio
from typing import Optional

import aiohttp

from docviewer.models import ErrorKind, ErrorRecord

TEMPLATE_KEYS: dict[ErrorKind, str] = {
    ErrorKind.VALIDATION: "error.validation",
    ErrorKind.NETWORK: "error.network",
    ErrorKind.TIMEOUT: "error.timeout",
    ErrorKind.NOT_FOUND: "error.not_found",
    ErrorKind.PARSE: "error.parse",
    ErrorKind.CANCELLED: "error.cancelled",
}

RETRYABLE_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.TIMEOUT})

MESSAGES: dict[str, str] = {
    "error.validation": "The viewer configuration is invalid.",
    "error.network": (
        "Unable to load content due to a network error. "
        "Please check your connection and try again."
    ),
    "error.timeout": "Loading the document took too long. Please try again.",
    "error.not_found": "The requested document could not be found.",
    "error.parse": (
        "Unable to read the document content. "
        "The document may contain invalid data."
    ),
    "error.cancelled": "Loading was cancelled.",
}


class DocViewerError(Exception):
    """Base class for all docviewer failures."""

    kind: ErrorKind = ErrorKind.NETWORK

    def __init__(self, message: str, *, document_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.document_id = document_id


class ConfigValidationError(DocViewerError):
    kind = ErrorKind.VALIDATION

    def __init__(self, issues: list) -> None:
        self.issues = list(issues)
        summary = "; ".join(str(issue) for issue in self.issues)
        super().__init__(f"Invalid configuration: {summary}")


class NetworkError(DocViewerError):
    kind = ErrorKind.NETWORK

    def __init__(
        self,
        message: str,
        *,
        document_id: Optional[str] = None,
        status: Optional[int] = None,
    ) -> None:
        super().__init__(message, document_id=document_id)
        self.status = status


class FetchTimeoutError(DocViewerError):
    kind = ErrorKind.TIMEOUT


class NotFoundError(DocViewerError):
    kind = ErrorKind.NOT_FOUND


class ParseError(DocViewerError):
    kind = ErrorKind.PARSE


class SourceResolutionError(DocViewerError):
    """The configured source could not be turned into a document list."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, *, kind: Optional[ErrorKind] = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class LoadCancelledError(DocViewerError):
    """Internal signal: a load was cut short by engine shutdown."""

    kind = ErrorKind.CANCELLED


def _kind_for(failure: BaseException) -> ErrorKind:
    if isinstance(failure, DocViewerError):
        return failure.kind
    if isinstance(failure, asyncio.CancelledError):
        return ErrorKind.CANCELLED
    # asyncio.TimeoutError is the builtin TimeoutError on 3.11+, keep both.
    if isinstance(failure, (asyncio.TimeoutError, TimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(failure, (FileNotFoundError, IsADirectoryError, PermissionError)):
        return ErrorKind.NOT_FOUND
    if isinstance(failure, aiohttp.ClientResponseError):
        if failure.status in (401, 403, 404, 410):
            return ErrorKind.NOT_FOUND
        return ErrorKind.NETWORK
    if isinstance(failure, (aiohttp.ClientError, ConnectionError, OSError)):
        return ErrorKind.NETWORK
    if isinstance(failure, (UnicodeError, ValueError)):
        return ErrorKind.PARSE
    return ErrorKind.NETWORK


def classify(failure: BaseException, *, document_id: Optional[str] = None) -> ErrorRecord:
    """Map any raised failure onto the closed ErrorRecord taxonomy."""
    kind = _kind_for(failure)
    if document_id is None and isinstance(failure, DocViewerError):
        document_id = failure.document_id
    detail = str(failure) or failure.__class__.__name__
    return ErrorRecord(
        kind=kind,
        template_key=TEMPLATE_KEYS[kind],
        retryable=kind in RETRYABLE_KINDS,
        document_id=document_id,
        detail=detail,
    )


def render_message(record: ErrorRecord) -> str:
    """User-facing text for an ErrorRecord; reads only taxonomy fields."""
    message = MESSAGES[record.template_key]
    if record.retryable:
        message += " You can retry loading this document."
    return message
