"""
Error Classification

This module maps an arbitrary exception to an ErrorKind.

The rules live in one pure function, classify_error(), so they can be unit
tested in isolation and swapped per deployment: the recovery dispatcher takes
the classifier as a constructor argument.

Rules, first match wins:
    429 / "rate limit" / "too many requests"            -> RATE_LIMIT
    401, 403 / "unauthorized" / "forbidden"             -> AUTH_ERROR
    408 / "timeout" / "timed out" / "etimedout"         -> TIMEOUT
    413 / "payload too large" / "entity too large"      -> PAYLOAD_TOO_LARGE
    >= 500 / "internal server error" / "bad gateway"    -> SERVER_ERROR
    "econnreset" / "enotfound" / "network" / DNS text   -> NETWORK_ERROR
    anything else                                       -> UNKNOWN

Message matching is case-insensitive substring matching.
"""

import asyncio
from enum import Enum
from typing import Optional

import httpx


class ErrorKind(str, Enum):
    """Classification of a remote-call failure."""

    RATE_LIMIT = "RATE_LIMIT"
    AUTH_ERROR = "AUTH_ERROR"
    TIMEOUT = "TIMEOUT"
    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    SERVER_ERROR = "SERVER_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    UNKNOWN = "UNKNOWN"


_RATE_LIMIT_TEXT = ("rate limit", "too many requests")
_AUTH_TEXT = ("unauthorized", "forbidden")
_TIMEOUT_TEXT = ("timeout", "timed out", "etimedout")
_PAYLOAD_TEXT = ("payload too large", "entity too large", "too large")
_SERVER_TEXT = ("internal server error", "bad gateway", "service unavailable")
_NETWORK_TEXT = (
    "econnreset",
    "econnrefused",
    "enotfound",
    "network",
    "connection reset",
    "connection refused",
    "name or service not known",
    "temporary failure in name resolution",
    "nodename nor servname",
    "dns",
)


def extract_status_code(error: BaseException) -> Optional[int]:
    """
    Find an HTTP status code on an error, if it carries one.

    Looks at ``status_code`` then ``status`` attributes, then at the response
    of an httpx.HTTPStatusError.
    """
    for attribute in ("status_code", "status"):
        value = getattr(error, attribute, None)
        if isinstance(value, int):
            return value

    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code

    return None


def classify_error(error: BaseException) -> ErrorKind:
    """
    Classify an error into an ErrorKind.

    Args:
        error: Any exception raised by a remote operation

    Returns:
        The matching ErrorKind (UNKNOWN when nothing matches)
    """
    message = str(error).lower()
    status = extract_status_code(error)

    if status == 429 or _contains(message, _RATE_LIMIT_TEXT):
        return ErrorKind.RATE_LIMIT

    if status in (401, 403) or _contains(message, _AUTH_TEXT):
        return ErrorKind.AUTH_ERROR

    if (
        status == 408
        or isinstance(error, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException))
        or _contains(message, _TIMEOUT_TEXT)
    ):
        return ErrorKind.TIMEOUT

    if status == 413 or _contains(message, _PAYLOAD_TEXT):
        return ErrorKind.PAYLOAD_TOO_LARGE

    if (status is not None and status >= 500) or _contains(message, _SERVER_TEXT):
        return ErrorKind.SERVER_ERROR

    if isinstance(error, (ConnectionError, httpx.NetworkError)) or _contains(
        message, _NETWORK_TEXT
    ):
        return ErrorKind.NETWORK_ERROR

    return ErrorKind.UNKNOWN


def _contains(message: str, needles: tuple[str, ...]) -> bool:
    return any(needle in message for needle in needles)
