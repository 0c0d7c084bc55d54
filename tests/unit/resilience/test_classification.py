"""
Tests for error classification rules.
"""

import asyncio

import httpx
import pytest

from resilience_toolkit.core.exceptions import OperationTimeoutError, RemoteCallError
from resilience_toolkit.resilience.classification import (
    ErrorKind,
    classify_error,
    extract_status_code,
)


class StatusError(Exception):
    def __init__(self, status: int, message: str = "request failed") -> None:
        super().__init__(message)
        self.status = status


class TestStatusCodes:
    """Status codes take the same path as messages, first match wins."""

    @pytest.mark.parametrize(
        ("status", "kind"),
        [
            (429, ErrorKind.RATE_LIMIT),
            (401, ErrorKind.AUTH_ERROR),
            (403, ErrorKind.AUTH_ERROR),
            (408, ErrorKind.TIMEOUT),
            (413, ErrorKind.PAYLOAD_TOO_LARGE),
            (500, ErrorKind.SERVER_ERROR),
            (503, ErrorKind.SERVER_ERROR),
            (404, ErrorKind.UNKNOWN),
        ],
    )
    def test_status_code(self, status: int, kind: ErrorKind) -> None:
        assert classify_error(RemoteCallError("failed", status_code=status)) == kind

    def test_status_attribute(self) -> None:
        assert classify_error(StatusError(429)) == ErrorKind.RATE_LIMIT

    def test_httpx_status_error(self) -> None:
        request = httpx.Request("GET", "https://upstream.test/jobs")
        response = httpx.Response(502, request=request)
        error = httpx.HTTPStatusError("failed", request=request, response=response)

        assert extract_status_code(error) == 502
        assert classify_error(error) == ErrorKind.SERVER_ERROR


class TestMessages:
    """Case-insensitive substring matching on the message."""

    @pytest.mark.parametrize(
        ("message", "kind"),
        [
            ("Rate limit exceeded", ErrorKind.RATE_LIMIT),
            ("Too Many Requests", ErrorKind.RATE_LIMIT),
            ("Unauthorized token", ErrorKind.AUTH_ERROR),
            ("request timed out", ErrorKind.TIMEOUT),
            ("connect ETIMEDOUT", ErrorKind.TIMEOUT),
            ("Payload Too Large", ErrorKind.PAYLOAD_TOO_LARGE),
            ("Bad Gateway", ErrorKind.SERVER_ERROR),
            ("read ECONNRESET", ErrorKind.NETWORK_ERROR),
            ("getaddrinfo ENOTFOUND api", ErrorKind.NETWORK_ERROR),
            ("something odd", ErrorKind.UNKNOWN),
        ],
    )
    def test_message(self, message: str, kind: ErrorKind) -> None:
        assert classify_error(Exception(message)) == kind

    def test_status_beats_message(self) -> None:
        """A 429 saying 'timeout' is still a rate limit."""
        error = RemoteCallError("timeout while waiting", status_code=429)
        assert classify_error(error) == ErrorKind.RATE_LIMIT


class TestExceptionTypes:
    def test_timeout_types(self) -> None:
        assert classify_error(asyncio.TimeoutError()) == ErrorKind.TIMEOUT
        assert classify_error(OperationTimeoutError(1.0)) == ErrorKind.TIMEOUT
        assert classify_error(httpx.ReadTimeout("slow")) == ErrorKind.TIMEOUT

    def test_network_types(self) -> None:
        assert classify_error(ConnectionResetError("reset")) == ErrorKind.NETWORK_ERROR
        assert classify_error(httpx.ConnectError("refused")) == ErrorKind.NETWORK_ERROR

    def test_no_status(self) -> None:
        assert extract_status_code(ValueError("x")) is None
