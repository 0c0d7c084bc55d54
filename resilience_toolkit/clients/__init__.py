"""HTTP clients."""

from resilience_toolkit.clients.http import ResilientHTTPClient, create_http_client

__all__ = ["ResilientHTTPClient", "create_http_client"]
