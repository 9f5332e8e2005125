"""Errors raised while collecting DNSKEY measurements.

Every one of them is fatal to the current collection pass: the driver
reports it once through the sink and stops querying further domains.
"""
from __future__ import annotations

from typing import Optional

import dns.rcode


class DNSKeyError(Exception):
    """Base class for collection pass failures."""


class ConfigSourceUnavailable(DNSKeyError):
    """The system resolver configuration could not be read."""

    def __init__(self, path: str, reason: Optional[str] = None) -> None:
        self.path = path
        self.reason = reason
        message = f"Could not read {path}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class QueryTimeout(DNSKeyError):
    """No response arrived within the configured timeout."""

    def __init__(self, domain: str, server: str, elapsed_ms: float) -> None:
        self.domain = domain
        self.server = server
        self.elapsed_ms = elapsed_ms
        super().__init__(
            f"Query timeout after {elapsed_ms:.1f} ms querying {server} for {domain}"
        )


class TransportError(DNSKeyError):
    """Network-level failure; the underlying exception is chained as __cause__."""

    def __init__(self, domain: str, server: str, reason: str) -> None:
        self.domain = domain
        self.server = server
        super().__init__(f"Transport error querying {server} for {domain}: {reason}")


class QueryFailed(DNSKeyError):
    """The server answered with a non-success response code."""

    def __init__(self, code: int, server: str = "", domain: str = "") -> None:
        self.code = code
        self.server = server
        self.domain = domain
        super().__init__(
            f"Query failed! Rcode {dns.rcode.to_text(code)} ({code}) querying {server} for {domain}"
        )
