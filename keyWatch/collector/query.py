"""DNSKEY query execution against a single name server."""
from __future__ import annotations

import asyncio
import socket
import time
from dataclasses import dataclass

import dns.asyncbackend
import dns.asyncquery
import dns.exception
import dns.inet
import dns.message
import dns.rdatatype

from keyWatch.collector.errors import QueryTimeout, TransportError
from keyWatch.collector.resolvers import split_host_port
from keyWatch.logging_config import get_logger

logger = get_logger("query")

# DNSKEY answer sets routinely exceed the 512 byte legacy limit
EDNS_PAYLOAD = 4096


@dataclass
class QueryResult:
    response: dns.message.Message
    query_time_ms: float

    @property
    def rcode(self) -> int:
        return self.response.rcode()


def build_query(domain: str) -> dns.message.QueryMessage:
    """DNSKEY query for the absolute form of domain, EDNS0 with the DO bit set."""
    return dns.message.make_query(
        domain,
        dns.rdatatype.DNSKEY,
        use_edns=0,
        payload=EDNS_PAYLOAD,
        want_dnssec=True,
    )


async def _resolve_address(host: str, port: int) -> str:
    if dns.inet.is_address(host):
        return host
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, port, type=socket.SOCK_DGRAM)
    return infos[0][4][0]


async def _exchange(query: dns.message.Message, where: str, port: int, timeout: float) -> dns.message.Message:
    # Connected socket, so an ICMP port unreachable surfaces as ConnectionRefusedError
    backend = dns.asyncbackend.get_default_backend()
    af = dns.inet.af_for_address(where)
    async with await backend.make_socket(af, socket.SOCK_DGRAM, 0, None, (where, port)) as sock:
        return await dns.asyncquery.udp(query, where, timeout=timeout, port=port, sock=sock)


async def execute(domain: str, server: str, timeout: float) -> QueryResult:
    """
    Send one DNSKEY query for domain to server (host:port) and wait at most timeout seconds.

    Raises:
        QueryTimeout: no response within timeout
        TransportError: the exchange failed at the network or message level
    """
    start = time.perf_counter()
    try:
        host, port = split_host_port(server)
        query = build_query(domain)
        where = await asyncio.wait_for(_resolve_address(host, port), timeout=timeout)
        remaining = max(timeout - (time.perf_counter() - start), 0.0)
        response = await _exchange(query, where, port, remaining)
    except (dns.exception.Timeout, asyncio.TimeoutError) as exc:
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.warning(
            "DNSKEY query timed out",
            extra={"domain": domain, "server": server, "duration": round(elapsed_ms, 3), "outcome": "timeout"},
        )
        raise QueryTimeout(domain, server, elapsed_ms) from exc
    except (OSError, ValueError, dns.exception.DNSException) as exc:
        logger.warning(
            f"DNSKEY query failed: {exc}",
            extra={"domain": domain, "server": server, "outcome": "error", "error_type": type(exc).__name__},
        )
        raise TransportError(domain, server, str(exc) or type(exc).__name__) from exc

    query_time_ms = (time.perf_counter() - start) * 1000
    logger.debug(
        "DNSKEY query answered",
        extra={
            "domain": domain,
            "server": server,
            "duration": round(query_time_ms, 3),
            "rcode": response.rcode(),
            "outcome": "success",
        },
    )
    return QueryResult(response=response, query_time_ms=query_time_ms)
