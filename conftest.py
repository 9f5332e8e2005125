"""Shared fixtures: a local UDP name server that answers from a handler."""
from __future__ import annotations

import socket
import threading
from typing import Callable, List, Optional, Union

import dns.message
import dns.rcode
import dns.rrset
import pytest

Reply = Optional[Union[bytes, dns.message.Message]]

# flags 257, protocol 3, algorithm 8 and key bytes 0x2c30 give key tag 12345
KSK_RDATA = "257 3 8 LDA="
ZSK_RDATA = "256 3 8 AwEAAQ=="


class FakeNameServer:
    """Answers each UDP query with handler(query); None means stay silent."""

    def __init__(self, handler: Callable[[dns.message.Message], Reply]) -> None:
        self.handler = handler
        self.queries: List[dns.message.Message] = []
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.settimeout(0.05)
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)

    @property
    def address(self) -> str:
        host, port = self.sock.getsockname()
        return f"{host}:{port}"

    def start(self) -> "FakeNameServer":
        self._thread.start()
        return self

    def stop(self) -> None:
        self._stop.set()
        self._thread.join(timeout=1)
        self.sock.close()

    def _serve(self) -> None:
        while not self._stop.is_set():
            try:
                data, peer = self.sock.recvfrom(65535)
            except socket.timeout:
                continue
            except OSError:
                break
            query = dns.message.from_wire(data)
            self.queries.append(query)
            reply = self.handler(query)
            if reply is None:
                continue
            if isinstance(reply, dns.message.Message):
                reply = reply.to_wire()
            self.sock.sendto(reply, peer)


def dnskey_answer(*rdatas: str) -> Callable[[dns.message.Message], dns.message.Message]:
    def handler(query: dns.message.Message) -> dns.message.Message:
        response = dns.message.make_response(query)
        if rdatas:
            response.answer.append(
                dns.rrset.from_text(query.question[0].name, 3600, "IN", "DNSKEY", *rdatas)
            )
        return response
    return handler


def rcode_answer(rcode: int) -> Callable[[dns.message.Message], dns.message.Message]:
    def handler(query: dns.message.Message) -> dns.message.Message:
        response = dns.message.make_response(query)
        response.set_rcode(rcode)
        return response
    return handler


@pytest.fixture
def name_server():
    """Factory fixture: name_server(handler) starts a FakeNameServer, stopped on teardown."""
    servers: List[FakeNameServer] = []

    def _start(handler: Callable[[dns.message.Message], Reply]) -> FakeNameServer:
        server = FakeNameServer(handler).start()
        servers.append(server)
        return server

    yield _start
    for server in servers:
        server.stop()
