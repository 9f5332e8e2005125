"""End-to-end tests for a DNSKEY collection pass."""
import asyncio
import random

import dns.rcode
import yaml

from conftest import KSK_RDATA, ZSK_RDATA, dnskey_answer, rcode_answer
from keyWatch.collector.config import DNSKeyConfig
from keyWatch.collector.dnskey_collector import gather, run_collector
from keyWatch.collector.errors import ConfigSourceUnavailable, QueryFailed, QueryTimeout, TransportError
from keyWatch.metrics import Accumulator


def _run(cfg, acc, seed=0):
    return asyncio.run(gather(cfg, acc, random.Random(seed)))


def test_single_ksk_is_emitted(name_server):
    server = name_server(dnskey_answer(KSK_RDATA))
    acc = Accumulator()

    emitted = _run(DNSKeyConfig(domains=["."], resolvers=[server.address]), acc)

    assert emitted == 1
    assert acc.errors == []
    assert len(acc.metrics) == 1
    metric = acc.get("dnskey")
    assert metric is not None
    assert metric.tags == {
        "domain": ".",
        "server": server.address,
        "keytag": "12345",
        "algorithm": "RSASHA256",
        "key_type": "KSK",
    }
    assert isinstance(metric.fields["query_time_ms"], float)
    assert metric.fields["query_time_ms"] > 0


def test_every_key_shares_the_query_latency(name_server):
    server = name_server(dnskey_answer(KSK_RDATA, ZSK_RDATA))
    acc = Accumulator()

    _run(DNSKeyConfig(domains=["ietf.org"], resolvers=[server.address]), acc)

    assert sorted(m.tags["key_type"] for m in acc.metrics) == ["KSK", "ZSK"]
    assert len({m.fields["query_time_ms"] for m in acc.metrics}) == 1


def test_domains_are_queried_in_order(name_server):
    server = name_server(dnskey_answer(KSK_RDATA))
    acc = Accumulator()

    _run(DNSKeyConfig(domains=["ietf.org", "icann.org", "."], resolvers=[server.address]), acc)

    asked = [q.question[0].name.to_text() for q in server.queries]
    assert asked == ["ietf.org.", "icann.org.", "."]
    assert [m.tags["domain"] for m in acc.metrics] == ["ietf.org", "icann.org", "."]


def test_failure_status_stops_the_pass(name_server):
    server = name_server(rcode_answer(dns.rcode.SERVFAIL))
    acc = Accumulator()

    emitted = _run(DNSKeyConfig(domains=[".", "ietf.org"], resolvers=[server.address]), acc)

    assert emitted == 0
    assert acc.metrics == []
    assert len(acc.errors) == 1
    assert isinstance(acc.errors[0], QueryFailed)
    assert acc.errors[0].code == dns.rcode.SERVFAIL
    assert len(server.queries) == 1


def test_earlier_domains_stay_emitted(name_server):
    def handler(query):
        if query.question[0].name.to_text() == "broken.example.":
            return rcode_answer(dns.rcode.REFUSED)(query)
        return dnskey_answer(KSK_RDATA)(query)

    server = name_server(handler)
    acc = Accumulator()
    cfg = DNSKeyConfig(domains=["ietf.org", "broken.example", "icann.org"], resolvers=[server.address])

    emitted = _run(cfg, acc)

    assert emitted == 1
    assert [m.tags["domain"] for m in acc.metrics] == ["ietf.org"]
    assert len(acc.errors) == 1
    assert len(server.queries) == 2


def test_timeout_is_reported_once(name_server):
    server = name_server(lambda query: None)
    acc = Accumulator()

    _run(DNSKeyConfig(domains=[".", "ietf.org"], resolvers=[server.address], timeout=1), acc)

    assert acc.metrics == []
    assert len(acc.errors) == 1
    assert isinstance(acc.errors[0], QueryTimeout)
    assert len(server.queries) == 1


def test_resolver_with_out_of_range_port_is_reported():
    acc = Accumulator()

    emitted = _run(DNSKeyConfig(domains=["."], resolvers=["127.0.0.1:70000"]), acc)

    assert emitted == 0
    assert acc.metrics == []
    assert len(acc.errors) == 1
    assert isinstance(acc.errors[0], TransportError)


def test_unreadable_system_resolvers_abort_before_querying(tmp_path):
    acc = Accumulator()

    emitted = _run(DNSKeyConfig(resolv_conf=str(tmp_path / "missing.conf")), acc)

    assert emitted == 0
    assert acc.metrics == []
    assert len(acc.errors) == 1
    assert isinstance(acc.errors[0], ConfigSourceUnavailable)


def test_random_resolver_choice_is_reproducible(name_server):
    first = name_server(dnskey_answer(KSK_RDATA))
    second = name_server(dnskey_answer(KSK_RDATA))
    cfg = DNSKeyConfig(domains=["a.example", "b.example", "c.example", "d.example"],
                       resolvers=[first.address, second.address])

    runs = []
    for _ in range(2):
        acc = Accumulator()
        _run(cfg, acc, seed=42)
        runs.append([m.tags["server"] for m in acc.metrics])

    assert runs[0] == runs[1]
    assert len(first.queries) + len(second.queries) == 8


def test_run_collector_once(name_server, tmp_path, capsys):
    server = name_server(dnskey_answer(KSK_RDATA))
    config_path = tmp_path / "keywatch.yaml"
    config_path.write_text(yaml.safe_dump({
        "inputs": {"dnskey": {"domains": ["."], "resolvers": [server.address], "timeout": 1}},
    }))

    asyncio.run(run_collector(str(config_path), once=True))

    assert len(server.queries) == 1
    assert "12345" in capsys.readouterr().err
