"""Response validation and DNSKEY answer decoding."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator

import dns.dnssec
import dns.message
import dns.rcode
import dns.rdatatype
from dns.dnssectypes import Algorithm

from keyWatch.collector.errors import QueryFailed

ZONE_KEY = 256
SECURE_ENTRY_POINT_ZONE_KEY = 257

ALGORITHM_NAMES: Dict[int, str] = {
    Algorithm.RSAMD5: "RSAMD5",
    Algorithm.DH: "DH",
    Algorithm.DSA: "DSA",
    Algorithm.RSASHA1: "RSASHA1",
    Algorithm.DSANSEC3SHA1: "DSA-NSEC3-SHA1",
    Algorithm.RSASHA1NSEC3SHA1: "RSASHA1-NSEC3-SHA1",
    Algorithm.RSASHA256: "RSASHA256",
    Algorithm.RSASHA512: "RSASHA512",
    Algorithm.ECCGOST: "ECC-GOST",
    Algorithm.ECDSAP256SHA256: "ECDSAP256SHA256",
    Algorithm.ECDSAP384SHA384: "ECDSAP384SHA384",
    Algorithm.ED25519: "ED25519",
    Algorithm.ED448: "ED448",
    Algorithm.INDIRECT: "INDIRECT",
    Algorithm.PRIVATEDNS: "PRIVATEDNS",
    Algorithm.PRIVATEOID: "PRIVATEOID",
}


@dataclass(frozen=True)
class KeyRecordObservation:
    domain: str
    server: str
    keytag: int
    algorithm: str
    key_type: str

    def tags(self) -> Dict[str, str]:
        return {
            "domain": self.domain,
            "server": self.server,
            "keytag": str(self.keytag),
            "algorithm": self.algorithm,
            "key_type": self.key_type,
        }


def algorithm_name(algorithm: int) -> str:
    return ALGORITHM_NAMES.get(int(algorithm), str(int(algorithm)))


def key_type(flags: int) -> str:
    if flags == ZONE_KEY:
        return "ZSK"
    if flags == SECURE_ENTRY_POINT_ZONE_KEY:
        return "KSK"
    return str(flags)


def validate(response: dns.message.Message, server: str = "", domain: str = "") -> None:
    """Raise QueryFailed unless the response code is NOERROR."""
    code = response.rcode()
    if code != dns.rcode.NOERROR:
        raise QueryFailed(code, server=server, domain=domain)


def decode_answers(
    response: dns.message.Message, domain: str, server: str
) -> Iterator[KeyRecordObservation]:
    """Yield one observation per DNSKEY record in the answer section, skipping other types."""
    for rrset in response.answer:
        if rrset.rdtype != dns.rdatatype.DNSKEY:
            continue
        for rdata in rrset:
            yield KeyRecordObservation(
                domain=domain,
                server=server,
                keytag=dns.dnssec.key_id(rdata),
                algorithm=algorithm_name(rdata.algorithm),
                key_type=key_type(rdata.flags),
            )
