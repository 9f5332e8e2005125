"""Resolver set management: defaults, host:port normalization, random choice."""
from __future__ import annotations

import random
import re
from typing import List, Optional, Sequence

import dns.exception
import dns.resolver

from keyWatch.collector.config import DNSKeyConfig
from keyWatch.collector.errors import ConfigSourceUnavailable
from keyWatch.logging_config import get_logger

logger = get_logger("collector")

DEFAULT_DOMAINS = ["."]
DEFAULT_PORT = 53
DEFAULT_TIMEOUT_SECONDS = 2

# ipv4:port, [ipv6]:port or hostname:port
HOST_PORT_PATTERN = re.compile(
    r"^(?:\d+(?:\.\d+){3}:\d+|\[[^\]]*\]:\d+|[A-Za-z0-9_-]+(?:\.[A-Za-z0-9_-]+)*\.?:\d+)$"
)


def normalize_resolver(address: str) -> str:
    """Return the resolver as host:port, appending the default DNS port when missing."""
    address = address.strip()
    if HOST_PORT_PATTERN.match(address):
        return address
    host = address.strip("[]")
    if ":" in host:
        return f"[{host}]:{DEFAULT_PORT}"
    return f"{host}:{DEFAULT_PORT}"


def split_host_port(address: str) -> tuple[str, int]:
    """Split host:port; raises ValueError for a port outside 0-65535."""
    host, _, port = address.rpartition(":")
    number = int(port)
    if not 0 <= number <= 65535:
        raise ValueError(f"port out of range in {address}")
    return host.strip("[]"), number


def read_system_resolvers(path: str) -> List[str]:
    """Read name server addresses from a resolv.conf-format file."""
    try:
        resolver = dns.resolver.Resolver(filename=path, configure=True)
    except (dns.exception.DNSException, OSError) as exc:
        # NoResolverConfiguration, or a malformed search/domain line
        raise ConfigSourceUnavailable(path, str(exc)) from exc
    servers = list(resolver.nameservers)
    if not servers:
        raise ConfigSourceUnavailable(path, "no nameservers")
    return servers


def apply_defaults(config: DNSKeyConfig) -> DNSKeyConfig:
    """
    Return a copy of config with domains, resolvers and timeout filled in.

    The system resolver file is read only when no resolvers are configured.
    Applying it to an already defaulted config returns an equal config.

    Raises:
        ConfigSourceUnavailable: the system resolver file cannot be read
    """
    domains = list(config.domains) or list(DEFAULT_DOMAINS)

    resolvers = list(config.resolvers)
    if not resolvers:
        resolvers = read_system_resolvers(config.resolv_conf)
        logger.debug(
            "Loaded system resolvers",
            extra={"resolvers": resolvers, "config_path": config.resolv_conf},
        )

    timeout = config.timeout or DEFAULT_TIMEOUT_SECONDS

    return config.model_copy(update={
        "domains": domains,
        "resolvers": [normalize_resolver(r) for r in resolvers],
        "timeout": timeout,
    })


def select_resolver(resolvers: Sequence[str], rng: Optional[random.Random] = None) -> str:
    """Pick one resolver uniformly at random."""
    if not resolvers:
        raise ValueError("no resolvers to choose from; apply_defaults was not run")
    return (rng or random).choice(resolvers)
