"""Configuration loader for keyWatch inputs and outputs."""
from __future__ import annotations

from pathlib import Path
from typing import List

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

DEFAULT_RESOLV_CONF = "/etc/resolv.conf"

SAMPLE_DNSKEY_CONFIG = """\
  dnskey:
    ## Domains to query.
    # domains: ["ietf.org", "icann.org"]

    ## Resolvers (to specify port write ipv4:53 or [ipv6]:53)
    # resolvers: ["8.8.8.8", "8.8.4.4"]

    ## Query timeout in seconds.
    # timeout: 2
"""


class DNSKeyConfig(BaseModel):
    """Settings of the dnskey input. Empty values are filled by apply_defaults."""
    domains: List[str] = Field(default_factory=list)
    resolvers: List[str] = Field(default_factory=list)
    timeout: int = Field(default=0, ge=0)
    resolv_conf: str = Field(default=DEFAULT_RESOLV_CONF)

    model_config = ConfigDict(frozen=True, extra="ignore")

    @staticmethod
    def sample_config() -> str:
        return SAMPLE_DNSKEY_CONFIG

    @staticmethod
    def description() -> str:
        return "Query (through system resolver) for DNSKEYs for a given domain"


class AtlasStreamConfig(BaseModel):
    enabled: bool = Field(default=False)
    url: str = Field(default="wss://atlas-stream.ripe.net/stream/")
    stream_types: List[str] = Field(default_factory=lambda: ["probestatus"])


class InputsConfig(BaseModel):
    dnskey: DNSKeyConfig = Field(default_factory=DNSKeyConfig)
    atlas_stream: AtlasStreamConfig = Field(default_factory=AtlasStreamConfig)


class PrometheusOutputConfig(BaseModel):
    listen_address: str = Field(default="127.0.0.1")
    port: int = Field(default=9153, ge=0, le=65535)


class OutputsConfig(BaseModel):
    prometheus: PrometheusOutputConfig = Field(default_factory=PrometheusOutputConfig)


class KeyWatchConfig(BaseModel):
    interval_seconds: int = Field(default=60, ge=1)
    inputs: InputsConfig = Field(default_factory=InputsConfig)
    outputs: OutputsConfig = Field(default_factory=OutputsConfig)

    @classmethod
    def load(cls, path: str) -> "KeyWatchConfig":
        cfg_path = Path(path)
        if not cfg_path.exists():
            raise FileNotFoundError(f"keyWatch config not found: {cfg_path}")
        try:
            raw = yaml.safe_load(cfg_path.read_text()) or {}
            return cls(**raw)
        except ValidationError as exc:
            raise ValueError(f"Invalid keyWatch config: {exc}") from exc
