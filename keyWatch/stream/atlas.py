"""RIPE Atlas probe-status stream subscriber."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

import aiohttp
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from keyWatch.collector.config import AtlasStreamConfig
from keyWatch.logging_config import get_logger
from keyWatch.metrics import MetricSink

logger = get_logger("stream")

MEASUREMENT = "atlas_probestatus"


class ProbeStatus(BaseModel):
    """One atlas_probestatus event (a probe connecting or disconnecting)."""
    timestamp: int
    prefix: str = ""
    event: str
    controller: str = ""
    probe_id: int = Field(alias="prb_id")
    type: str = ""
    asn: str = ""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @field_validator("prefix", "controller", "type", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("asn", mode="before")
    @classmethod
    def _asn_to_text(cls, value: Any) -> str:
        # The stream sends the ASN as a number, a string or null
        if value is None:
            return ""
        if isinstance(value, bool):
            raise ValueError("Unknown data type for ASN")
        if isinstance(value, str):
            return value
        if isinstance(value, int):
            return str(value)
        if isinstance(value, float):
            return f"{value:.0f}"
        raise ValueError("Unknown data type for ASN")


def probe_status_metric(status: ProbeStatus) -> Tuple[Dict[str, Any], Dict[str, str], datetime]:
    """Fields, tags and timestamp for one probe-status event."""
    tags = {
        "prefix": status.prefix or "0",
        "controller": status.controller,
        "probe_id": str(status.probe_id),
        "type": status.type,
        "asn": status.asn or "0",
    }
    fields = {"status": status.event}
    return fields, tags, datetime.fromtimestamp(status.timestamp, tz=timezone.utc)


class AtlasStreamSubscriber:
    """Subscribes to the Atlas stream over a websocket and forwards probe status events."""

    def __init__(self, cfg: AtlasStreamConfig, sink: MetricSink) -> None:
        self.cfg = cfg
        self.sink = sink

    def subscriptions(self) -> list:
        return [["atlas_subscribe", {"stream_type": t}] for t in self.cfg.stream_types]

    def handle_message(self, raw: str) -> Optional[ProbeStatus]:
        """Decode one ["event", payload] frame; emit a metric for probe status events."""
        try:
            frame = json.loads(raw)
        except ValueError as exc:
            self.sink.add_error(ValueError(f"Undecodable Atlas stream message: {exc}"))
            return None
        if not isinstance(frame, list) or len(frame) != 2:
            self.sink.add_error(ValueError(f"Unexpected Atlas stream frame: {raw[:80]}"))
            return None
        event, payload = frame

        if event != "atlas_probestatus":
            logger.debug(f"Atlas stream event {event}", extra={"action": event})
            return None

        try:
            status = ProbeStatus.model_validate(payload)
        except ValidationError as exc:
            self.sink.add_error(exc)
            return None

        logger.debug(
            f"New status for probe {status.probe_id}: {status.event}",
            extra={"probe_id": status.probe_id, "state": status.event},
        )
        fields, tags, ts = probe_status_metric(status)
        self.sink.add_fields(MEASUREMENT, fields, tags, ts)
        return status

    async def run(self) -> None:
        """Consume the stream until the server closes it or the task is cancelled."""
        async with aiohttp.ClientSession() as session:
            async with session.ws_connect(self.cfg.url) as ws:
                logger.info("Connected to Atlas stream", extra={"state": "connected"})
                for subscription in self.subscriptions():
                    await ws.send_json(subscription)
                    logger.info(
                        "Subscribed to Atlas stream",
                        extra={"stream_type": subscription[1]["stream_type"]},
                    )
                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        self.handle_message(msg.data)
                    elif msg.type == aiohttp.WSMsgType.ERROR:
                        logger.error(
                            f"Atlas stream error: {ws.exception()}",
                            extra={"outcome": "error"},
                        )
                        break
        logger.info("Atlas stream closed", extra={"state": "closed"})
