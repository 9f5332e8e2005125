"""DNSKEY collector for keyWatch: one pass per interval, fail-fast per pass."""
from __future__ import annotations

import argparse
import asyncio
import os
import random
import time
import uuid
from typing import Optional

from rich.console import Console
from rich.traceback import install as install_rich_traceback

from keyWatch.collector.config import DNSKeyConfig, KeyWatchConfig
from keyWatch.collector.decoder import decode_answers, validate
from keyWatch.collector.errors import ConfigSourceUnavailable, DNSKeyError
from keyWatch.collector.query import execute
from keyWatch.collector.resolvers import apply_defaults, select_resolver
from keyWatch.logging_config import get_logger, reset_pass_id, set_pass_id
from keyWatch.metrics import Accumulator, MetricSink, PrometheusSink
from keyWatch.stream.atlas import AtlasStreamSubscriber

install_rich_traceback()
console = Console(stderr=True)
logger = get_logger("collector")

MEASUREMENT = "dnskey"


async def gather(
    cfg: DNSKeyConfig,
    sink: MetricSink,
    rng: Optional[random.Random] = None,
) -> int:
    """
    Run one collection pass and return the number of metrics emitted.

    Domains are queried in order. The first failure is reported once
    through sink.add_error and ends the pass; metrics already emitted
    for earlier domains stay emitted.
    """
    token = set_pass_id(uuid.uuid4().hex[:12])
    start = time.perf_counter()
    emitted = 0
    try:
        try:
            cfg = apply_defaults(cfg)
        except ConfigSourceUnavailable as exc:
            logger.error(str(exc), extra={"outcome": "error", "error_type": type(exc).__name__})
            sink.add_error(exc)
            return 0

        logger.info(
            "Starting DNSKEY collection pass",
            extra={"action": "pass_start", "domains": cfg.domains, "resolvers": cfg.resolvers},
        )

        for domain in cfg.domains:
            server = select_resolver(cfg.resolvers, rng)
            try:
                result = await execute(domain, server, cfg.timeout)
                validate(result.response, server=server, domain=domain)
            except DNSKeyError as exc:
                logger.error(
                    f"DNSKEY collection pass aborted: {exc}",
                    extra={
                        "domain": domain,
                        "server": server,
                        "outcome": "error",
                        "error_type": type(exc).__name__,
                    },
                )
                sink.add_error(exc)
                return emitted

            records = 0
            for observation in decode_answers(result.response, domain, server):
                sink.add_fields(
                    MEASUREMENT,
                    {"query_time_ms": result.query_time_ms},
                    observation.tags(),
                )
                records += 1
            emitted += records
            logger.info(
                "DNSKEY records collected",
                extra={
                    "domain": domain,
                    "server": server,
                    "records": records,
                    "duration": round(result.query_time_ms, 3),
                    "outcome": "success",
                },
            )

        logger.info(
            "DNSKEY collection pass completed",
            extra={
                "action": "pass_complete",
                "records": emitted,
                "duration": round((time.perf_counter() - start) * 1000, 3),
                "outcome": "success",
            },
        )
        return emitted
    finally:
        reset_pass_id(token)


async def run_stream(subscriber: AtlasStreamSubscriber, sink: MetricSink) -> None:
    """Run the Atlas subscriber; a connection failure or drop is logged and reported once."""
    try:
        await subscriber.run()
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        logger.error(
            f"Atlas stream failed: {exc}",
            exc_info=True,
            extra={"outcome": "error", "error_type": type(exc).__name__, "state": "stream_failed"},
        )
        sink.add_error(exc)


def _prepare(cfg: DNSKeyConfig) -> DNSKeyConfig:
    """Normalize once outside the loop; leave it to each pass if the system source is unreadable now."""
    try:
        return apply_defaults(cfg)
    except ConfigSourceUnavailable as exc:
        logger.warning(
            f"Deferring resolver defaults to each pass: {exc}",
            extra={"outcome": "deferred", "config_path": cfg.resolv_conf},
        )
        return cfg


async def run_collector(config_path: str, once: bool = False) -> None:
    cfg = KeyWatchConfig.load(config_path)
    dnskey_cfg = _prepare(cfg.inputs.dnskey)

    if once:
        acc = Accumulator()
        await gather(dnskey_cfg, acc)
        _print_summary(acc)
        return

    sink = PrometheusSink()
    prom = cfg.outputs.prometheus
    server = sink.serve(prom.listen_address, prom.port)

    stream_task: Optional[asyncio.Task] = None
    if cfg.inputs.atlas_stream.enabled:
        subscriber = AtlasStreamSubscriber(cfg.inputs.atlas_stream, sink)
        stream_task = asyncio.create_task(run_stream(subscriber, sink))

    logger.info(
        "DNSKEY collector starting",
        extra={
            "component": "collector",
            "state": "starting",
            "config_path": config_path,
            "domains": dnskey_cfg.domains,
        },
    )
    console.print("[green]Starting keyWatch DNSKEY collector", highlight=False)

    rng = random.Random()
    try:
        while True:
            try:
                emitted = await gather(dnskey_cfg, sink, rng)
                console.log(f"dnskey records={emitted}")
            except asyncio.CancelledError:
                logger.info("DNSKEY collector interrupted", extra={"state": "interrupted"})
                raise
            except Exception as exc:
                logger.error(
                    f"DNSKEY collection pass error: {exc}",
                    exc_info=True,
                    extra={"outcome": "error", "error_type": type(exc).__name__},
                )
                console.log(f"[red]Pass error:[/red] {exc}")
            await asyncio.sleep(cfg.interval_seconds)
    finally:
        logger.info("DNSKEY collector shutting down", extra={"state": "shutdown"})
        if stream_task is not None:
            stream_task.cancel()
            await asyncio.gather(stream_task, return_exceptions=True)
        server.shutdown()
        logger.info("DNSKEY collector stopped", extra={"state": "stopped"})


def _print_summary(acc: Accumulator) -> None:
    for metric in acc.metrics:
        tags = metric.tags
        console.print(
            f"{tags['domain']:<20} {tags['server']:<24} keytag={tags['keytag']:<6} "
            f"{tags['algorithm']:<18} {tags['key_type']:<4} {metric.fields['query_time_ms']:.2f} ms",
            highlight=False,
        )
    for error in acc.errors:
        console.print(f"[red]{error}[/red]", highlight=False)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="keyWatch DNSKEY collector")
    parser.add_argument(
        "--config",
        default=os.getenv("KEYWATCH_CONFIG", "/etc/keywatch/keywatch.yaml"),
        help="Path to keyWatch YAML config",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single collection pass and print the results",
    )
    return parser.parse_args()


async def main_async() -> None:
    args = parse_args()
    await run_collector(args.config, once=args.once)


def main() -> None:
    try:
        asyncio.run(main_async())
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted, exiting.")


if __name__ == "__main__":
    main()
