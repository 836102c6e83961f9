#!/usr/bin/env python3
"""
Cross-platform prediction-market arbitrage scanner.

Detection only: matches equivalent markets across Polymarket, Kalshi and
Manifold, prices the hedge after costs and grades confidence. Never trades.

Usage:
  python run.py scan                      # one scan, plain-text report
  python run.py scan --json --query fed   # one scan on a topic, JSON output
  python run.py monitor                   # continuous monitoring, Ctrl+C to stop
  python run.py registry                  # refresh and print matched pairs
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from client.markets import MultiPlatformProvider
from config import Config, load_config
from monitor.alerts import format_opportunity_alert
from monitor.logger import setup_logging
from monitor.registry import MarketRegistry
from monitor.tracker import MonitorState, TrackedOpportunity
from scanner.errors import ConfigurationError
from scanner.models import ConfidenceGrade
from scanner.scanner import ScanOptions, format_scan_result, scan_for_arbitrage
from state.checkpoint import CheckpointManager

logger = logging.getLogger("run")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Cross-platform prediction-market arbitrage scanner")
    parser.add_argument("--json-log", type=str, default=None, help="Path to JSON log file for machine-readable output")
    parser.add_argument("--log-dir", type=str, default=None, help="Directory for a verbose debug log file")
    parser.add_argument(
        "--platforms", type=str, default=None,
        help="Comma-separated platforms (default: SCAN_PLATFORMS, polymarket,kalshi,manifold)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="Run one on-demand scan")
    scan.add_argument("--query", type=str, default=None, help="Search term (default: top markets)")
    scan.add_argument("--limit", type=int, default=None, help="Max markets per platform")
    scan.add_argument("--max-opportunities", type=int, default=None)
    scan.add_argument("--min-grade", choices=[g.value for g in ConfidenceGrade], default=None)
    scan.add_argument("--json", action="store_true", help="Print the ScanResult as JSON")

    monitor = sub.add_parser("monitor", help="Poll registry pairs and alert on live opportunities")
    monitor.add_argument("--interval", type=float, default=None, help="Seconds between passes")

    sub.add_parser("registry", help="Refresh the pair registry and print it")
    return parser.parse_args(argv)


def _platforms(args: argparse.Namespace, cfg: Config) -> list[str]:
    if args.platforms:
        return [p.strip().lower() for p in args.platforms.split(",") if p.strip()]
    return list(cfg.scan_platforms)


async def run_scan(args: argparse.Namespace, cfg: Config) -> int:
    provider = MultiPlatformProvider.from_config(cfg, limit=args.limit)
    options = ScanOptions(
        platforms=tuple(_platforms(args, cfg)),
        query=args.query,
        max_markets_per_platform=args.limit,
        max_opportunities=args.max_opportunities,
        min_confidence_grade=ConfidenceGrade(args.min_grade) if args.min_grade else None,
    )
    try:
        result = await scan_for_arbitrage(provider, cfg, options)
    finally:
        await provider.aclose()

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        print(format_scan_result(result))
    return 0


async def _print_alert(opp: TrackedOpportunity) -> None:
    print(format_opportunity_alert(opp), flush=True)


async def run_monitor(args: argparse.Namespace, cfg: Config) -> int:
    if args.interval:
        cfg = cfg.model_copy(update={"monitor_interval_sec": args.interval})
    cfg = cfg.model_copy(update={"scan_platforms": _platforms(args, cfg)})

    provider = MultiPlatformProvider.from_config(cfg, limit=cfg.registry_max_markets_per_platform)
    checkpoint = CheckpointManager(cfg.state_db_path) if cfg.state_db_path else None
    monitor = MonitorState(provider, cfg, alert_sink=_print_alert, checkpoint=checkpoint)

    logger.info("Monitoring %s every %.0fs", ", ".join(cfg.scan_platforms), cfg.monitor_interval_sec)
    monitor.start()
    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        pass
    finally:
        logger.info("Stopping monitor (letting the in-flight pass finish)...")
        await monitor.stop()
        if checkpoint is not None:
            checkpoint.save_all()
            checkpoint.close()
        await provider.aclose()
        status = monitor.status()
        logger.info(
            "Monitor stopped: %d passes, %d opportunities, %d alerts, %d errors",
            status.scan_count, status.opportunities_found, status.alerts_sent, len(status.errors),
        )
    return 0


async def run_registry(args: argparse.Namespace, cfg: Config) -> int:
    provider = MultiPlatformProvider.from_config(cfg, limit=cfg.registry_max_markets_per_platform)
    registry = MarketRegistry(cfg)
    try:
        await registry.refresh(provider, _platforms(args, cfg))
    finally:
        await provider.aclose()

    entries = sorted(registry.entries, key=lambda e: e.equivalence_score, reverse=True)
    print(f"Registry v{registry.version}: {len(entries)} pairs")
    for e in entries:
        flip = " (inverted)" if e.is_inverted else ""
        print(f"  {e.equivalence_score * 100:5.1f}%  {e.market_a.platform}:{e.market_a.market_id}"
              f" <-> {e.market_b.platform}:{e.market_b.market_id}{flip}")
        print(f"          {e.market_a.title[:70]}")
    return 0


_COMMANDS = {"scan": run_scan, "monitor": run_monitor, "registry": run_registry}


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        cfg = load_config()
    except ConfigurationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    log_path = setup_logging(cfg.log_level, json_log_file=args.json_log or cfg.json_log_file or None, log_dir=args.log_dir)
    if log_path:
        logger.info("Log file: %s", log_path)

    try:
        return asyncio.run(_COMMANDS[args.command](args, cfg))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
