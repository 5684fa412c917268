"""Command-line interface for the valuation engine."""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import asdict, is_dataclass
from typing import Any

from .app import build_services
from .config import load_config
from .logging_setup import configure_logging
from .services import RefreshScheduler


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="rwa-engine",
        description="Real-world-asset pricing and portfolio valuation engine",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("refresh", help="Run one full metrics refresh sweep")

    run_parser = sub.add_parser("run", help="Refresh metrics continuously")
    run_parser.add_argument(
        "interval",
        nargs="?",
        type=int,
        default=None,
        help="Refresh interval in minutes (overrides config)",
    )

    portfolio_parser = sub.add_parser("portfolio", help="Value a user's portfolio")
    portfolio_parser.add_argument("user_id")

    pool_parser = sub.add_parser("pool", help="Compute liquidity pool metrics")
    pool_parser.add_argument("pool_id")
    pool_parser.add_argument("--user", dest="user_id", default=None)

    price_parser = sub.add_parser("price", help="Compute a token's market price")
    price_parser.add_argument("token_id")

    return parser


def _to_jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    return value


def _print(value: Any) -> None:
    print(json.dumps(_to_jsonable(value), indent=2, default=str))


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    services = build_services(config)
    engine = services.engine

    if args.command == "refresh":
        _print(await engine.refresh_all_metrics())
    elif args.command == "run":
        scheduler = services.scheduler
        if args.interval is not None:
            scheduler = RefreshScheduler(engine, args.interval)
        await scheduler.run()
    elif args.command == "portfolio":
        _print(await engine.calculate_portfolio_value(args.user_id))
    elif args.command == "pool":
        _print(await engine.calculate_liquidity_metrics(args.pool_id, args.user_id))
    elif args.command == "price":
        _print({"token_id": args.token_id, "price": await engine.calculate_market_price(args.token_id)})
    else:
        build_parser().print_help()
        sys.exit(1)


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    asyncio.run(_run(args))
