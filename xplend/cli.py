"""Command-line interface for the XP lending pool."""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from .config import AppConfig, load_config
from .decimal_math import format_percent
from .errors import LendingError
from .logging_setup import configure_logging
from .models import to_dict
from .rates import rate_curve
from .services import LendingService, RiskMonitor
from .storage import open_storage


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="xplend",
        description="XP lending pool engine",
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
    parser.add_argument(
        "--asset",
        default=None,
        help="Pool asset (default: pool.asset from config)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("pool", help="Show pool totals, utilization and APYs")

    positions = sub.add_parser("positions", help="List a user's supply and borrow positions")
    positions.add_argument("user")

    supply = sub.add_parser("supply", help="Supply to the pool")
    supply.add_argument("user")
    supply.add_argument("amount")
    supply.add_argument("--tx-hash", default=None, help="On-chain deposit reference")

    withdraw = sub.add_parser("withdraw", help="Withdraw supplied principal")
    withdraw.add_argument("user")
    withdraw.add_argument("amount")

    borrow = sub.add_parser("borrow", help="Borrow against collateral")
    borrow.add_argument("user")
    borrow.add_argument("amount")
    borrow.add_argument("collateral")
    borrow.add_argument("--collateral-asset", default=None)

    repay = sub.add_parser("repay", help="Repay a borrow position")
    repay.add_argument("user")
    repay.add_argument("position_id")
    repay.add_argument("amount")

    history = sub.add_parser("history", help="Show a user's lending transactions")
    history.add_argument("user")
    history.add_argument("--limit", type=int, default=50)

    rates = sub.add_parser("rates", help="Print the interest rate curve")
    rates.add_argument("--points", type=int, default=11)

    sub.add_parser("risk-report", help="Send a pool report with at-risk positions")

    monitor_parser = sub.add_parser("monitor", help="Continuous health-factor monitoring")
    monitor_parser.add_argument(
        "interval",
        nargs="?",
        type=int,
        default=None,
        help="Check interval in minutes (overrides config)",
    )

    return parser


def _emit(payload: Any) -> None:
    print(json.dumps(to_dict(payload), indent=2))


async def _dispatch(
    args: argparse.Namespace, config: AppConfig, service: LendingService
) -> None:
    asset = args.asset

    if args.command == "pool":
        _emit(await service.get_pool_info(asset))
    elif args.command == "positions":
        _emit(await service.get_user_positions(args.user))
    elif args.command == "supply":
        _emit(await service.supply(args.user, args.amount, args.tx_hash, asset=asset))
    elif args.command == "withdraw":
        _emit(await service.withdraw(args.user, args.amount, asset=asset))
    elif args.command == "borrow":
        _emit(
            await service.borrow(
                args.user, args.amount, args.collateral,
                collateral_asset=args.collateral_asset, asset=asset,
            )
        )
    elif args.command == "repay":
        _emit(await service.repay(args.user, args.position_id, args.amount))
    elif args.command == "history":
        _emit(await service.transaction_history(args.user, args.limit))
    elif args.command == "rates":
        pool = await service.get_pool(asset)
        _emit(
            [
                {
                    "utilization": format_percent(point.utilization),
                    "borrow_rate": format_percent(point.borrow_rate),
                    "supply_rate": format_percent(point.supply_rate),
                }
                for point in rate_curve(pool.reserve_factor, service.rate_params, args.points)
            ]
        )
    elif args.command == "risk-report":
        report = await RiskMonitor(service, config).generate_report(asset)
        _emit({"report": report})
    elif args.command == "monitor":
        await RiskMonitor(service, config).run_continuous(args.interval)


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    storage = await open_storage(config.storage)
    try:
        service = LendingService.from_config(config, storage)
        await _dispatch(args, config, service)
    finally:
        await storage.close()


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        asyncio.run(_run(args))
    except LendingError as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
