"""Command line entry points for running the movers pipelines locally"""

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from typing import List, Optional

from .config import settings
from .errors import MoversError
from .logging_config import setup_logging
from .services.datasets import ALL_NETWORKS, DatasetRegistry
from .types import MarketItem, RankedResult


def _format_change(value: Optional[float]) -> str:
    return f"{value:+.2f}%" if value is not None else "n/a"


def _print_side(title: str, items: List[MarketItem], limit: int) -> None:
    print(f"\n{title}")
    print("-" * 60)
    if not items:
        print("  (none)")
        return
    for index, item in enumerate(items[:limit], 1):
        network = f" [{item.network}]" if item.network else ""
        print(f"{index:2d}. {item.symbol:<10} {_format_change(item.change_24h):>10}  ${item.price:,.6g}{network}")


def print_result(label: str, result: RankedResult, limit: int = 10) -> None:
    produced = datetime.fromtimestamp(result.timestamp / 1000, tz=timezone.utc)
    print(f"\n{label} @ {produced.isoformat()}")
    print("=" * 60)
    if result.is_partial:
        print("Partial result: upstream coverage was incomplete")
    _print_side("Gainers", result.gainers, limit)
    _print_side("Losers", result.losers, limit)


async def cli_fetch(dataset: str, network: str, deep: bool, limit: int) -> int:
    """Run one pipeline against the live upstream without touching the cache"""
    registry = DatasetRegistry(settings)
    try:
        if dataset == "cex":
            refresher = registry.cex()
        elif dataset == "dex":
            refresher = registry.dex_pools(network)
        else:
            refresher = registry.dex_pairs(network)
        result = await refresher.pipeline.run(deep=deep)
    except MoversError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1
    finally:
        await registry.aclose()

    print_result(refresher.key, result, limit)
    return 0


async def cli_status() -> int:
    """Print cache state for every configured dataset"""
    registry = DatasetRegistry(settings)
    try:
        for refresher in registry.configured():
            status = await refresher.status()
            if not status["cached"]:
                print(f"{refresher.key:<22} empty")
                continue
            flags = []
            if status["isPartial"]:
                flags.append("partial")
            if status["lastUpdateFailed"]:
                flags.append("last update failed")
            if status["refreshing"]:
                flags.append("refreshing")
            suffix = f" ({', '.join(flags)})" if flags else ""
            print(f"{refresher.key:<22} age {status['ageSeconds']}s next={status['nextAction']}{suffix}")
    finally:
        await registry.aclose()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Crypto movers CLI")
    subparsers = parser.add_subparsers(dest="command")

    fetch_parser = subparsers.add_parser("fetch", help="Run a pipeline once and print the movers")
    fetch_parser.add_argument("dataset", choices=["cex", "dex", "pairs"], help="Dataset to fetch")
    fetch_parser.add_argument("--network", default=ALL_NETWORKS, help="Network for dex/pairs (default: all)")
    fetch_parser.add_argument("--quick", action="store_true", help="Quick scan (first page only for cex)")
    fetch_parser.add_argument("--limit", type=int, default=10, help="Rows to print per side")

    subparsers.add_parser("status", help="Show cache state per dataset")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default=settings.host)
    serve_parser.add_argument("--port", type=int, default=settings.port)
    serve_parser.add_argument("--reload", action="store_true")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    if args.command == "serve":
        import uvicorn
        uvicorn.run(
            "cryptomovers.main:app",
            host=args.host,
            port=args.port,
            reload=args.reload,
            log_level=settings.log_level.lower(),
        )
        return 0

    setup_logging()
    if args.command == "fetch":
        if args.limit <= 0:
            parser.error("--limit must be positive")
        return asyncio.run(cli_fetch(args.dataset, args.network, not args.quick, args.limit))
    if args.command == "status":
        return asyncio.run(cli_status())

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
