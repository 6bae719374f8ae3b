"""Command line entry point.

Examples:
    python -m solswap swap --from SOL --to USDC --amount 0.1 --slippage-bps 50 --key treasury
    python -m solswap swap --from SOL --to USDC --amount 0.1 --slippage-percent 0.5 --key treasury --no-wait
    python -m solswap config
"""

import argparse
import asyncio
import json
import logging
import sys

from pydantic import ValidationError

from solswap.config import Settings, get_settings
from solswap.context import ServiceContext
from solswap.models import TradeRequest, TradeStatus
from solswap.signing import EnvKeyProvider
from solswap.swap import TradeOrchestrator

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Configure root logging for the process."""
    level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_request(args: argparse.Namespace) -> TradeRequest:
    if args.slippage_percent is not None:
        return TradeRequest.from_percent(
            input_asset=args.input_asset,
            output_asset=args.output_asset,
            amount=args.amount,
            slippage_percent=args.slippage_percent,
            key_ref=args.key,
        )
    return TradeRequest(
        input_asset=args.input_asset,
        output_asset=args.output_asset,
        amount=args.amount,
        slippage_bps=args.slippage_bps,
        key_ref=args.key,
    )


async def run_swap(settings: Settings, request: TradeRequest, args: argparse.Namespace) -> dict:
    async with ServiceContext(settings) as ctx:
        orchestrator = TradeOrchestrator(ctx, key_provider=EnvKeyProvider())
        record = await orchestrator.execute(
            request,
            budget_seconds=args.budget,
            wait_for_confirmation=not args.no_wait,
        )
        result = record.to_dict()
        result["api_calls"] = ctx.meter.snapshot()
        return result


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="solswap", description="Solana swap execution")
    commands = parser.add_subparsers(dest="command", required=True)

    swap = commands.add_parser("swap", help="Execute one swap")
    swap.add_argument("--from", dest="input_asset", required=True,
                      help="Asset to sell (symbol or mint)")
    swap.add_argument("--to", dest="output_asset", required=True,
                      help="Asset to buy (symbol or mint)")
    swap.add_argument("--amount", required=True, help="Amount to sell, in user units")
    slippage = swap.add_mutually_exclusive_group()
    slippage.add_argument("--slippage-bps", type=int, default=50,
                          help="Slippage tolerance in basis points")
    slippage.add_argument("--slippage-percent", default=None,
                          help="Slippage tolerance in percent (0.5 = 0.5%%)")
    swap.add_argument("--key", required=True,
                      help="Key reference, resolved from SOLSWAP_KEY_<KEY>")
    swap.add_argument("--budget", type=float, default=None,
                      help="Time budget in seconds")
    swap.add_argument("--no-wait", action="store_true",
                      help="Return once submitted instead of waiting for confirmation")
    swap.add_argument("--live", action="store_true",
                      help="Send to the configured RPC node instead of the dry-run ledger")

    commands.add_parser("config", help="Print effective settings (secrets masked)")

    args = parser.parse_args(argv)
    settings = get_settings()
    configure_logging(settings)

    if args.command == "config":
        print(json.dumps(settings.get_safe_dict(), indent=2, default=str))
        return 0

    if args.live:
        settings = settings.model_copy(update={"dry_run": False})

    try:
        request = build_request(args)
    except ValidationError as e:
        print(f"Invalid trade request:\n{e}", file=sys.stderr)
        return 2

    logger.info(f"Environment: {settings.environment}, dry run: {settings.dry_run}")
    result = asyncio.run(run_swap(settings, request, args))
    print(json.dumps(result, indent=2))
    return 0 if result["status"] in (TradeStatus.CONFIRMED.value, TradeStatus.SUBMITTED.value) else 1


if __name__ == "__main__":
    sys.exit(main())
