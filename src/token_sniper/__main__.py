"""Command line entry point.

Usage:
    python -m token_sniper run [--dry-run]
    python -m token_sniper check-config
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys

from pydantic import ValidationError

from token_sniper import __version__
from token_sniper.config import Settings, get_settings
from token_sniper.detector.models import TokenMatch
from token_sniper.executor.dispatcher import ExecutionDispatcher
from token_sniper.executor.models import TransactionResult
from token_sniper.executor.safety import PendingConfirmation
from token_sniper.pipeline import Pipeline

logger = logging.getLogger("token_sniper")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="token-sniper",
        description="Detect new Solana tokens, match them against sniper configs and execute guarded buys.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subcommands = parser.add_subparsers(dest="command", required=True)

    run = subcommands.add_parser("run", help="Run the pipeline until interrupted")
    run.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Authorize and log trades without submitting them (overrides DRY_RUN)",
    )

    subcommands.add_parser("check-config", help="Print the effective settings and usable providers")
    return parser


async def _log_match(match: TokenMatch) -> None:
    logger.info("MATCH %s", json.dumps(match.to_dict()))


async def _log_confirmation(pending: PendingConfirmation) -> None:
    logger.warning("CONFIRMATION REQUIRED %s", json.dumps(pending.to_dict()))


async def _log_result(result: TransactionResult) -> None:
    logger.info("RESULT %s", json.dumps(result.to_dict()))


async def _run(settings: Settings, dry_run: bool | None) -> None:
    pipeline = Pipeline(settings, dry_run=dry_run)
    pipeline.add_match_sink(_log_match)
    pipeline.add_confirmation_sink(_log_confirmation)
    pipeline.add_result_sink(_log_result)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, pipeline.request_stop)
        except NotImplementedError:
            pass  # not available on Windows

    await pipeline.run()


async def _check_config(settings: Settings) -> int:
    print(json.dumps(settings.redacted_summary(), indent=2))
    dispatcher = ExecutionDispatcher.from_settings(settings)
    try:
        print(f"Selected provider: {dispatcher.selected.value}")
        print("Available providers: " + (", ".join(k.value for k in dispatcher.available) or "(none)"))
        for kind, reason in dispatcher.disabled.items():
            print(f"Disabled provider {kind.value}: {reason}")
    finally:
        await dispatcher.aclose()
    if dispatcher.selected not in dispatcher.available:
        print("Warning: the selected provider is unavailable; trades will fail", file=sys.stderr)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = get_settings()
        settings.validate_requirements(command=args.command)
    except (ValidationError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "check-config":
        return asyncio.run(_check_config(settings))

    try:
        asyncio.run(_run(settings, args.dry_run))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
