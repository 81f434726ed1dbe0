"""Command-line entry point."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from collections.abc import Iterable

from pydantic import ValidationError

from handoff_trader.config import Settings, get_settings
from handoff_trader.pipeline import Pipeline, Transport

logger = logging.getLogger("handoff_trader")


def _setup_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    for noisy in ("httpx", "httpcore", "websockets", "aiohttp.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _load_settings() -> Settings | None:
    try:
        return get_settings()
    except ValidationError as exc:
        logging.basicConfig(level=logging.ERROR)
        logger.error("Invalid configuration: %s", exc)
        return None


def _serve(args: argparse.Namespace, transport: Transport) -> int:
    settings = _load_settings()
    if settings is None:
        return 2
    _setup_logging(settings)

    dry_run = True if args.dry_run else None
    if dry_run:
        settings = settings.model_copy(update={"dry_run": True})
    try:
        settings.validate_requirements(command="run" if transport == "websocket" else "webhook")
    except ValueError as exc:
        logger.error("Configuration error: %s", exc)
        return 2

    logger.info("Starting with settings: %s", settings.redacted_summary())
    pipeline = Pipeline(settings, transport=transport)
    try:
        asyncio.run(pipeline.run())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    except Exception as exc:
        logger.error("Fatal runtime error: %s", exc)
        return 2
    return 0


def _run_command(args: argparse.Namespace) -> int:
    return _serve(args, "websocket")


def _webhook_command(args: argparse.Namespace) -> int:
    return _serve(args, "webhook")


def _config_command(args: argparse.Namespace) -> int:
    settings = _load_settings()
    if settings is None:
        return 2
    print(json.dumps(settings.redacted_summary(), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="handoff-trader",
        description="Watch Solana wallets for a seed/handoff pattern and trade it via Jupiter",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Ingest through the Helius logs websocket")
    run.add_argument("--dry-run", action="store_true", help="Quote trades but never send them")
    run.set_defaults(func=_run_command)

    webhook = sub.add_parser("webhook", help="Ingest through the HTTP webhook server")
    webhook.add_argument("--dry-run", action="store_true", help="Quote trades but never send them")
    webhook.set_defaults(func=_webhook_command)

    config = sub.add_parser("config", help="Print the effective configuration (secrets redacted)")
    config.set_defaults(func=_config_command)
    return parser


def cli(argv: Iterable[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    return int(args.func(args))


def main() -> None:
    raise SystemExit(cli())


if __name__ == "__main__":
    main()
