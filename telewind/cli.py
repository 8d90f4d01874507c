"""
telewind command line.

    telewind parse [--url URL] [--speed 5.0]
    telewind run-telegram-bot [--url URL] [--speed 5.0]
    telewind init-db
    telewind pending
"""
import argparse
import asyncio
import logging
import os
import sys
from typing import List, Optional

import aiohttp
from dotenv import load_dotenv

from telewind.config import ServiceConfig
from telewind.logging_config import setup_logging
from telewind.wind.parser import parse
from telewind.wind.tracker import Sector, WindTracker

log = logging.getLogger(__name__)


def build_config(args: argparse.Namespace) -> ServiceConfig:
    """Config from the environment, with CLI flags and unprefixed legacy variables applied."""
    overrides = {}
    if getattr(args, "url", None):
        overrides["ANEMOMETER_URL"] = args.url
    if getattr(args, "speed", None) is not None:
        overrides["SPEED_THRESHOLD"] = args.speed
    cfg = ServiceConfig(**overrides)

    if not cfg.TELEGRAM_BOT_TOKEN and os.getenv("TELEGRAM_BOT_TOKEN"):
        cfg.TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")
    if "TELEWIND_DB_PATH" not in os.environ and os.getenv("DATABASE_URL"):
        cfg.DB_PATH = os.getenv("DATABASE_URL")
    return cfg


async def fetch_page(url: str) -> str:
    timeout = aiohttp.ClientTimeout(total=30)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        async with session.get(url) as response:
            response.raise_for_status()
            return await response.text()


def run_parse(cfg: ServiceConfig, out=sys.stdout) -> int:
    body = asyncio.run(fetch_page(cfg.ANEMOMETER_URL))
    tracker = WindTracker(
        sector=Sector.EAST_90,
        candidate_steps=2,
        cooldown_steps=2,
        speed_threshold=cfg.SPEED_THRESHOLD,
    )
    print_track(parse(body), tracker, out)
    return 0


def print_track(observations, tracker: WindTracker, out=sys.stdout):
    """Run the tracker over the page (newest row first) in time order and print each step."""
    for observation in reversed(observations):
        fired = tracker.step(observation)
        print(f"{observation} {str(fired).lower():>6}    {tracker.state}", file=out)


def run_bot(cfg: ServiceConfig) -> int:
    from telewind.bot.service import BotService

    if not cfg.TELEGRAM_BOT_TOKEN:
        log.error("TELEGRAM_BOT_TOKEN not set")
        return 2

    service = BotService(cfg)
    try:
        asyncio.run(service.run())
    except KeyboardInterrupt:
        log.info("[Bot] Interrupted")
    return 0


def run_init_db(cfg: ServiceConfig) -> int:
    from telewind.db.init import init_db

    init_db(cfg.DB_PATH)
    log.info(f"Database initialised at {cfg.DB_PATH}")
    return 0


def run_pending(cfg: ServiceConfig, out=sys.stdout) -> int:
    from telewind.db.init import init_db
    from telewind.ledger.service import DeliveryLedger

    ledger = DeliveryLedger(init_db(cfg.DB_PATH))
    entries = ledger.scan_pending()
    for entry in entries:
        print(
            f"{entry.event_key}\t{entry.subscription_id}\t{entry.user_id}\t{entry.label}\t"
            f"next={entry.next_attempt_at}\tclaimed_by={entry.claimed_by or '-'}",
            file=out,
        )
    print(f"{len(entries)} unfinished deliveries", file=out)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="telewind", description="Wind alerts over Telegram")
    sub = parser.add_subparsers(dest="action", required=True)

    for name, help_text in (
        ("parse", "parse the anemometer page and show tracker steps"),
        ("run-telegram-bot", "run the telegram bot"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("-u", "--url", help="source url to download")
        p.add_argument("-s", "--speed", type=float, help="average wind speed threshold, m/s")

    sub.add_parser("init-db", help="create database tables")
    sub.add_parser("pending", help="list unfinished deliveries")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    cfg = build_config(args)
    setup_logging(cfg.LOG_LEVEL, cfg.LOG_DIR)

    if args.action == "parse":
        return run_parse(cfg)
    if args.action == "run-telegram-bot":
        return run_bot(cfg)
    if args.action == "init-db":
        return run_init_db(cfg)
    if args.action == "pending":
        return run_pending(cfg)
    return 1


if __name__ == "__main__":
    sys.exit(main())
