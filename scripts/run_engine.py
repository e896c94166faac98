#!/usr/bin/env python3
"""
CryptoSage - run the decision engine from the command line.

USAGE

    # One preview cycle: decide, record as Logged, send nothing
    python scripts/run_engine.py decide

    # One manual cycle that may send an order
    python scripts/run_engine.py execute

    # Autonomous mode until Ctrl-C
    python scripts/run_engine.py run

    # Close the held position at market
    python scripts/run_engine.py force-close

    # Print status as JSON
    python scripts/run_engine.py status

Configuration comes from config.yaml (--config) and secrets from .env:
MEXC_API_KEY, MEXC_SECRET_KEY, OPENAI_API_KEY, DISCORD_WEBHOOK_URL.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from cryptosage.config import ConfigError, Credentials, Settings
from cryptosage.controller import CycleStream
from cryptosage.session import OperatingMode, build_session

logger = logging.getLogger("cryptosage")


def setup_logging(level: str, log_file: str = None) -> None:
    handlers = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
    )


async def follow(stream: CycleStream) -> int:
    """Print a cycle's events; exit code 0 on DONE, 1 on ERROR."""
    exit_code = 1
    async for event in stream:
        print(f"[{event.state.value:>9}] {event.message}")
        if event.is_terminal:
            if event.decision is not None:
                print(json.dumps(event.decision.to_dict(), indent=2, default=str))
            exit_code = 0 if event.succeeded else 1
    return exit_code


async def main() -> int:
    parser = argparse.ArgumentParser(description="CryptoSage decision and risk engine")
    parser.add_argument("command", choices=["decide", "execute", "run", "force-close", "status"])
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    parser.add_argument("--env-file", default=None, help="Path to .env (default: search upward)")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--log-file", default=None)
    args = parser.parse_args()

    setup_logging(args.log_level, args.log_file)

    try:
        settings = Settings.load_from_yaml(args.config)
    except ConfigError as e:
        logger.error(f"❌ {e}")
        return 2

    session = await build_session(settings, Credentials.from_env(args.env_file))
    try:
        await session.start()

        if args.command == "decide":
            return await follow(session.get_decision())
        if args.command == "execute":
            return await follow(session.execute())
        if args.command == "force-close":
            outcome = await session.force_close()
            if outcome is None:
                print("No position closed")
                return 1
            print(json.dumps(outcome.to_dict(), indent=2, default=str))
            return 0
        if args.command == "status":
            await session.controller.recorder.refresh()
            print(json.dumps(await session.status(), indent=2, default=str))
            return 0

        await session.set_mode(OperatingMode.AUTONOMOUS)
        while True:
            await asyncio.sleep(3600)
    finally:
        await session.shutdown()


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("Interrupted")
