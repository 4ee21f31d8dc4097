#!/usr/bin/env python
"""Run the MA-crossover trader until interrupted.

Usage:
    python scripts/run_trader.py --config config.yaml
    python scripts/run_trader.py --config config.yaml --log-level DEBUG
    python scripts/run_trader.py --write-default config.yaml
"""
import argparse
import asyncio
import signal
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from trader.config import TraderConfig
from trader.logging_setup import logger, setup_logging
from trader.runner import TraderRunner
from trader.secrets import load_credentials


async def run(config: TraderConfig) -> None:
    runner = TraderRunner(config, load_credentials())

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(runner.stop()))
        except NotImplementedError:
            pass  # Windows: Ctrl+C raises KeyboardInterrupt instead

    await runner.start()


def main():
    parser = argparse.ArgumentParser(description="Bitget futures MA-crossover trader")
    parser.add_argument("--config", default="config.yaml", help="Path to YAML config")
    parser.add_argument("--log-level", help="Override logging.log_level from the config")
    parser.add_argument("--write-default", metavar="PATH", help="Write a default config to PATH and exit")

    args = parser.parse_args()

    if args.write_default:
        TraderConfig().to_yaml(args.write_default)
        print(f"Default config written to {args.write_default}")
        return

    try:
        config = TraderConfig.from_yaml(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Invalid configuration: {e}")
        sys.exit(2)

    setup_logging(
        log_file=config.logging.log_file,
        level=args.log_level or config.logging.log_level,
        enable_console=True,
    )

    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    except Exception:
        logger.exception("Trader crashed; exiting")
        sys.exit(1)


if __name__ == "__main__":
    main()
