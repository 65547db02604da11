#!/usr/bin/env python3
"""
Run the radio player API under uvicorn.
"""

import argparse
import logging
import os

import uvicorn

LOGGER = logging.getLogger(__name__)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8000


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Radio player API server")
    parser.add_argument("--host", default=os.environ.get("RADIO_HOST", DEFAULT_HOST))
    parser.add_argument(
        "--port", type=int, default=int(os.environ.get("RADIO_PORT", DEFAULT_PORT))
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("RADIO_LOG_LEVEL", "INFO"),
        help="Python logging level (default: INFO)",
    )
    return parser.parse_args(argv)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def main(argv=None) -> None:
    args = parse_args(argv)
    configure_logging(args.log_level)
    LOGGER.info("Starting radio API on %s:%d", args.host, args.port)
    try:
        uvicorn.run(
            "radio.api.app:app",
            host=args.host,
            port=args.port,
            log_level=args.log_level.lower(),
        )
    finally:
        from radio.api import app as app_module

        if app_module._controller is not None:
            LOGGER.info("Stopping playback...")
            app_module.set_controller(None)


if __name__ == "__main__":
    main()
