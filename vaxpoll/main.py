"""
CLI entrypoint: vaxpoll -c config.json [-v]

Loads .env and the registration file, starts the engine and blocks until
SIGINT/SIGTERM, then stops gracefully.
"""
import argparse
import logging
import signal
import sys
import threading
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError

# Load .env from the working directory before settings are read
load_dotenv(Path.cwd() / ".env")

from vaxpoll import __version__
from vaxpoll.config import Settings, get_engine_config
from vaxpoll.core.errors import ConfigurationError
from vaxpoll.core.registration import load_config
from vaxpoll.engine import Engine

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vaxpoll",
        description="Polls the available appointments for vaccination",
    )
    parser.add_argument("-c", "--config", required=True, help="Configuration JSON file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = Settings()
        logging.basicConfig(level=logging.INFO if args.verbose else settings.log_level, format=LOG_FORMAT)
    except (ValidationError, ValueError) as e:
        print(f"vaxpoll: invalid settings: {e}", file=sys.stderr)
        return 2

    try:
        app_config = load_config(args.config)
        engine = Engine.from_config(app_config, get_engine_config(settings))
    except ConfigurationError as e:
        print(f"vaxpoll: {e}", file=sys.stderr)
        return 2

    stop_requested = threading.Event()

    def _on_signal(signum, _frame):
        logger.warning("Received signal %s, shutting down", signum)
        stop_requested.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    engine.start()
    # Short waits keep the main thread responsive to signals
    while not stop_requested.wait(1.0):
        pass
    engine.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
