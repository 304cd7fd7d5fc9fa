"""
main.py — stayonline Entry Point

Keeps an account's presence online on the real-time gateway, with an
operator console for changing status at runtime.

Usage:
    python main.py                          # gateway session + console
    python main.py --no-console             # headless (e.g. under systemd)
    python main.py --log-level DEBUG        # verbose logging
    python main.py --config path/to/config.yaml

Exit codes:
    0  graceful shutdown (exit command, SIGINT, SIGTERM)
    1  invalid configuration or token, unresolved endpoint,
       or reconnect attempts exhausted
"""

from __future__ import annotations

# ─────────────────────────────────────────────────────────────────────────────
# Load environment variables before anything reads them
# ─────────────────────────────────────────────────────────────────────────────

from dotenv import load_dotenv
from pathlib import Path

ENV_PATH = Path(__file__).parent / ".env"
load_dotenv(dotenv_path=ENV_PATH)

# ─────────────────────────────────────────────────────────────────────────────
import argparse
import asyncio
import signal
import sys
from typing import Optional, Sequence


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="stayonline",
        description="stayonline — keep a gateway presence online around the clock",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $STAYONLINE_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    parser.add_argument(
        "--no-console",
        action="store_true",
        default=False,
        help="Do not start the interactive operator console",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace):
    """
    Load config, validate it fully, and set up logging.
    Returns (settings, log) ready for use.

    Exits with code 1 (after printing a clear message) if:
      - config.yaml or the environment has invalid values (ValidationError)
      - the token is missing or malformed (ConfigError from validate_all())
    """
    from config.settings import load_settings
    from exceptions import ConfigError
    from observability.logger import setup_logging, get_logger
    from pydantic import ValidationError

    # -- Load and parse -------------------------------------------------------
    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {e['loc'][-1] if e['loc'] else '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\n❌  Config validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your .env file and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except (OSError, ValueError, TypeError) as exc:
        print(
            f"\n❌  Failed to load config: {type(exc).__name__}: {exc}\n",
            file=sys.stderr,
        )
        sys.exit(1)

    # -- Cross-field validation -----------------------------------------------
    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    # -- Logging --------------------------------------------------------------
    setup_logging(
        level=args.log_level or settings.log_level,
        log_dir=settings.log_dir,
        json_format=settings.logging.json_format,
        console_output=settings.logging.console_output,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )

    log = get_logger("stayonline.main")
    return settings, log


def _install_signal_handlers(manager, log) -> set[asyncio.Task]:
    """SIGINT/SIGTERM trigger a cooperative shutdown of the session."""
    loop = asyncio.get_running_loop()
    pending: set[asyncio.Task] = set()

    def _on_signal(signame: str) -> None:
        log.info("stayonline.signal", signal=signame)
        task = loop.create_task(manager.shutdown())
        pending.add(task)
        task.add_done_callback(pending.discard)

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_signal, sig.name)
        except (NotImplementedError, RuntimeError):
            # add_signal_handler is unavailable on Windows event loops
            log.debug("stayonline.signal_handler_unavailable", signal=sig.name)
    return pending


async def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    settings, log = bootstrap(args)

    from exceptions import DiscoveryError, ExhaustedRetriesError
    from gateway.session_manager import GatewaySessionManager
    from interfaces.console import OperatorConsole

    log.info(
        "stayonline.starting",
        status=settings.status,
        custom_status=settings.custom_status,
        discovery_url=settings.gateway.discovery_url,
        max_reconnect_attempts=settings.gateway.max_reconnect_attempts,
    )

    manager = GatewaySessionManager.from_settings(settings)
    _install_signal_handlers(manager, log)

    console_task: Optional[asyncio.Task] = None
    if not args.no_console:
        console = OperatorConsole(manager)
        console_task = asyncio.create_task(console.run(), name="operator-console")

    try:
        await manager.run()
    except DiscoveryError as e:
        log.error("stayonline.discovery_failed", error=str(e))
        print(f"\n❌  Failed to get gateway URL: {e}\n", file=sys.stderr)
        return 1
    except ExhaustedRetriesError as e:
        log.error("stayonline.retries_exhausted", attempts=e.attempts, last_close_code=e.last_close_code)
        print(f"\n❌  Max reconnection attempts reached: {e}\n", file=sys.stderr)
        return 1
    finally:
        if console_task is not None and not console_task.done():
            console_task.cancel()
            try:
                await console_task
            except asyncio.CancelledError:
                pass
        await manager.shutdown()

    log.info("stayonline.stopped")
    return 0


def run() -> None:
    """Console-script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
