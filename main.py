import argparse
import logging

from dmvbot.config import load_settings
from dmvbot.worker import run_check_once, run_forever, _send_status_message


def _setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    # Selenium/urllib3 are very chatty on DEBUG.
    logging.getLogger("selenium").setLevel(logging.INFO)
    logging.getLogger("urllib3").setLevel(logging.INFO)


def main() -> int:
    parser = argparse.ArgumentParser(description="DmvApptBot: appointment availability watcher")
    parser.add_argument("--once", action="store_true", help="Run single check and exit")
    parser.add_argument("--verbose", action="store_true", help="Log every state transition")
    args = parser.parse_args()

    _setup_logging(args.verbose)
    try:
        settings = load_settings()
    except RuntimeError as e:
        logging.getLogger(__name__).error("Configuration error: %s", e)
        return 2

    # Startup notification (best-effort)
    try:
        _send_status_message(
            settings,
            text=(
                "DmvApptBot started.\n"
                f"Mode: {'once' if args.once else 'forever'}\n"
                f"headless={settings.headless} interval={settings.check_interval_seconds}s"
            ),
        )
    except Exception:
        logging.getLogger(__name__).warning("Failed to send Telegram startup message", exc_info=True)

    try:
        if args.once:
            report = run_check_once(settings)
            return 1 if report.degraded else 0

        run_forever(settings)
        return 0

    except Exception as e:
        # Crash notification (best-effort)
        try:
            _send_status_message(
                settings,
                text=(
                    "DmvApptBot crashed.\n"
                    f"Reason: {type(e).__name__}: {e}"
                ),
            )
        except Exception:
            logging.getLogger(__name__).warning("Failed to send Telegram crash message", exc_info=True)
        raise

    finally:
        # Process exit / stop notification (best-effort)
        try:
            _send_status_message(settings, text="DmvApptBot stopped (process exiting).")
        except Exception:
            logging.getLogger(__name__).warning("Failed to send Telegram shutdown message", exc_info=True)


if __name__ == "__main__":
    raise SystemExit(main())
