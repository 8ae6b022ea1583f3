from __future__ import annotations

import logging
import time

from selenium import webdriver
from tenacity import RetryCallState, retry, stop_after_attempt, wait_exponential

from dmvbot.aggregator import check_all_locations
from dmvbot.config import Settings
from dmvbot.domain import RunReport, RunSummary
from dmvbot.location_check import LocationChecker
from dmvbot.report import ArtifactWriter, format_summary
from dmvbot.selenium_provider import AppointmentSite, start_driver
from dmvbot.state_file import load_available_locations, save_available_locations
from dmvbot.telegram_notifier import send_telegram_message

logger = logging.getLogger(__name__)


def _broadcast_telegram(settings: Settings, text: str) -> None:
    if not settings.telegram_enabled:
        logger.debug("Telegram is not configured, not sending: %s", text.splitlines()[0] if text else "")
        return

    errors: list[tuple[str, Exception]] = []

    for chat_id in settings.telegram_chat_ids:
        try:
            send_telegram_message(
                bot_token=settings.telegram_bot_token,
                chat_id=chat_id,
                text=text,
            )
        except Exception as e:
            # Best-effort: don't stop sending to other chat_ids.
            logger.warning("Failed to send telegram message to chat_id=%s (%s: %s)", chat_id, type(e).__name__, e)
            errors.append((chat_id, e))

    if errors:
        failed = ", ".join([cid for cid, _ in errors])
        raise RuntimeError(f"Failed to send telegram message to some recipients: {failed}")


def _send_status_message(settings: Settings, text: str) -> None:
    _broadcast_telegram(settings, text)


def _short_exc(retry_state: RetryCallState) -> str | None:
    if retry_state.outcome is None or not retry_state.outcome.failed:
        return None
    exc = retry_state.outcome.exception()
    if exc is None:
        return None
    msg = str(exc).strip().splitlines()[0] if str(exc).strip() else ""
    return f"{type(exc).__name__}: {msg}" if msg else type(exc).__name__


def _log_before_attempt(retry_state: RetryCallState) -> None:
    logger.info("Attempt %s: opening the location listing", retry_state.attempt_number)


def _log_after_attempt(retry_state: RetryCallState) -> None:
    if retry_state.outcome is not None and retry_state.outcome.failed:
        reason = _short_exc(retry_state)
        if reason:
            logger.warning("Attempt %s failed (%s)", retry_state.attempt_number, reason)
        else:
            logger.warning("Attempt %s failed", retry_state.attempt_number)


def _log_before_sleep(retry_state: RetryCallState) -> None:
    sleep_seconds = getattr(retry_state.next_action, "sleep", None)
    if sleep_seconds is None:
        logger.info("Waiting before the next attempt...")
        return
    logger.info("Waiting %.0fs before attempt %s", sleep_seconds, retry_state.attempt_number + 1)


def _quit(driver: webdriver.Chrome) -> None:
    try:
        driver.quit()
    except Exception:
        logger.warning("Failed to quit driver cleanly", exc_info=True)


def _open_listing(settings: Settings) -> tuple[webdriver.Chrome, AppointmentSite, bool]:
    logger.info("Starting browser (headless=%s)", settings.headless)
    driver = start_driver(headless=settings.headless)
    site = AppointmentSite(driver, settings)

    try:
        logger.info("Opening %s", settings.base_url)
        site.navigate_and_setup()
        site.click_make_appointment()
        site.select_appointment_type(type_id=settings.appointment_type_id, type_text=settings.appointment_type_text)
        has_locations = site.wait_for_locations()
    except BaseException:
        _quit(driver)
        raise

    return driver, site, has_locations


def _open_listing_with_retry(settings: Settings) -> tuple[webdriver.Chrome, AppointmentSite, bool]:
    decorated = retry(
        stop=stop_after_attempt(settings.check_retry_attempts),
        wait=wait_exponential(multiplier=2, min=2, max=10),
        before=_log_before_attempt,
        after=_log_after_attempt,
        before_sleep=_log_before_sleep,
        reraise=True,
    )(_open_listing)

    return decorated(settings)


def _run_check_once(settings: Settings) -> RunReport:
    driver, site, has_locations = _open_listing_with_retry(settings)

    try:
        if not has_locations:
            logger.info("No locations are listed for this appointment type right now")
            return RunReport(results=(), summary=RunSummary.from_results([]))

        checker = LocationChecker(
            site,
            time_slot_sample_size=settings.time_slot_sample_size,
            artifacts=ArtifactWriter(settings.results_dir, dump_responses=settings.dump_responses),
        )
        return check_all_locations(site, checker)
    finally:
        _quit(driver)


def run_check_once(settings: Settings) -> RunReport:
    try:
        report = _run_check_once(settings)
        summary_text = format_summary(report)
        logger.info("Run finished\n%s", summary_text)

        if report.degraded:
            # Partial results say nothing about the offices that were skipped,
            # so the state file keeps the last complete run.
            _send_status_message(
                settings,
                text=f"Check aborted early (browser became unusable).\n\n{summary_text}\n\nLink: {settings.base_url}",
            )
            return report

        previous = load_available_locations(settings.state_file)
        current = set(report.summary.available_location_names)
        newly_available = current - previous

        logger.info(
            "Available locations: current=%d previous=%d new=%d",
            len(current),
            len(previous),
            len(newly_available),
        )

        if newly_available:
            text = (
                "New appointment availability: "
                f"{', '.join(sorted(newly_available))}\n\n"
                f"{summary_text}\n\n"
                f"Link: {settings.base_url}"
            )
            _broadcast_telegram(settings, text)
            logger.info("Telegram notification sent.")
        else:
            _send_status_message(
                settings,
                text=(
                    "Check done: no newly available locations.\n"
                    f"Checked: {report.summary.total}, with appointments: {report.summary.available_count}\n"
                    f"Link: {settings.base_url}"
                ),
            )

        save_available_locations(settings.state_file, current)
        logger.info("State saved to %s", settings.state_file)
        return report

    except Exception as e:
        logger.error("Check failed (%s: %s)", type(e).__name__, e)
        try:
            _send_status_message(
                settings,
                text=(
                    "Check FAILED.\n"
                    f"Reason: {type(e).__name__}: {e}\n"
                    f"Link: {settings.base_url}"
                ),
            )
        except Exception:
            logger.warning("Failed to send telegram status message", exc_info=True)
        raise


def run_forever(settings: Settings) -> None:
    logger.info("Worker started. Interval=%ss", settings.check_interval_seconds)
    while True:
        try:
            run_check_once(settings)
        except Exception as e:
            # Already logged in run_check_once().
            logger.error("Check failed in run_forever (%s: %s)", type(e).__name__, e)
        time.sleep(settings.check_interval_seconds)
