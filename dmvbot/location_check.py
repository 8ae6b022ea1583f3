from __future__ import annotations

import enum
import logging

from dmvbot.classifier import classify_response
from dmvbot.domain import (
    UNKNOWN_LOCATION_NAME,
    DriverUnavailableError,
    DropdownSlots,
    Location,
    LocationResult,
)
from dmvbot.report import ArtifactWriter

logger = logging.getLogger(__name__)


class CheckState(enum.Enum):
    IDLE = "idle"
    SELECTING = "selecting"
    AWAITING_RESPONSE = "awaiting_response"
    CLASSIFYING = "classifying"
    DRILLING_INTO_DATES = "drilling_into_dates"
    RECORDED = "recorded"
    RETURNED = "returned"


def fallback_availability(site) -> bool:
    """Page-based guess used when no AmendStep response was captured.

    Ends optimistic: if nothing on the page settles the question the location is
    reported as available, so a real opening is never missed.
    """
    if site.has_date_step_heading():
        return True
    if site.has_no_appointments_error():
        return False
    if site.has_no_dates_marker():
        return False
    logger.warning("Page gave no availability hint either; assuming appointments are available")
    return True


class LocationChecker:
    """Drives one location of the listing to a LocationResult.

    `site` is the AppointmentSite of the run; it is owned exclusively by this
    checker while a check is in progress.
    """

    def __init__(self, site, *, time_slot_sample_size: int = 5, artifacts: ArtifactWriter | None = None):
        self._site = site
        self._sample_size = time_slot_sample_size
        self._artifacts = artifacts
        self.state = CheckState.IDLE

    def _enter(self, state: CheckState) -> None:
        logger.debug("Location check: %s -> %s", self.state.value, state.value)
        self.state = state

    def _display_name(self, index: int) -> str:
        name = self._site.location_name(index)
        if name is None:
            logger.warning("Location #%d has no readable name, using %r", index + 1, UNKNOWN_LOCATION_NAME)
            return UNKNOWN_LOCATION_NAME
        return name

    def _drill_in(self, name: str) -> tuple[tuple[str, ...], int] | None:
        try:
            if not self._site.select_first_date():
                logger.info("%s: no selectable day in the calendar", name)
                return None

            presentation = self._site.read_time_slots()
            if presentation is None:
                logger.info("%s: no time slots rendered for the first date", name)
                return None

            labels = tuple(slot.datetime_label for slot in presentation.slots)
            logger.debug(
                "%s: %d time slots (%s)",
                name,
                len(labels),
                "dropdown" if isinstance(presentation, DropdownSlots) else "toggle",
            )
            return labels[: self._sample_size], len(labels)

        except DriverUnavailableError:
            raise
        except Exception:
            # Time slots are an extra; the availability verdict stands without them.
            logger.warning("%s: could not read time slots", name, exc_info=True)
            return None

    def check(self, index: int) -> LocationResult:
        self.state = CheckState.IDLE
        location = Location(index=index, display_name=self._display_name(index))
        name = location.display_name

        self._enter(CheckState.SELECTING)
        # Anything still buffered belongs to the previous location.
        self._site.clear_captured_response()
        self._site.select_location(location.index)

        self._enter(CheckState.AWAITING_RESPONSE)
        captured = self._site.wait_for_calendar_response()

        self._enter(CheckState.CLASSIFYING)
        if not self._site.settle():
            logger.warning("%s: loading overlay still up, reading a possibly half-loaded page", name)
        dates: tuple[str, ...] | None = None
        if captured is None:
            logger.info("%s: no calendar response within the window, checking the page instead", name)
            available = fallback_availability(self._site)
        else:
            if self._artifacts is not None:
                self._artifacts.dump_response(name, captured)
            signal = classify_response(captured.body)
            available = signal.available
            dates = signal.available_dates or None
            if signal.error_message:
                logger.debug("%s: %s", name, signal.error_message)

        time_slots: tuple[str, ...] | None = None
        total_slots: int | None = None
        if available and self._sample_size > 0:
            self._enter(CheckState.DRILLING_INTO_DATES)
            drilled = self._drill_in(name)
            if drilled is not None:
                time_slots, total_slots = drilled

        result = LocationResult(
            city_name=name,
            is_available=available,
            available_dates=dates,
            time_slots=time_slots,
            total_time_slots=total_slots,
        )
        self._enter(CheckState.RECORDED)
        logger.info("%s: %s", name, "appointments available" if available else "nothing available")

        try:
            if available and self._artifacts is not None:
                self._artifacts.save_screenshot(self._site, name)
            self._site.return_to_list()
        except DriverUnavailableError as e:
            e.recorded = result
            raise

        self._enter(CheckState.RETURNED)
        return result
