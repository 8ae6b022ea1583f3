from __future__ import annotations

import json
import logging
import re

from bs4 import BeautifulSoup

from dmvbot.domain import AppointmentSignal

logger = logging.getLogger(__name__)

# Only emitted when the server renders the calendar with real date data. The
# datepicker shell (CalendarDateModel, ui-datepicker markup) is rendered even
# when no day is open, so it is not evidence of availability.
POSITIVE_MARKER = "var Dates = "

NO_APPOINTMENTS_PHRASE = "This office does not currently have any appointments available"
VALIDATION_ERROR_CLASS = "field-validation-error"

_DATE_RE = re.compile(r"(?<!\d)\d{4}-\d{2}-\d{2}(?!\d)")


def extract_dates(text: str) -> tuple[str, ...]:
    """YYYY-MM-DD substrings in first-seen order, without duplicates."""
    seen: set[str] = set()
    result: list[str] = []
    for m in _DATE_RE.finditer(text):
        value = m.group(0)
        if value in seen:
            continue
        seen.add(value)
        result.append(value)
    return tuple(result)


def _classify_payload(data: object) -> AppointmentSignal:
    if isinstance(data, list):
        dates = tuple(str(d) for d in data if isinstance(d, str))
        return AppointmentSignal(available=bool(dates), available_dates=dates)

    if isinstance(data, dict):
        raw_dates = data.get("availableDates") or []
        dates = tuple(str(d) for d in raw_dates) if isinstance(raw_dates, list) else ()
        # Only a literal JSON true counts; "false", 1 or {} do not.
        return AppointmentSignal(available=data.get("hasAppointments") is True, available_dates=dates)

    return AppointmentSignal(available=False)


def _find_no_appointments_error(body: str) -> str | None:
    soup = BeautifulSoup(body, "html.parser")
    for span in soup.find_all("span", class_=VALIDATION_ERROR_CLASS):
        text = span.get_text(" ", strip=True)
        if NO_APPOINTMENTS_PHRASE in text:
            return text
    return None


def classify_response(body: str | None) -> AppointmentSignal:
    """Turn one captured AmendStep response into an AppointmentSignal.

    First match wins:
      1. JSON payload -> read `hasAppointments` / `availableDates`.
      2. POSITIVE_MARKER present -> available, dates pulled from the body.
      3. validation error span with NO_APPOINTMENTS_PHRASE -> unavailable with message.
      4. otherwise inconclusive: unavailable, no dates, no message.

    Never raises on malformed input.
    """
    if not body:
        return AppointmentSignal(available=False)

    stripped = body.lstrip()
    if stripped[:1] in ("{", "["):
        try:
            data = json.loads(stripped)
        except (ValueError, RecursionError):
            logger.debug("Response looked like JSON but did not decode; falling back to markup checks")
        else:
            return _classify_payload(data)

    if POSITIVE_MARKER in body:
        return AppointmentSignal(available=True, available_dates=extract_dates(body))

    message = _find_no_appointments_error(body)
    if message is not None:
        return AppointmentSignal(available=False, error_message=message)

    return AppointmentSignal(available=False)
