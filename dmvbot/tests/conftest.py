from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from dmvbot.domain import CapturedResponse, DriverUnavailableError

APPOINTMENT_ENV_VARS = (
    "BASE_URL",
    "LATITUDE",
    "LONGITUDE",
    "APPOINTMENT_TYPE_ID",
    "APPOINTMENT_TYPE_TEXT",
    "RESPONSE_URL_PATTERN",
    "ELEMENT_TIMEOUT_SECONDS",
    "RESPONSE_TIMEOUT_SECONDS",
    "LOCATIONS_TIMEOUT_SECONDS",
    "HEADLESS",
    "SLOW_MO_MS",
    "TIME_SLOT_SAMPLE_SIZE",
    "RESULTS_DIR",
    "DUMP_RESPONSES",
    "CHECK_INTERVAL_SECONDS",
    "CHECK_RETRY_ATTEMPTS",
    "STATE_FILE",
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_CHAT_ID",
)

POSITIVE_BODY = """
<div class="step-calendar">
  <script>var Dates = ["2026-04-01","2026-04-02"];</script>
</div>
"""

NEGATIVE_BODY = """
<div class="step-calendar">
  <span class="field-validation-error text-danger">This office does not currently have any appointments available in the next 90 days. Please check back later.</span>
</div>
"""


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in APPOINTMENT_ENV_VARS:
        # setenv first so that values a .env file adds are removed again on teardown.
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch


@dataclass
class FakeLocation:
    name: str | None
    # None means the AmendStep response never arrives.
    body: str | None = None
    heading: bool = False
    error_visible: bool = False
    no_dates_marker: bool = False
    first_date: bool = True
    slots: object = None
    # Name of the FakeSite method that reports the browser as gone.
    fail_at: str | None = None
    loader_stuck: bool = False


@dataclass
class FakeSite:
    """Stands in for AppointmentSite; keeps a single response buffer like the performance log."""

    locations: list[FakeLocation]
    shrink_to: int | None = None
    calls: list[tuple[str, int | None]] = field(default_factory=list)
    screenshots: list[str] = field(default_factory=list)
    _buffer: CapturedResponse | None = None
    _current: int | None = None

    def _call(self, method: str) -> FakeLocation | None:
        self.calls.append((method, self._current))
        if self._current is None:
            return None
        loc = self.locations[self._current]
        if loc.fail_at == method:
            raise DriverUnavailableError(f"browser closed during {method}")
        return loc

    def location_count(self) -> int:
        self.calls.append(("location_count", self._current))
        if self.shrink_to is not None and any(m == "return_to_list" for m, _ in self.calls):
            return self.shrink_to
        return len(self.locations)

    def location_name(self, index: int) -> str | None:
        self._current = index
        return self._call("location_name").name

    def clear_captured_response(self) -> None:
        self._call("clear_captured_response")
        self._buffer = None

    def select_location(self, index: int) -> None:
        loc = self._call("select_location")
        if loc.body is not None:
            self._buffer = CapturedResponse(url="https://example.test/Webapp/Appointment/AmendStep", status_code=200, body=loc.body)

    def wait_for_calendar_response(self) -> CapturedResponse | None:
        self._call("wait_for_calendar_response")
        return self._buffer

    def settle(self) -> bool:
        return not self._call("settle").loader_stuck

    def has_date_step_heading(self) -> bool:
        return self._call("has_date_step_heading").heading

    def has_no_appointments_error(self) -> bool:
        return self._call("has_no_appointments_error").error_visible

    def has_no_dates_marker(self) -> bool:
        return self._call("has_no_dates_marker").no_dates_marker

    def select_first_date(self) -> bool:
        return self._call("select_first_date").first_date

    def read_time_slots(self):
        loc = self._call("read_time_slots")
        if isinstance(loc.slots, Exception):
            raise loc.slots
        return loc.slots

    def screenshot(self, path: str) -> bool:
        self._call("screenshot")
        self.screenshots.append(path)
        return True

    def return_to_list(self) -> None:
        self._call("return_to_list")
        self._current = None


@pytest.fixture
def fake_site():
    def _make(*locations: FakeLocation, shrink_to: int | None = None) -> FakeSite:
        return FakeSite(locations=list(locations), shrink_to=shrink_to)

    return _make


@pytest.fixture
def location():
    return FakeLocation


@pytest.fixture
def positive_body() -> str:
    return POSITIVE_BODY


@pytest.fixture
def negative_body() -> str:
    return NEGATIVE_BODY
