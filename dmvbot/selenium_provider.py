from __future__ import annotations

import logging
import re
import time
from urllib.parse import urlsplit

from selenium import webdriver
from selenium.common.exceptions import NoSuchElementException, StaleElementReferenceException, TimeoutException
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service
from selenium.webdriver.common.by import By
from selenium.webdriver.remote.webelement import WebElement
from selenium.webdriver.support import expected_conditions as EC
from selenium.webdriver.support.ui import WebDriverWait
from webdriver_manager.chrome import ChromeDriverManager

from dmvbot.capture import drain_performance_log, wait_for_matching_response
from dmvbot.classifier import NO_APPOINTMENTS_PHRASE
from dmvbot.config import Settings
from dmvbot.domain import CapturedResponse, DriverUnavailableError, DropdownSlots, SlotPresentation, TimeSlot, ToggleSlots
from dmvbot.session import guard_session

logger = logging.getLogger(__name__)

MAKE_APPOINTMENT_BUTTON = "button#cmdMakeAppt"
BLOCK_LOADER = "#BlockLoader"
LOCATION_ITEMS = ".QflowObjectItem.form-control.ui-selectable.Active-Unit.valid"
LOCATION_NAME = "div > div:nth-child(1)"
VALIDATION_ERROR_SPAN = "span.field-validation-error"
# Field name is spelled this way by the booking site.
NO_DATES_HIDDEN_FIELD = 'input[name="StepControls[1].FieldName"][value="ErrorNoAvaiableDates"]'
DATE_STEP_HEADING_TEXT = "Select Date and Time"
SELECTABLE_DAY = 'td[data-handler="selectDay"] a'
DROPDOWN_SLOT_OPTIONS = "select option[data-datetime]"
TOGGLE_SLOT_ITEMS = "[data-datetime]:not(option)"


def start_driver(*, headless: bool) -> webdriver.Chrome:
    options = Options()
    if headless:
        options.add_argument("--headless=new")
    options.add_argument("--disable-gpu")
    options.add_argument("--no-sandbox")
    options.add_argument("--window-size=1280,1000")
    options.add_argument("--disable-dev-shm-usage")
    # Back navigation must re-render the listing, not restore a frozen page.
    options.add_argument("--disable-features=Translate,BackForwardCache")
    options.add_argument(
        "--user-agent=Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0 Safari/537.36"
    )
    # Network events land in the performance log; capture.py reads them from there.
    options.set_capability("goog:loggingPrefs", {"performance": "ALL"})

    service = Service(ChromeDriverManager().install())
    return webdriver.Chrome(service=service, options=options)


def _xpath_literal(value: str) -> str:
    if "'" not in value:
        return f"'{value}'"
    if '"' not in value:
        return f'"{value}"'
    parts = value.split("'")
    return "concat(" + ", \"'\", ".join(f"'{p}'" for p in parts) + ")"


class AppointmentSite:
    """The booking flow as seen through one exclusive browser session.

    Locations must be checked one at a time: the listing, the back stack and
    the performance log all belong to this single session.
    """

    def __init__(self, driver: webdriver.Chrome, settings: Settings):
        self._driver = driver
        self._settings = settings
        self._response_url_re = re.compile(settings.response_url_pattern)

    def _wait(self, timeout: float | None = None) -> WebDriverWait:
        return WebDriverWait(self._driver, timeout if timeout is not None else self._settings.element_timeout_seconds)

    def _pause(self) -> None:
        if self._settings.slow_mo_ms:
            time.sleep(self._settings.slow_mo_ms / 1000)

    def _wait_loader_hidden(self) -> None:
        self._wait().until(EC.invisibility_of_element_located((By.CSS_SELECTOR, BLOCK_LOADER)))

    def _locations(self) -> list[WebElement]:
        return self._driver.find_elements(By.CSS_SELECTOR, LOCATION_ITEMS)

    @guard_session
    def navigate_and_setup(self) -> None:
        parts = urlsplit(self._settings.base_url)
        origin = f"{parts.scheme}://{parts.netloc}"

        self._driver.execute_cdp_cmd("Browser.grantPermissions", {"origin": origin, "permissions": ["geolocation"]})
        self._driver.execute_cdp_cmd(
            "Emulation.setGeolocationOverride",
            {"latitude": self._settings.latitude, "longitude": self._settings.longitude, "accuracy": 100},
        )
        self._driver.execute_cdp_cmd("Network.enable", {})

        self._driver.get(self._settings.base_url)
        self._wait().until(lambda d: d.execute_script("return document.readyState") == "complete")

    @guard_session
    def click_make_appointment(self) -> None:
        button = self._wait().until(EC.element_to_be_clickable((By.CSS_SELECTOR, MAKE_APPOINTMENT_BUTTON)))
        button.click()
        self._pause()

    @guard_session
    def select_appointment_type(self, *, type_id: str | None, type_text: str | None) -> None:
        if type_id:
            locator = (By.CSS_SELECTOR, f'[data-id="{type_id}"].QflowObjectItem')
        elif type_text:
            locator = (
                By.XPATH,
                "//*[contains(concat(' ', normalize-space(@class), ' '), ' QflowObjectItem ')"
                f" and contains(normalize-space(.), {_xpath_literal(type_text)})]",
            )
        else:
            raise RuntimeError("Appointment type needs either an id or a text to match")

        option = self._wait().until(EC.visibility_of_element_located(locator))
        option.click()
        self._pause()
        self._wait_loader_hidden()

    @guard_session
    def wait_for_locations(self) -> bool:
        """True once at least one location is visible; an empty listing is a valid state."""
        self._wait_loader_hidden()
        try:
            self._wait(self._settings.locations_timeout_seconds).until(
                EC.visibility_of_element_located((By.CSS_SELECTOR, LOCATION_ITEMS))
            )
        except TimeoutException:
            return False
        return True

    @guard_session
    def location_count(self) -> int:
        return len(self._locations())

    @guard_session
    def location_name(self, index: int) -> str | None:
        try:
            name_el = self._locations()[index].find_element(By.CSS_SELECTOR, LOCATION_NAME)
            text = (name_el.get_attribute("textContent") or "").strip()
        except (IndexError, NoSuchElementException, StaleElementReferenceException) as e:
            logger.debug("Could not read name of location #%d (%s)", index, type(e).__name__)
            return None
        return text or None

    @guard_session
    def select_location(self, index: int) -> None:
        # No waiting here: the AmendStep response is awaited right after, and
        # the performance log buffers it even if it lands before we start polling.
        self._locations()[index].click()
        self._pause()

    @guard_session
    def settle(self) -> bool:
        """Wait for the loading overlay to go away; False if it is still up."""
        try:
            self._wait_loader_hidden()
        except TimeoutException:
            return False
        return True

    @guard_session
    def clear_captured_response(self) -> None:
        drain_performance_log(self._driver)

    def wait_for_calendar_response(self) -> CapturedResponse | None:
        return wait_for_matching_response(
            self._driver,
            lambda url: bool(self._response_url_re.search(url)),
            timeout=self._settings.response_timeout_seconds,
        )

    @guard_session
    def has_date_step_heading(self) -> bool:
        xpath = (
            "//*[self::h1 or self::h2 or self::h3 or self::h4 or self::legend]"
            f"[contains(normalize-space(.), {_xpath_literal(DATE_STEP_HEADING_TEXT)})]"
        )
        return any(el.is_displayed() for el in self._driver.find_elements(By.XPATH, xpath))

    @guard_session
    def has_no_appointments_error(self) -> bool:
        for span in self._driver.find_elements(By.CSS_SELECTOR, VALIDATION_ERROR_SPAN):
            try:
                if span.is_displayed() and NO_APPOINTMENTS_PHRASE in span.text:
                    return True
            except StaleElementReferenceException:
                continue
        return False

    @guard_session
    def has_no_dates_marker(self) -> bool:
        return bool(self._driver.find_elements(By.CSS_SELECTOR, NO_DATES_HIDDEN_FIELD))

    @guard_session
    def select_first_date(self) -> bool:
        try:
            day = self._wait().until(EC.element_to_be_clickable((By.CSS_SELECTOR, SELECTABLE_DAY)))
        except TimeoutException:
            return False
        day.click()
        self._pause()
        self._wait_loader_hidden()
        return True

    @staticmethod
    def _time_slot(el: WebElement) -> TimeSlot | None:
        label = (el.get_attribute("data-datetime") or "").strip()
        if not label:
            return None
        return TimeSlot(
            datetime_label=label,
            display_value=(el.get_attribute("textContent") or "").strip() or label,
            service_id=el.get_attribute("data-serviceid"),
            appointment_type_id=el.get_attribute("data-appointmenttypeid"),
        )

    @guard_session
    def read_time_slots(self) -> SlotPresentation | None:
        """Resolve which of the two slot layouts the page rendered, once."""

        def _populated(d: webdriver.Chrome) -> SlotPresentation | bool:
            options = d.find_elements(By.CSS_SELECTOR, DROPDOWN_SLOT_OPTIONS)
            if options:
                return DropdownSlots(slots=tuple(s for s in map(self._time_slot, options) if s))
            toggles = d.find_elements(By.CSS_SELECTOR, TOGGLE_SLOT_ITEMS)
            if toggles:
                return ToggleSlots(slots=tuple(s for s in map(self._time_slot, toggles) if s))
            return False

        try:
            return self._wait().until(_populated)
        except TimeoutException:
            return None

    @guard_session
    def return_to_list(self) -> None:
        self._driver.back()
        self._wait_loader_hidden()
        try:
            self._wait().until(EC.visibility_of_element_located((By.CSS_SELECTOR, LOCATION_ITEMS)))
        except TimeoutException as e:
            # Checking the next location against a half-rendered list would mix up offices.
            raise DriverUnavailableError("Location list did not come back after navigating back") from e

    @guard_session
    def screenshot(self, path: str) -> bool:
        return bool(self._driver.save_screenshot(path))
