from __future__ import annotations

import pytest
from selenium.common.exceptions import TimeoutException

from dmvbot.domain import DriverUnavailableError, DropdownSlots, LocationResult, TimeSlot, ToggleSlots
from dmvbot.location_check import CheckState, LocationChecker, fallback_availability
from dmvbot.report import ArtifactWriter


def _slots(n: int) -> tuple[TimeSlot, ...]:
    return tuple(TimeSlot(datetime_label=f"4/1/2026 {8 + i}:00:00 AM", display_value=f"{8 + i}:00 AM") for i in range(n))


def test_available_location_with_dropdown_slots(fake_site, location, positive_body: str) -> None:
    site = fake_site(location("Raleigh", body=positive_body, slots=DropdownSlots(slots=_slots(7))))
    checker = LocationChecker(site, time_slot_sample_size=5)

    result = checker.check(0)

    assert result == LocationResult(
        city_name="Raleigh",
        is_available=True,
        available_dates=("2026-04-01", "2026-04-02"),
        time_slots=tuple(s.datetime_label for s in _slots(5)),
        total_time_slots=7,
    )
    assert checker.state is CheckState.RETURNED


def test_toggle_slots_are_read_the_same_way(fake_site, location, positive_body: str) -> None:
    site = fake_site(location("Cary", body=positive_body, slots=ToggleSlots(slots=_slots(2))))

    result = LocationChecker(site).check(0)

    assert result.time_slots == tuple(s.datetime_label for s in _slots(2))
    assert result.total_time_slots == 2


def test_unavailable_location_skips_drill_in(fake_site, location, negative_body: str) -> None:
    site = fake_site(location("Durham", body=negative_body))

    result = LocationChecker(site).check(0)

    assert result == LocationResult(city_name="Durham", is_available=False)
    methods = [m for m, _ in site.calls]
    assert "select_first_date" not in methods
    assert "has_date_step_heading" not in methods
    assert methods[-1] == "return_to_list"


def test_inconclusive_response_is_treated_as_unavailable(fake_site, location) -> None:
    # A captured but marker-free response never falls back to the optimistic page check.
    site = fake_site(location("Apex", body="<div class='calendar-shell'></div>"))

    result = LocationChecker(site).check(0)

    assert result.is_available is False
    assert "has_date_step_heading" not in [m for m, _ in site.calls]


def test_previous_response_is_cleared_before_selecting(fake_site, location, positive_body: str) -> None:
    site = fake_site(
        location("Raleigh", body=positive_body, slots=DropdownSlots(slots=())),
        location("Garner", body=None, error_visible=True),
    )
    checker = LocationChecker(site)

    first = checker.check(0)
    second = checker.check(1)

    assert first.is_available is True
    assert second.is_available is False

    methods = [m for m, i in site.calls if i == 1]
    assert methods.index("clear_captured_response") < methods.index("select_location")


def test_missing_name_falls_back_to_unknown(fake_site, location, negative_body: str) -> None:
    site = fake_site(location(None, body=negative_body))
    assert LocationChecker(site).check(0).city_name == "Unknown"


def test_timeout_with_inconclusive_page_defaults_to_available(fake_site, location) -> None:
    site = fake_site(location("Wilson", body=None, first_date=False))

    result = LocationChecker(site).check(0)

    assert result.is_available is True
    assert result.available_dates is None
    assert result.time_slots is None


@pytest.mark.parametrize(
    "flags, expected",
    [
        ({"heading": True}, True),
        ({"heading": True, "error_visible": True}, True),
        ({"error_visible": True}, False),
        ({"no_dates_marker": True}, False),
        ({}, True),
    ],
)
def test_fallback_heuristic_order(fake_site, location, flags: dict, expected: bool) -> None:
    site = fake_site(location("X", **flags))
    site.location_name(0)
    assert fallback_availability(site) is expected


def test_drill_in_failure_keeps_availability(fake_site, location, positive_body: str) -> None:
    site = fake_site(location("Raleigh", body=positive_body, slots=TimeoutException("slots never rendered")))

    result = LocationChecker(site).check(0)

    assert result.is_available is True
    assert result.available_dates == ("2026-04-01", "2026-04-02")
    assert result.time_slots is None


def test_sample_size_zero_skips_drill_in(fake_site, location, positive_body: str) -> None:
    site = fake_site(location("Raleigh", body=positive_body))

    result = LocationChecker(site, time_slot_sample_size=0).check(0)

    assert result.is_available is True
    assert "select_first_date" not in [m for m, _ in site.calls]


def test_driver_loss_during_drill_in_propagates(fake_site, location, positive_body: str) -> None:
    site = fake_site(location("Raleigh", body=positive_body, fail_at="read_time_slots"))
    checker = LocationChecker(site)

    with pytest.raises(DriverUnavailableError) as exc_info:
        checker.check(0)

    assert exc_info.value.recorded is None
    assert checker.state is CheckState.DRILLING_INTO_DATES


def test_driver_loss_while_returning_keeps_recorded_result(fake_site, location, negative_body: str) -> None:
    site = fake_site(location("Durham", body=negative_body, fail_at="return_to_list"))

    with pytest.raises(DriverUnavailableError) as exc_info:
        LocationChecker(site).check(0)

    assert exc_info.value.recorded == LocationResult(city_name="Durham", is_available=False)


def test_screenshot_taken_only_for_available_locations(fake_site, location, positive_body, negative_body, tmp_path) -> None:
    site = fake_site(
        location("Raleigh (North)", body=positive_body, slots=DropdownSlots(slots=())),
        location("Durham", body=negative_body),
    )
    checker = LocationChecker(site, artifacts=ArtifactWriter(str(tmp_path)))

    checker.check(0)
    checker.check(1)

    assert site.screenshots == [str(tmp_path / "appointment-raleigh-north.png")]


def test_response_dump_written_when_enabled(fake_site, location, negative_body: str, tmp_path) -> None:
    site = fake_site(location("Rocky Mount", body=negative_body))

    LocationChecker(site, artifacts=ArtifactWriter(str(tmp_path), dump_responses=True)).check(0)

    dumped = (tmp_path / "response-rocky-mount.txt").read_text(encoding="utf-8")
    assert "AmendStep" in dumped
    assert "field-validation-error" in dumped


def test_stuck_loading_overlay_is_logged(fake_site, location, caplog) -> None:
    site = fake_site(location("Wilson", body=None, first_date=False, loader_stuck=True))

    result = LocationChecker(site).check(0)

    assert result.is_available is True
    assert "loading overlay still up" in caplog.text
