from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Mapping, Union

UNKNOWN_LOCATION_NAME = "Unknown"


@dataclass(frozen=True)
class Location:
    """One bookable office as rendered in the current listing.

    `index` is only valid for the render it was read from.
    """

    index: int
    display_name: str = UNKNOWN_LOCATION_NAME


@dataclass(frozen=True)
class CapturedResponse:
    url: str
    status_code: int
    body: str
    headers: Mapping[str, str] = field(default_factory=dict)
    captured_at: dt.datetime = field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))


@dataclass(frozen=True)
class AppointmentSignal:
    available: bool
    available_dates: tuple[str, ...] = ()
    error_message: str | None = None

    def __post_init__(self) -> None:
        if self.error_message is not None and self.available:
            raise ValueError("A signal carrying an error message cannot be available")


@dataclass(frozen=True)
class TimeSlot:
    datetime_label: str  # e.g. "3/5/2026 8:15:00 AM"
    display_value: str
    service_id: str | None = None
    appointment_type_id: str | None = None


@dataclass(frozen=True)
class DropdownSlots:
    """Times rendered as <option data-datetime=...> inside a select."""

    slots: tuple[TimeSlot, ...]


@dataclass(frozen=True)
class ToggleSlots:
    """Times rendered as a list of toggle buttons."""

    slots: tuple[TimeSlot, ...]


SlotPresentation = Union[DropdownSlots, ToggleSlots]


@dataclass(frozen=True)
class LocationResult:
    city_name: str
    is_available: bool
    available_dates: tuple[str, ...] | None = None
    time_slots: tuple[str, ...] | None = None
    total_time_slots: int | None = None


@dataclass(frozen=True)
class RunSummary:
    total: int
    available_count: int
    unavailable_count: int
    available_location_names: tuple[str, ...]
    unavailable_location_names: tuple[str, ...]

    @classmethod
    def from_results(cls, results: tuple[LocationResult, ...] | list[LocationResult]) -> "RunSummary":
        available = [r.city_name for r in results if r.is_available]
        unavailable = [r.city_name for r in results if not r.is_available]
        return cls(
            total=len(results),
            available_count=len(available),
            unavailable_count=len(unavailable),
            available_location_names=tuple(available),
            unavailable_location_names=tuple(unavailable),
        )


@dataclass(frozen=True)
class RunReport:
    results: tuple[LocationResult, ...]
    summary: RunSummary
    degraded: bool = False
    # Only set for degraded runs.
    abort_reason: str | None = None


class DriverUnavailableError(RuntimeError):
    """The browser session is gone (closed window, dead DevTools connection, ...).

    Unlike every other failure during a location check this one must reach the
    aggregator: continuing would record "no appointments" for offices that were
    never looked at.

    `recorded` carries a result that was already complete when the session was
    lost (e.g. while navigating back to the listing).
    """

    def __init__(self, message: str, *, recorded: LocationResult | None = None):
        super().__init__(message)
        self.recorded = recorded
