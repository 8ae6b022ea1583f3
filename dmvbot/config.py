from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

DEFAULT_BASE_URL = "https://skiptheline.ncdot.gov/Webapp/Appointment/Index/a7ade79b-996d-4971-8766-97feb75254de"


def _parse_telegram_chat_ids(raw: str) -> tuple[str, ...]:
    # TELEGRAM_CHAT_ID supports a single value or a comma-separated list.
    #   TELEGRAM_CHAT_ID=123456789
    #   TELEGRAM_CHAT_ID=123456789,-1001234567890
    parts = [p.strip() for p in raw.split(",")]
    parts = [p for p in parts if p]

    seen: set[str] = set()
    result: list[str] = []
    for p in parts:
        # Groups/supergroups have negative ids.
        try:
            int(p)
        except ValueError as e:
            raise RuntimeError(f"Invalid TELEGRAM_CHAT_ID value: {p!r}. Expected integer chat id.") from e

        if p == "0":
            raise RuntimeError("Invalid TELEGRAM_CHAT_ID value: '0' is not a valid chat id")

        if p in seen:
            continue
        seen.add(p)
        result.append(p)

    return tuple(result)


@dataclass(frozen=True)
class Settings:
    base_url: str
    latitude: float
    longitude: float

    # Exactly one of these is set (enforced by load_settings).
    appointment_type_id: str | None
    appointment_type_text: str | None

    # Matched against the URL of every network response after a location click.
    response_url_pattern: str = "AmendStep"

    element_timeout_seconds: float = 10.0
    response_timeout_seconds: float = 10.0
    locations_timeout_seconds: float = 5.0

    headless: bool = True
    slow_mo_ms: int = 0

    time_slot_sample_size: int = 5

    results_dir: str = "test-results"
    dump_responses: bool = False

    check_interval_seconds: int = 600
    # How many times the browser start + listing preparation is attempted.
    check_retry_attempts: int = 2

    # Locations that had availability in the last complete run
    state_file: str = "state.json"

    telegram_bot_token: str | None = None
    telegram_chat_ids: tuple[str, ...] = ()

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_ids)


def _flag(name: str, default: str) -> bool:
    raw = os.getenv(name, default).strip().lower()
    return raw not in {"0", "false", "no", "off"}


def _number(name: str, default: str, cast):
    raw = os.getenv(name, default).strip()
    try:
        return cast(raw)
    except ValueError as e:
        raise RuntimeError(f"Invalid {name} value: {raw!r}") from e


def _optional(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None


def load_settings(dotenv_path: str | None = None) -> Settings:
    # Prefer .env in repo root; dotenv_path allows overriding in tests.
    load_dotenv(dotenv_path=dotenv_path, override=False)

    type_id = _optional("APPOINTMENT_TYPE_ID")
    type_text = _optional("APPOINTMENT_TYPE_TEXT")
    if type_id is None and type_text is None:
        raise RuntimeError("Set APPOINTMENT_TYPE_ID or APPOINTMENT_TYPE_TEXT to choose the appointment type")
    if type_id is not None and type_text is not None:
        raise RuntimeError("Set only one of APPOINTMENT_TYPE_ID and APPOINTMENT_TYPE_TEXT, not both")

    element_timeout = _number("ELEMENT_TIMEOUT_SECONDS", "10", float)
    response_timeout = _number("RESPONSE_TIMEOUT_SECONDS", "10", float)
    locations_timeout = _number("LOCATIONS_TIMEOUT_SECONDS", "5", float)
    for name, value in (
        ("ELEMENT_TIMEOUT_SECONDS", element_timeout),
        ("RESPONSE_TIMEOUT_SECONDS", response_timeout),
        ("LOCATIONS_TIMEOUT_SECONDS", locations_timeout),
    ):
        if value <= 0:
            raise RuntimeError(f"{name} must be > 0")

    slow_mo_ms = _number("SLOW_MO_MS", "0", int)
    if slow_mo_ms < 0:
        raise RuntimeError("SLOW_MO_MS must be >= 0")

    time_slot_sample_size = _number("TIME_SLOT_SAMPLE_SIZE", "5", int)
    if time_slot_sample_size < 0:
        raise RuntimeError("TIME_SLOT_SAMPLE_SIZE must be >= 0")

    check_retry_attempts = _number("CHECK_RETRY_ATTEMPTS", "2", int)
    if check_retry_attempts < 1:
        raise RuntimeError("CHECK_RETRY_ATTEMPTS must be >= 1")

    telegram_bot_token = _optional("TELEGRAM_BOT_TOKEN")
    telegram_chat_ids = _parse_telegram_chat_ids(os.getenv("TELEGRAM_CHAT_ID", ""))
    if telegram_bot_token and not telegram_chat_ids:
        raise RuntimeError("TELEGRAM_CHAT_ID is empty. Provide at least one chat id.")

    return Settings(
        base_url=os.getenv("BASE_URL", DEFAULT_BASE_URL),
        latitude=_number("LATITUDE", "35.7796", float),
        longitude=_number("LONGITUDE", "-78.6382", float),
        appointment_type_id=type_id,
        appointment_type_text=type_text,
        response_url_pattern=os.getenv("RESPONSE_URL_PATTERN", "AmendStep"),
        element_timeout_seconds=element_timeout,
        response_timeout_seconds=response_timeout,
        locations_timeout_seconds=locations_timeout,
        headless=_flag("HEADLESS", "1"),
        slow_mo_ms=slow_mo_ms,
        time_slot_sample_size=time_slot_sample_size,
        results_dir=os.getenv("RESULTS_DIR", "test-results"),
        dump_responses=_flag("DUMP_RESPONSES", "0"),
        check_interval_seconds=_number("CHECK_INTERVAL_SECONDS", "600", int),
        check_retry_attempts=check_retry_attempts,
        state_file=os.getenv("STATE_FILE", "state.json"),
        telegram_bot_token=telegram_bot_token,
        telegram_chat_ids=telegram_chat_ids,
    )
