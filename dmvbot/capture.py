"""Network response capture over Chrome's performance log.

The driver must be started with the `goog:loggingPrefs` performance capability
(see selenium_provider.start_driver). Every `get_log("performance")` call
consumes the buffered events, which is what makes `drain_performance_log`
a reset.
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Any, Callable, Iterator

from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.support.ui import WebDriverWait

from dmvbot.domain import CapturedResponse
from dmvbot.session import guard_session, is_session_lost

logger = logging.getLogger(__name__)


def _network_events(driver: Any) -> Iterator[tuple[str, dict]]:
    for entry in driver.get_log("performance"):
        try:
            message = json.loads(entry["message"])["message"]
        except (KeyError, TypeError, ValueError):
            continue
        method = message.get("method", "")
        if method.startswith("Network."):
            yield method, message.get("params") or {}


@guard_session
def drain_performance_log(driver: Any) -> int:
    """Drop buffered network events so the next wait only sees new traffic."""
    return len(driver.get_log("performance"))


def _read_body(driver: Any, request_id: str) -> str | None:
    try:
        result = driver.execute_cdp_cmd("Network.getResponseBody", {"requestId": request_id})
    except WebDriverException as e:
        if is_session_lost(e):
            raise
        # The body can be evicted before we ask for it (redirects, big pages).
        logger.debug("Response body for %s not available (%s)", request_id, e.msg)
        return None

    body = result.get("body", "")
    if result.get("base64Encoded"):
        return base64.b64decode(body).decode("utf-8", errors="replace")
    return body


@guard_session
def wait_for_matching_response(
    driver: Any,
    predicate: Callable[[str], bool],
    *,
    timeout: float,
    poll_seconds: float = 0.25,
) -> CapturedResponse | None:
    """Wait up to `timeout` for a finished response whose URL satisfies `predicate`.

    Returns None when the window elapses without a match.
    """
    pending: dict[str, dict] = {}

    def _poll(_: object) -> CapturedResponse | bool:
        for method, params in _network_events(driver):
            request_id = params.get("requestId")
            if method == "Network.responseReceived":
                response = params.get("response") or {}
                if predicate(response.get("url", "")):
                    pending[request_id] = response
                continue

            if method != "Network.loadingFinished" or request_id not in pending:
                continue

            response = pending.pop(request_id)
            body = _read_body(driver, request_id)
            if body is None:
                continue
            return CapturedResponse(
                url=response.get("url", ""),
                status_code=int(response.get("status", 0)),
                body=body,
                headers=dict(response.get("headers") or {}),
            )
        return False

    try:
        return WebDriverWait(driver, timeout, poll_frequency=poll_seconds).until(_poll)
    except TimeoutException:
        return None
