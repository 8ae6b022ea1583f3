from __future__ import annotations

import functools
from typing import Callable, TypeVar

import urllib3.exceptions
from selenium.common.exceptions import InvalidSessionIdException, NoSuchWindowException, WebDriverException

from dmvbot.domain import DriverUnavailableError

T = TypeVar("T")

# Chrome/chromedriver wording for a browser that is no longer there.
_LOST_SESSION_HINTS = (
    "not connected to devtools",
    "disconnected",
    "chrome not reachable",
    "session deleted",
    "invalid session id",
    "target window already closed",
    "no such window",
    "browser has closed",
)


def is_session_lost(exc: BaseException) -> bool:
    if isinstance(exc, DriverUnavailableError):
        return True
    if isinstance(exc, (InvalidSessionIdException, NoSuchWindowException)):
        return True
    if isinstance(exc, WebDriverException):
        msg = (exc.msg or str(exc)).lower()
        return any(h in msg for h in _LOST_SESSION_HINTS)
    # A dead chromedriver surfaces from the HTTP client (MaxRetryError, ProtocolError).
    return isinstance(exc, (urllib3.exceptions.HTTPError, ConnectionError))


def guard_session(func: Callable[..., T]) -> Callable[..., T]:
    """Re-raise browser-session loss as DriverUnavailableError, leave other errors alone."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> T:
        try:
            return func(*args, **kwargs)
        except DriverUnavailableError:
            raise
        except Exception as e:
            if is_session_lost(e):
                raise DriverUnavailableError(f"Browser session lost in {func.__name__}: {type(e).__name__}: {e}") from e
            raise

    return wrapper
