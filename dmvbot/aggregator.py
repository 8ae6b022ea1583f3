from __future__ import annotations

import logging

from dmvbot.domain import DriverUnavailableError, LocationResult, RunReport, RunSummary
from dmvbot.location_check import LocationChecker

logger = logging.getLogger(__name__)


def _report(results: list[LocationResult], *, abort_reason: str | None = None) -> RunReport:
    return RunReport(
        results=tuple(results),
        summary=RunSummary.from_results(results),
        degraded=abort_reason is not None,
        abort_reason=abort_reason,
    )


def check_all_locations(site, checker: LocationChecker) -> RunReport:
    """Check every location of the current listing, one after another.

    Stops at the first DriverUnavailableError and returns what was recorded so
    far as a degraded report. Locations after that point are left out rather
    than reported as unavailable.
    """
    results: list[LocationResult] = []
    try:
        count = site.location_count()
    except DriverUnavailableError as e:
        logger.error("Browser became unusable before the first location (%s); stopping", e)
        return _report(results, abort_reason=str(e))
    logger.info("Found %d locations to check", count)

    for i in range(count):
        try:
            # The listing is re-rendered after every back navigation.
            current = site.location_count()
            if i >= current:
                reason = f"Location list shrank from {count} to {current} entries during the run"
                logger.error("%s; stopping", reason)
                return _report(results, abort_reason=reason)

            logger.info("Checking location %d/%d", i + 1, count)
            results.append(checker.check(i))

        except DriverUnavailableError as e:
            if e.recorded is not None:
                results.append(e.recorded)
            logger.error("Browser became unusable at location %d/%d (%s); stopping", i + 1, count, e)
            return _report(results, abort_reason=str(e))

    return _report(results)
