from __future__ import annotations

import logging
import os
import re

from dmvbot.domain import CapturedResponse, LocationResult, RunReport

logger = logging.getLogger(__name__)

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def sanitize_filename(name: str) -> str:
    """'Raleigh (North)' -> 'raleigh-north'."""
    return _NON_ALNUM_RE.sub("-", name.lower()).strip("-") or "unknown"


def _format_available(result: LocationResult) -> str:
    line = f"  • {result.city_name}"
    if result.available_dates:
        line += f" (dates: {', '.join(result.available_dates)})"
    if result.time_slots:
        line += f"\n    times: {', '.join(result.time_slots)}"
        more = (result.total_time_slots or 0) - len(result.time_slots)
        if more > 0:
            line += f" (+{more} more)"
    return line


def format_summary(report: RunReport) -> str:
    summary = report.summary
    lines = [
        "=" * 40,
        "SUMMARY",
        "=" * 40,
    ]
    if report.degraded:
        lines.append(f"!! Run aborted early, results are partial: {report.abort_reason}")
    lines += [
        f"Total locations checked: {summary.total}",
        f"Locations with appointments: {summary.available_count}",
        f"Locations without appointments: {summary.unavailable_count}",
    ]

    available = [r for r in report.results if r.is_available]
    if available:
        lines.append("")
        lines.append("✓ Locations with availability:")
        lines.extend(_format_available(r) for r in available)
    else:
        lines.append("")
        lines.append("✗ No locations with availability found")

    if summary.unavailable_location_names:
        lines.append("")
        lines.append("Without availability: " + ", ".join(summary.unavailable_location_names))

    lines.append("=" * 40)
    return "\n".join(lines)


class ArtifactWriter:
    """Screenshots and raw response dumps. Failures are logged, never raised."""

    def __init__(self, results_dir: str, *, dump_responses: bool = False):
        self.results_dir = results_dir
        self.dump_responses = dump_responses

    def _path(self, filename: str) -> str:
        os.makedirs(self.results_dir, exist_ok=True)
        return os.path.join(self.results_dir, filename)

    def screenshot_path(self, location_name: str) -> str:
        return self._path(f"appointment-{sanitize_filename(location_name)}.png")

    def save_screenshot(self, site, location_name: str) -> str | None:
        try:
            path = self.screenshot_path(location_name)
            if not site.screenshot(path):
                logger.warning("Screenshot for %s was not written", location_name)
                return None
        except OSError as e:
            logger.warning("Failed to take screenshot for %s (%s)", location_name, e)
            return None
        return path

    def dump_response(self, location_name: str, captured: CapturedResponse) -> str | None:
        if not self.dump_responses:
            return None
        try:
            path = self._path(f"response-{sanitize_filename(location_name)}.txt")
            with open(path, "w", encoding="utf-8") as f:
                f.write(f"# {captured.status_code} {captured.url}\n")
                f.write(f"# captured at {captured.captured_at.isoformat()}\n\n")
                f.write(captured.body)
        except OSError as e:
            logger.warning("Failed to dump response for %s (%s)", location_name, e)
            return None
        return path
