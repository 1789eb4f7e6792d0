"""
Calendar feed for the rink's open ice.

The arena publishes open-ice blocks on a shared calendar (secret iCal address). Each VEVENT
with a concrete start and end becomes one RawInterval in the arena timezone.
"""
from datetime import datetime
import logging
from typing import List
from zoneinfo import ZoneInfo
import httpx
from icalendar import Calendar
from .error_utils import UpstreamUnavailable
from .period import RawInterval

logger = logging.getLogger(__name__)


def _as_arena_time(value, zone: ZoneInfo):
    # All-day events are dates, not open ice blocks
    if not isinstance(value, datetime):
        return None
    # Floating times are arena wall-clock times
    if value.tzinfo is None:
        return value.replace(tzinfo=zone)
    return value.astimezone(zone)


def parse_ics(content, zone: ZoneInfo) -> List[RawInterval]:
    """
    Parses ICS text/bytes into raw intervals. Events missing a start or an end (DTEND or DURATION) are skipped.

    Raises ValueError if the content is not a calendar.
    """
    calendar = Calendar.from_ical(content)
    intervals = []
    for event in calendar.walk('VEVENT'):
        dtstart = event.get('DTSTART')
        if dtstart is None:
            continue
        start = _as_arena_time(dtstart.dt, zone)
        if start is None:
            continue
        if event.get('DTEND') is not None:
            end = _as_arena_time(event.get('DTEND').dt, zone)
        elif event.get('DURATION') is not None:
            end = start + event.get('DURATION').dt
        else:
            end = None
        if end is None or end <= start:
            continue
        intervals.append(RawInterval(start, end, str(event.get('SUMMARY', ''))))
    return intervals


class IcsCalendarFeed:

    def __init__(self, url: str, zone: ZoneInfo, timeout: float = 10.0):
        self._url = url
        self._zone = zone
        self._timeout = timeout

    def fetch_intervals(self) -> List[RawInterval]:
        """
        Fetches and parses the feed. Any network, HTTP or parse error is a hard failure for the caller.
        """
        logger.info("[ICS] Fetching feed from %s", httpx.URL(self._url).host)
        try:
            response = httpx.get(self._url, timeout=self._timeout, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"[ICS] Fetch failed: {e}")
            raise UpstreamUnavailable("Failed to fetch ICS. Use the Secret iCal address.")
        try:
            intervals = parse_ics(response.content, self._zone)
        except ValueError as e:
            logger.error(f"[ICS] Parse failed: {e}")
            raise UpstreamUnavailable("Failed to parse ICS feed.", retryable=False)
        logger.info("[ICS] VEVENT intervals: %s", len(intervals))
        return intervals
