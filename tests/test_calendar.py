import unittest
from datetime import datetime, timedelta
from unittest import mock
from zoneinfo import ZoneInfo
import httpx
from rink_booking.booking.calendar import IcsCalendarFeed, parse_ics
from rink_booking.booking.error_utils import UpstreamUnavailable

ARENA = ZoneInfo("America/New_York")
FEED_URL = "https://calendar.example.org/ical/secret/basic.ics"

SAMPLE_ICS = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//Rink//Open Ice//EN
BEGIN:VEVENT
UID:utc-block@rink
DTSTAMP:20251001T000000Z
DTSTART:20251014T130000Z
DTEND:20251014T144000Z
SUMMARY:Open Ice
END:VEVENT
BEGIN:VEVENT
UID:floating-block@rink
DTSTAMP:20251001T000000Z
DTSTART:20251015T180000
DTEND:20251015T200000
SUMMARY:Evening Ice
END:VEVENT
BEGIN:VEVENT
UID:duration-block@rink
DTSTAMP:20251001T000000Z
DTSTART:20251016T100000Z
DURATION:PT1H30M
SUMMARY:Duration Ice
END:VEVENT
BEGIN:VEVENT
UID:all-day@rink
DTSTAMP:20251001T000000Z
DTSTART;VALUE=DATE:20251017
DTEND;VALUE=DATE:20251018
SUMMARY:Rink Closed
END:VEVENT
BEGIN:VEVENT
UID:no-end@rink
DTSTAMP:20251001T000000Z
DTSTART:20251018T100000Z
SUMMARY:Open ended
END:VEVENT
END:VCALENDAR
""".replace("\n", "\r\n")


class ParseIcsTest(unittest.TestCase):

    def setUp(self):
        self.intervals = parse_ics(SAMPLE_ICS, ARENA)

    def test_only_timed_events_with_an_end_are_kept(self):
        self.assertEqual([raw.summary for raw in self.intervals], ["Open Ice", "Evening Ice", "Duration Ice"])

    def test_utc_event_is_rendered_in_arena_time(self):
        raw = self.intervals[0]
        self.assertEqual(raw.start.isoformat(), "2025-10-14T09:00:00-04:00")
        self.assertEqual(raw.minutes, 100)

    def test_floating_event_is_arena_wall_clock(self):
        raw = self.intervals[1]
        self.assertEqual(raw.start, datetime(2025, 10, 15, 18, tzinfo=ARENA))
        self.assertEqual(raw.end, datetime(2025, 10, 15, 20, tzinfo=ARENA))

    def test_duration_event(self):
        self.assertEqual(self.intervals[2].duration, timedelta(minutes=90))


class IcsCalendarFeedTest(unittest.TestCase):

    def setUp(self):
        self.feed = IcsCalendarFeed(FEED_URL, ARENA, timeout=3)

    def test_fetch_intervals(self):
        response = httpx.Response(200, content=SAMPLE_ICS.encode('utf-8'), request=httpx.Request("GET", FEED_URL))
        with mock.patch("httpx.get", return_value=response) as get:
            intervals = self.feed.fetch_intervals()
        self.assertEqual(len(intervals), 3)
        self.assertEqual(get.call_args.kwargs["timeout"], 3)

    def test_network_failure_is_upstream_error(self):
        with mock.patch("httpx.get", side_effect=httpx.ConnectError("connection refused")):
            with self.assertRaises(UpstreamUnavailable):
                self.feed.fetch_intervals()

    def test_http_error_status_is_upstream_error(self):
        response = httpx.Response(404, request=httpx.Request("GET", FEED_URL))
        with mock.patch("httpx.get", return_value=response):
            with self.assertRaises(UpstreamUnavailable):
                self.feed.fetch_intervals()


if __name__ == '__main__':
    unittest.main()
