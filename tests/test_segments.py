import unittest
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo
from rink_booking.booking.booking_utils import canonical_utc, slot_id, split_into_segments
from rink_booking.booking.error_utils import ValidationError
from rink_booking.booking.period import RawInterval, Segment

ARENA = ZoneInfo("America/New_York")


def arena_time(day, hour, minute=0):
    return datetime(2025, 10, day, hour, minute, tzinfo=ARENA)


def interval(start, minutes):
    return RawInterval(start, start + timedelta(minutes=minutes), "Open Ice")


class SplitIntoSegmentsTest(unittest.TestCase):

    def test_too_short_interval_yields_nothing(self):
        for minutes in (0, 1, 20, 39):
            self.assertEqual(split_into_segments(interval(arena_time(14, 9), minutes)), [])

    def test_short_interval_is_one_segment(self):
        for minutes in (40, 45, 59):
            raw = interval(arena_time(14, 9), minutes)
            self.assertEqual(split_into_segments(raw), [Segment(raw.start, raw.end)])

    def test_trailing_remainder_is_kept(self):
        segments = split_into_segments(RawInterval(arena_time(14, 9), arena_time(14, 10, 40)))
        self.assertEqual(segments, [Segment(arena_time(14, 9), arena_time(14, 10)),
                                    Segment(arena_time(14, 10), arena_time(14, 10, 40))])

    def test_short_remainder_is_dropped(self):
        segments = split_into_segments(RawInterval(arena_time(14, 9), arena_time(14, 11, 20)))
        self.assertEqual(segments, [Segment(arena_time(14, 9), arena_time(14, 10)),
                                    Segment(arena_time(14, 10), arena_time(14, 11))])

    def test_exact_hours(self):
        segments = split_into_segments(RawInterval(arena_time(14, 18), arena_time(14, 21)))
        self.assertEqual([seg.start.hour for seg in segments], [18, 19, 20])

    def test_segment_shape_across_durations(self):
        start = arena_time(14, 6, 15)
        for minutes in range(0, 301):
            segments = split_into_segments(interval(start, minutes))
            if minutes < 40:
                self.assertEqual(segments, [])
                continue
            self.assertEqual(segments[0].start, start)
            for current, following in zip(segments, segments[1:]):
                self.assertEqual(current.end, following.start)
                self.assertEqual(current.minutes, 60)
            self.assertTrue(40 <= segments[-1].minutes <= 60)
            self.assertLess(minutes - sum(seg.minutes for seg in segments), 40)

    def test_deterministic(self):
        raw = RawInterval(arena_time(14, 9), arena_time(14, 12, 50))
        self.assertEqual(split_into_segments(raw), split_into_segments(raw))

    def test_segments_keep_the_interval_timezone(self):
        segments = split_into_segments(RawInterval(arena_time(14, 9), arena_time(14, 11)))
        self.assertTrue(all(seg.start.tzinfo is ARENA for seg in segments))
        self.assertEqual(segments[0].start.isoformat(), "2025-10-14T09:00:00-04:00")

    def test_dst_fall_back_keeps_real_hours(self):
        # 00:30 EDT to 03:30 EST on 2025-11-02 is four real hours
        start = datetime(2025, 11, 2, 4, 30, tzinfo=timezone.utc).astimezone(ARENA)
        end = datetime(2025, 11, 2, 8, 30, tzinfo=timezone.utc).astimezone(ARENA)
        segments = split_into_segments(RawInterval(start, end))
        self.assertEqual(len(segments), 4)
        self.assertTrue(all(seg.duration == timedelta(hours=1) for seg in segments))

    def test_naive_interval_is_rejected(self):
        with self.assertRaises(ValidationError):
            split_into_segments(RawInterval(datetime(2025, 10, 14, 9), datetime(2025, 10, 14, 10)))


class SlotIdTest(unittest.TestCase):

    def test_canonical_utc_rendering(self):
        self.assertEqual(canonical_utc(arena_time(10, 12, 30)), "2025-10-10T16:30:00.000Z")

    def test_stable_and_fixed_length(self):
        first = slot_id(arena_time(14, 9), arena_time(14, 10))
        self.assertEqual(first, slot_id(arena_time(14, 9), arena_time(14, 10)))
        self.assertEqual(len(first), 24)
        int(first, 16)

    def test_same_instants_in_other_zone_agree(self):
        start_utc = arena_time(14, 9).astimezone(timezone.utc)
        end_utc = arena_time(14, 10).astimezone(timezone.utc)
        self.assertEqual(slot_id(start_utc, end_utc), slot_id(arena_time(14, 9), arena_time(14, 10)))

    def test_distinct_ranges_get_distinct_ids(self):
        ids = set()
        start = arena_time(14, 0)
        for offset in range(0, 24 * 60, 20):
            seg_start = start + timedelta(minutes=offset)
            ids.add(slot_id(seg_start, seg_start + timedelta(minutes=60)))
            ids.add(slot_id(seg_start, seg_start + timedelta(minutes=40)))
        self.assertEqual(len(ids), 2 * 72)

    def test_naive_datetime_is_rejected(self):
        with self.assertRaises(ValidationError):
            slot_id(datetime(2025, 10, 14, 9), datetime(2025, 10, 14, 10))


if __name__ == '__main__':
    unittest.main()
