"""
Pricing engine for ice time.

Price is integrated over a rate table one minute at a time:
    per-minute price = round_half_up(hourly_rate / 60)
    total            = sum of per-minute prices for every minute in [start, end)

Each minute is looked up with its own local day type and minute-of-day, so a segment
that crosses a band edge or midnight into the weekend is priced correctly.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

WEEKDAY = 'weekday'
WEEKEND = 'weekend'
DAY_TYPES = (WEEKDAY, WEEKEND)

MINUTES_PER_DAY = 24 * 60
ONE_MINUTE = timedelta(minutes=1)


def hhmm(value: str) -> int:
    """'05:35' -> minute of day"""
    hours, minutes = value.split(':')
    return int(hours) * 60 + int(minutes)


def day_type_of(local: datetime) -> str:
    # Saturday = 5, Sunday = 6
    return WEEKEND if local.weekday() >= 5 else WEEKDAY


@dataclass(frozen=True)
class RateBand:
    day_type: str
    start_minute: int
    end_minute: int
    rate_minor_units_per_hour: int

    def covers(self, day_type: str, minute_of_day: int) -> bool:
        return self.day_type == day_type and self.start_minute <= minute_of_day < self.end_minute

    @property
    def per_minute(self) -> int:
        # Half-up rounding of rate / 60 in integer arithmetic
        return (self.rate_minor_units_per_hour + 30) // 60


class RateTable:
    """
    Ordered list of rate bands. First matching band wins, no match means the minute isn't billable.
    """

    def __init__(self, bands: Iterable[RateBand]):
        self._bands = tuple(bands)
        for band in self._bands:
            self._check(band)

    @staticmethod
    def _check(band: RateBand):
        if band.day_type not in DAY_TYPES:
            raise ValueError(f"Unknown day type: {band.day_type}")
        if not 0 <= band.start_minute < band.end_minute <= MINUTES_PER_DAY:
            raise ValueError(f"Invalid band range: {band.start_minute}-{band.end_minute}")
        if band.rate_minor_units_per_hour < 0:
            raise ValueError(f"Negative rate: {band.rate_minor_units_per_hour}")

    def band_for(self, day_type: str, minute_of_day: int) -> Optional[RateBand]:
        for band in self._bands:
            if band.covers(day_type, minute_of_day):
                return band
        return None

    def minute_price(self, day_type: str, minute_of_day: int) -> int:
        band = self.band_for(day_type, minute_of_day)
        return band.per_minute if band else 0


# Rates in USD cents per hour
DEFAULT_RATE_TABLE = RateTable([
    RateBand(WEEKDAY, hhmm('05:35'), hhmm('06:35'), 25000),
    RateBand(WEEKDAY, hhmm('06:35'), hhmm('15:45'), 49500),
    RateBand(WEEKDAY, hhmm('15:45'), hhmm('21:45'), 94500),
    RateBand(WEEKDAY, hhmm('21:45'), hhmm('22:45'), 49500),
    RateBand(WEEKEND, hhmm('05:50'), hhmm('06:50'), 25000),
    RateBand(WEEKEND, hhmm('06:50'), hhmm('21:45'), 94500),
    RateBand(WEEKEND, hhmm('21:45'), hhmm('22:45'), 49500),
])


class PricingEngine:

    def __init__(self, zone: ZoneInfo, rate_table: RateTable = DEFAULT_RATE_TABLE):
        self._zone = zone
        self._rate_table = rate_table

    @property
    def zone(self) -> ZoneInfo:
        return self._zone

    def price_of(self, start: datetime, end: datetime) -> int:
        """
        Exact price of [start, end) in minor units.

        Fails closed: naive or inverted ranges price to 0 and callers must treat 0 as non-billable.
        Work is proportional to the number of minutes, no assumption about 60 minute inputs.
        """
        if not isinstance(start, datetime) or not isinstance(end, datetime):
            return 0
        if start.tzinfo is None or end.tzinfo is None:
            return 0
        if end <= start:
            return 0

        total = 0
        # Step in absolute time, look each minute up on the arena's wall clock
        minute = start.astimezone(timezone.utc)
        stop = end.astimezone(timezone.utc)
        while minute < stop:
            local = minute.astimezone(self._zone)
            total += self._rate_table.minute_price(day_type_of(local), local.hour * 60 + local.minute)
            minute += ONE_MINUTE
        return total
