# Time period classes used for the implementation of the rink booking calendar
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone


@dataclass(frozen=True)
class Period:
    """
    Defined as a pair of timezone-aware datetime objects, half-open [start, end).
    """
    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        # Compare instants, wall-clock subtraction is wrong across a DST fold
        return self.end.astimezone(timezone.utc) - self.start.astimezone(timezone.utc)

    @property
    def minutes(self) -> float:
        return self.duration.total_seconds() / 60


@dataclass(frozen=True)
class RawInterval(Period):
    """
    Block of open ice as published by the calendar feed, before segmentation.
    """
    summary: str = ''


@dataclass(frozen=True)
class Segment(Period):
    """
    Sellable sub-block of a raw interval.
    """


@dataclass(frozen=True)
class PricedSlot(Period):
    id: str = ''
    price_minor_units: int = 0

    def to_dict(self) -> dict:
        # Send ISO strings WITH offset, so the browser renders accurately
        return {
            "id": self.id,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "price_minor_units": self.price_minor_units,
        }
