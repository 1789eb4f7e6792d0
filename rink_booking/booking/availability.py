import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional
from .booking_utils import split_into_segments, slot_id
from .error_utils import UpstreamUnavailable
from .period import PricedSlot, RawInterval, Segment
from .pricing import PricingEngine

logger = logging.getLogger(__name__)


def future_segments(raw_intervals: Iterable[RawInterval], now: datetime) -> List[Segment]:
    """
    Segments of every interval still ending after now. A raw interval may have started in the past and still have future segments.
    """
    now = now.astimezone(timezone.utc)
    segments = []
    for raw in raw_intervals:
        if raw.end <= now:
            continue
        segments.extend(seg for seg in split_into_segments(raw) if seg.end > now)
    return segments


class AvailabilityResolver:

    def __init__(self, pricing: PricingEngine):
        self._pricing = pricing

    def price_segments(self, segments: Iterable[Segment]) -> List[PricedSlot]:
        slots = []
        for seg in segments:
            price = self._pricing.price_of(seg.start, seg.end)
            # Checkout rejects non-billable segments so don't advertise them
            if price <= 0:
                continue
            slots.append(PricedSlot(seg.start, seg.end, slot_id(seg.start, seg.end), price))
        return slots

    def list_available(self, raw_intervals: Iterable[RawInterval], now: datetime, store=None) -> List[PricedSlot]:
        """
        Publishable slots: future segments, priced, minus booked slot ids and slot ids with an active hold.

        With no store (or an unreachable one) every priced segment is published unfiltered.
        No ordering is guaranteed.
        """
        priced = self.price_segments(future_segments(raw_intervals, now))
        logger.info(f"[SLOTS] Priced blocks (pre-DB filter): {len(priced)}")

        taken = self._taken_ids(store, now)
        if taken is None:
            logger.warning(f"[SLOTS] No booking store available; returning {len(priced)} unfiltered slots.")
            return priced

        available = [slot for slot in priced if slot.id not in taken]
        logger.info(f"[SLOTS] Final slots: {len(available)}")
        return available

    @staticmethod
    def _taken_ids(store, now: datetime) -> Optional[set]:
        if store is None:
            return None
        try:
            booked = set(store.list_booking_ids())
            held = set(store.list_active_hold_ids(now))
        except UpstreamUnavailable as e:
            logger.error(f"[SLOTS] Booking store unreachable: {e.message}")
            return None
        logger.info(f"[SLOTS] Booked ids: {len(booked)}, active held ids: {len(held)}")
        return booked | held
