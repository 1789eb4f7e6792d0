"""
Reservation coordinator: lifecycle of a single slot.

    FREE -> HELD -> BOOKED
    HELD -> FREE   (implicitly, once expires_at <= now)

HELD -> HELD is forbidden. The store's conditional hold insert is what actually enforces it,
the existence checks here only give the customer a better error message.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Callable, Dict, Optional
from .availability import future_segments
from .booking_utils import (MIN_SEGMENT_MINUTES, SEGMENT_MINUTES, canonical_utc, format_usd, parse_timestamp,
                            sanitize_email, sanitize_name, sanitize_phone, sanitize_purpose, slot_id as derive_slot_id)
from .error_utils import (AlreadyBooked, AlreadyHeld, ConfirmationEventError, NotConfigured, UpstreamUnavailable,
                          ValidationError)
from .pricing import PricingEngine

logger = logging.getLogger(__name__)

HOLD_TTL = timedelta(minutes=15)
CURRENCY = 'usd'


@dataclass(frozen=True)
class Hold:
    slot_id: str
    start: datetime
    end: datetime
    customer_name: str
    customer_email: str
    expires_at: datetime
    payment_session_ref: str = ''

    def is_active(self, now: datetime) -> bool:
        return self.expires_at > now


@dataclass(frozen=True)
class Booking:
    slot_id: str
    start: datetime
    end: datetime
    customer_name: str
    customer_email: str
    amount_minor_units: int
    currency: str
    payment_reference: str


@dataclass(frozen=True)
class CustomerContact:
    name: str
    email: str
    phone: str = ''
    purpose: str = ''

    @classmethod
    def from_form(cls, name, email, phone=None, purpose=None) -> "CustomerContact":
        return cls(sanitize_name(name), sanitize_email(email), sanitize_phone(phone), sanitize_purpose(purpose))


@dataclass(frozen=True)
class PaymentConfirmation:
    slot_id: str
    start: datetime
    end: datetime
    customer_name: str
    customer_email: str
    amount_minor_units: int
    currency: str
    payment_reference: str

    @classmethod
    def from_metadata(cls, metadata: Dict[str, str], amount_minor_units, currency, payment_reference) -> "PaymentConfirmation":
        """
        Builds a confirmation from the metadata echoed back by the payment provider.

        Raises ConfirmationEventError if the metadata is missing fields or doesn't describe the slot it names.
        """
        metadata = metadata or {}
        sid = metadata.get('slot_id')
        if not sid:
            raise ConfirmationEventError("Confirmation metadata missing slot_id")
        try:
            start = parse_timestamp(metadata.get('start'), 'start')
            end = parse_timestamp(metadata.get('end'), 'end')
        except ValidationError as e:
            raise ConfirmationEventError(f"Confirmation metadata malformed: {e.message}")
        if derive_slot_id(start, end) != sid:
            raise ConfirmationEventError(f"Confirmation slot_id {sid} does not match start/end")
        if not isinstance(amount_minor_units, int) or amount_minor_units < 0:
            raise ConfirmationEventError(f"Confirmation amount is invalid: {amount_minor_units}")
        return cls(sid, start, end, metadata.get('name', ''), metadata.get('email', ''), amount_minor_units,
                   currency or CURRENCY, payment_reference or '')


@dataclass(frozen=True)
class CheckoutResult:
    redirect_url: str
    session_ref: str
    expires_at: datetime
    amount_minor_units: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReservationCoordinator:

    def __init__(self, store, pricing: PricingEngine, payments, feed=None, hold_ttl: timedelta = HOLD_TTL,
                 clock: Callable[[], datetime] = _utcnow):
        self._store = store
        self._pricing = pricing
        self._payments = payments
        self._feed = feed
        self._hold_ttl = hold_ttl
        self._clock = clock

    def initiate_checkout(self, slot_id: str, start, end, contact: CustomerContact,
                          now: Optional[datetime] = None) -> CheckoutResult:
        """
        Claims the slot with a hold and opens a payment session for it.

        Raises:
            NotConfigured: no store or no payment collaborator, can't sell safely
            ValidationError: bad range, slot id mismatch, unknown or non-billable segment
            AlreadyBooked / AlreadyHeld: slot is taken
            UpstreamUnavailable: feed, store or payment provider failed
        """
        if self._store is None:
            raise NotConfigured("Database not configured")
        if self._payments is None:
            raise NotConfigured("Stripe not configured")
        now = now or self._clock()

        start = parse_timestamp(start, 'start').astimezone(timezone.utc)
        end = parse_timestamp(end, 'end').astimezone(timezone.utc)
        self._validate_segment(slot_id, start, end, now)

        if self._store.find_booking(slot_id) is not None:
            logger.warning(f"[CHECKOUT] Slot already booked {slot_id}")
            raise AlreadyBooked(slot_id)
        if self._store.find_active_hold(slot_id, now) is not None:
            logger.warning(f"[CHECKOUT] Slot currently on hold {slot_id}")
            raise AlreadyHeld(slot_id)

        # Authoritative price, never the client's
        amount = self._pricing.price_of(start, end)
        if amount <= 0:
            raise ValidationError("Slot is not billable")

        hold = Hold(slot_id, start, end, contact.name, contact.email, now + self._hold_ttl)
        if not self._store.insert_hold(hold, now):
            # Lost the race between the pre-check and the insert
            logger.warning(f"[CHECKOUT] Hold insert rejected for {slot_id}")
            raise AlreadyHeld(slot_id)

        metadata = {
            "slot_id": slot_id,
            "start": canonical_utc(start),
            "end": canonical_utc(end),
            "name": contact.name,
            "email": contact.email,
            "phone": contact.phone,
            "purpose": contact.purpose,
        }
        try:
            session = self._payments.create_session(amount, CURRENCY, self._describe(start, end, contact.purpose),
                                                    contact.email, metadata)
        except UpstreamUnavailable:
            # Hold is left behind and self-expires
            logger.error(f"[CHECKOUT] Payment session failed, hold for {slot_id} expires at {hold.expires_at.isoformat()}")
            raise
        self._store.attach_payment_session(slot_id, session.session_ref)
        logger.info(f"[CHECKOUT] Session created {session.session_ref} for {slot_id} ({format_usd(amount)})")
        return CheckoutResult(session.redirect_handle, session.session_ref, hold.expires_at, amount)

    def confirm_payment(self, confirmation: PaymentConfirmation) -> bool:
        """
        Promotes the slot to booked using the amount actually charged, then drops the hold.

        Idempotent: redelivery of the same confirmation doesn't create a second booking.
        Returns True if this call created the booking.
        """
        if self._store is None:
            raise NotConfigured("Database not configured")
        sid = confirmation.slot_id
        created = False
        if self._store.find_booking(sid) is None:
            booking = Booking(sid, confirmation.start, confirmation.end, confirmation.customer_name,
                              confirmation.customer_email, confirmation.amount_minor_units, confirmation.currency,
                              confirmation.payment_reference)
            created = self._store.insert_booking(booking)
        if created:
            logger.info(f"[WEBHOOK] Booking inserted for {sid}")
        else:
            logger.info(f"[WEBHOOK] Booking already exists for {sid}")
        self._store.delete_hold(sid)
        logger.info(f"[WEBHOOK] Hold cleared for {sid}")
        return created

    def _validate_segment(self, client_slot_id: str, start: datetime, end: datetime, now: datetime):
        if end <= start:
            raise ValidationError("Invalid time range")
        minutes = (end - start).total_seconds() / 60
        if minutes < MIN_SEGMENT_MINUTES or minutes > SEGMENT_MINUTES:
            raise ValidationError(f"Slot must be between {MIN_SEGMENT_MINUTES} and {SEGMENT_MINUTES} minutes")
        if end <= now:
            raise ValidationError("Slot has already ended")
        expected = derive_slot_id(start, end)
        if client_slot_id != expected:
            raise ValidationError("Slot id does not match start/end")
        if self._feed is not None:
            offered = {derive_slot_id(seg.start, seg.end) for seg in future_segments(self._feed.fetch_intervals(), now)}
            if expected not in offered:
                raise ValidationError("Slot is not offered by the current schedule")

    def _describe(self, start: datetime, end: datetime, purpose: str) -> str:
        zone = self._pricing.zone
        local_start = start.astimezone(zone)
        local_end = end.astimezone(zone)
        return f"{purpose or 'Ice Time'} • {local_start.strftime('%a %b %d, %Y %I:%M %p')} – {local_end.strftime('%I:%M %p %Z')}"
