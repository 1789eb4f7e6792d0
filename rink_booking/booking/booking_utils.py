# Utility functions for booking functionality
import hashlib
import re
from datetime import datetime, timedelta, timezone
import phonenumbers
from email_validator import validate_email, EmailNotValidError
from .error_utils import ValidationError
from .period import RawInterval, Segment

# Sellable unit is one hour, trailing remainders are sold down to 40 minutes
SEGMENT_MINUTES = 60
MIN_SEGMENT_MINUTES = 40

SLOT_ID_LENGTH = 24 # hex chars, 96 bits


def split_into_segments(raw: RawInterval, *, segment_minutes: int = SEGMENT_MINUTES,
                        min_minutes: int = MIN_SEGMENT_MINUTES) -> list[Segment]:
    """
    Splits a raw availability interval into sellable segments.

    Full hours are cut from the start while they fit. A trailing remainder is kept as a shorter
    segment only if it is at least min_minutes long, otherwise it's dropped.

    Input: RawInterval with timezone-aware start and end.

    Returns: list of contiguous Segment objects rendered in the timezone of raw.start.
    """
    if raw.start.tzinfo is None or raw.end.tzinfo is None:
        raise ValidationError("Interval timestamps must be timezone-aware")
    tz = raw.start.tzinfo
    # Cut in UTC so a DST change inside the interval can't produce a 0 or 120 minute "hour"
    cursor = raw.start.astimezone(timezone.utc)
    end = raw.end.astimezone(timezone.utc)
    full = timedelta(minutes=segment_minutes)
    minimum = timedelta(minutes=min_minutes)

    segments = []
    if end - cursor < minimum:
        return segments
    while cursor + full <= end:
        segments.append(Segment(cursor.astimezone(tz), (cursor + full).astimezone(tz)))
        cursor += full
    if end - cursor >= minimum:
        segments.append(Segment(cursor.astimezone(tz), end.astimezone(tz)))
    return segments


def canonical_utc(instant: datetime) -> str:
    """
    Millisecond precision UTC rendering, e.g. 2025-10-10T16:30:00.000Z
    """
    if instant.tzinfo is None:
        raise ValidationError("Timestamp must be timezone-aware")
    utc = instant.astimezone(timezone.utc)
    return utc.strftime('%Y-%m-%dT%H:%M:%S') + f'.{utc.microsecond // 1000:03d}Z'


def slot_id(start: datetime, end: datetime) -> str:
    """
    Deterministic slot id from the exact start/end instants. Listing and checkout must agree on it
    since it's the only key tying an advertised slot to its hold and booking rows.
    """
    digest = hashlib.sha256(f"{canonical_utc(start)}__{canonical_utc(end)}".encode('utf-8'))
    return digest.hexdigest()[:SLOT_ID_LENGTH]


def parse_timestamp(raw_value, field: str = 'timestamp') -> datetime:
    if isinstance(raw_value, datetime):
        parsed = raw_value
    else:
        if not isinstance(raw_value, str) or not raw_value.strip():
            raise ValidationError(f"Missing {field}")
        try:
            parsed = datetime.fromisoformat(raw_value.strip().replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"Invalid {field}: {raw_value}")
    if parsed.tzinfo is None:
        raise ValidationError(f"{field} must include a UTC offset")
    return parsed


def sanitize_name(name) -> str:
    MAX_NAME_LENGTH = 200
    name = name.strip() if isinstance(name, str) else ''
    if not name:
        raise ValidationError('Name is required')
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError('Name input is too long')
    # Reject control characters
    if any(ord(ch) < 32 for ch in name):
        raise ValidationError('Name contains disallowed characters')
    return name


def sanitize_phone(phone) -> str:
    # Maximum allowed input length to avoid oversized input injections.
    MAX_PHONE_LENGTH = 50

    phone = phone.strip() if isinstance(phone, str) else ''
    # Phone is optional at checkout
    if not phone:
        return ''

    if len(phone) > MAX_PHONE_LENGTH:
        raise ValidationError('Phone number input is too long')

    # Allowed characters: an optional leading '+', digits, spaces, hyphens, and parentheses.
    allowed_pattern = re.compile(r'^\+?[0-9\-\(\)\s]+$')
    if not allowed_pattern.fullmatch(phone):
        raise ValidationError('Phone contains disallowed characters')

    try:
        # If the number starts with '+', it's likely an international format.
        if phone.startswith('+'):
            parsed_phone = phonenumbers.parse(phone, None)
        else:
            # Assume 'US' as the default region if no international prefix is provided.
            parsed_phone = phonenumbers.parse(phone, 'US')
    except phonenumbers.NumberParseException:
        raise ValidationError('Invalid phone number format')

    if not phonenumbers.is_possible_number(parsed_phone) or not phonenumbers.is_valid_number(parsed_phone):
        raise ValidationError('Phone number is not valid')

    # Canonical, international E.164 format.
    return phonenumbers.format_number(parsed_phone, phonenumbers.PhoneNumberFormat.E164)


def sanitize_email(email) -> str:
    email = email.strip() if isinstance(email, str) else ''
    if not email:
        raise ValidationError('Email is required')

    MAX_EMAIL_LENGTH = 254  # RFC 5321 / 5322
    if len(email) > MAX_EMAIL_LENGTH:
        raise ValidationError('Email input is too long')

    # Preliminary check for allowed characters and a basic user@domain.tld format.
    allowed_pattern = re.compile(
        r'^[A-Za-z0-9.!#$%&\'*+/=?^_`{|}~-]+'
        r'@[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)*'
        r'\.[A-Za-z]{2,}$'
    )
    if not allowed_pattern.fullmatch(email):
        raise ValidationError('Email contains disallowed characters or is not formatted correctly')

    try:
        # No DNS lookups on the checkout path
        valid = validate_email(email, check_deliverability=False)
    except EmailNotValidError as e:
        raise ValidationError(f'Invalid email format: {str(e)}')
    return valid.normalized


def sanitize_purpose(purpose) -> str:
    MAX_PURPOSE_LENGTH = 200
    purpose = purpose.strip() if isinstance(purpose, str) else ''
    if len(purpose) > MAX_PURPOSE_LENGTH:
        raise ValidationError('Purpose is too long. Max 200 characters.')
    allowed_control_codes = {9, 10, 13}  # Tab, LF, CR
    for ch in purpose:
        if ord(ch) < 32 and ord(ch) not in allowed_control_codes:
            raise ValidationError('Purpose contains disallowed characters')
    return purpose


def format_usd(minor_units: int) -> str:
    return f"${minor_units / 100:,.2f}"
