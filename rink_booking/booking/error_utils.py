# Custom exceptions to be used throughout the project.

class BookingError(Exception):
    """
    Base class for every error the booking core raises.
    Each subclass carries the HTTP status the web layer should answer with.
    """
    status = 500

    def __init__(self, message: str, *args):
        super().__init__(message, *args)
        self.message = message


class ValidationError(BookingError):
    """
    To be raised when client input can't be sold as-is.
    May be raised under the following circumstances:
        1. Inverted or zero-length time range
        2. Range prices to 0 (non-billable)
        3. Slot id doesn't match the start/end it was sent with
        4. Segment isn't one the current calendar feed produces
        5. Customer name, email, or phone are missing or malformed
    """
    status = 400


class ConflictError(BookingError):
    """
    The slot is already claimed. Callers should re-fetch availability instead of retrying.
    """
    status = 409


class AlreadyBooked(ConflictError):
    def __init__(self, slot_id: str):
        super().__init__("Slot already booked")
        self.slot_id = slot_id


class AlreadyHeld(ConflictError):
    def __init__(self, slot_id: str):
        super().__init__("Slot currently on hold")
        self.slot_id = slot_id


class UpstreamUnavailable(BookingError):
    """
    Feed, database or payment provider could not be reached (or timed out).
    Retryable failures answer 503, the rest (provider rejected the request, bad feed, database error) answer 502.
    """
    status = 503

    def __init__(self, message: str, *args, retryable: bool = True):
        super().__init__(message, *args)
        self.retryable = retryable
        if not retryable:
            self.status = 502


class NotConfigured(BookingError):
    """
    An operation needs a collaborator (feed url, Stripe key, database) that isn't configured.
    """
    status = 500


class ConfirmationEventError(BookingError):
    """
    Payment confirmation event failed signature verification or carries malformed metadata.
    Must never be retried against the booking table.
    """
    status = 400
