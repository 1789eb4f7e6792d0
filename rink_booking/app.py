from datetime import datetime, timedelta, timezone
import logging
import os
import secrets
from functools import wraps
from flask import Flask, request, g, jsonify, current_app
from flask_debugtoolbar import DebugToolbarExtension
from flask_httpauth import HTTPBasicAuth
from werkzeug.security import generate_password_hash, check_password_hash
from rink_booking.booking import error_utils
from rink_booking.booking.availability import AvailabilityResolver
from rink_booking.booking.booking_utils import format_usd
from rink_booking.booking.calendar import IcsCalendarFeed
from rink_booking.booking.config import Settings
from rink_booking.booking.database import DatabasePersistence
from rink_booking.booking.pricing import PricingEngine
from rink_booking.booking.reservation import CustomerContact, ReservationCoordinator
from rink_booking.booking.stripe_integration import StripeProcessor

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
logger = logging.getLogger(__name__)

# Stripe webhook shouldn't be over 8-10kb
MAX_WEBHOOK_CONTENT_LENGTH = 100 * 1024 # 100KB

# Hint sent with retryable 503s
RETRY_AFTER_SECONDS = 30


def _utcnow():
    return datetime.now(timezone.utc)


def create_app(settings: Settings = None):
    app = Flask(__name__)
    app.secret_key = secrets.token_hex(32) #256 bit
    app.config['SECRET_KEY'] = app.secret_key
    settings = settings or Settings.from_env()
    if not settings.production:
        app.config["DEBUG_TB_INTERCEPT_REDIRECTS"] = False  # Prevents redirect issues
    configure_collaborators(app, settings)
    return app


def configure_collaborators(app: Flask, settings: Settings):
    """
    Wires the feed, store, payment processor and pricing from settings. Tests override these config keys with fakes.
    """
    timeout = settings.collaborator_timeout_seconds
    app.config['SETTINGS'] = settings
    app.config['PRICING'] = PricingEngine(settings.zone)
    app.config['CLOCK'] = _utcnow
    app.config['ADMIN_USERS'] = {"admin": generate_password_hash(settings.admin_password)}
    app.config['CALENDAR_FEED'] = IcsCalendarFeed(settings.ics_url, settings.zone, timeout) if settings.ics_url else None
    if settings.database_url:
        app.config['STORE_FACTORY'] = lambda: DatabasePersistence(settings.database_url, timeout)
    else:
        app.config['STORE_FACTORY'] = None
    if settings.stripe_api_key:
        app.config['PAYMENTS'] = StripeProcessor(settings.stripe_api_key, settings.success_url, settings.cancel_url,
                                                 settings.stripe_webhook_secret, timeout)
    else:
        app.config['PAYMENTS'] = None
    # Startup diagnostics
    logger.info("[BOOT] hasStripe=%s hasDatabase=%s hasIcsUrl=%s arenaTz=%s",
                app.config['PAYMENTS'] is not None, app.config['STORE_FACTORY'] is not None,
                app.config['CALENDAR_FEED'] is not None, settings.arena_tz)


app = create_app()
# Set to make Flask debug toolbar work
if not os.environ.get('FLASK_ENV') == 'production':
    app.debug = True
auth = HTTPBasicAuth()


@auth.verify_password
def verify_password(username, password):
    users = current_app.config['ADMIN_USERS']
    if username in users and check_password_hash(users.get(username), password):
        return username


# Use decorator to create g.db instance within request context window for functions that require it
def instantiate_database(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.db = None
        g.db_error = None
        factory = current_app.config.get('STORE_FACTORY')
        if factory is not None:
            try:
                g.db = factory()
            except error_utils.UpstreamUnavailable as e:
                # Listing can degrade without the store, checkout re-raises this
                g.db_error = e
        return f(*args, **kwargs)
    return decorated_function


def _coordinator() -> ReservationCoordinator:
    settings = current_app.config['SETTINGS']
    return ReservationCoordinator(g.db, current_app.config['PRICING'], current_app.config['PAYMENTS'],
                                  feed=current_app.config['CALENDAR_FEED'],
                                  hold_ttl=timedelta(minutes=settings.hold_ttl_minutes),
                                  clock=current_app.config['CLOCK'])


@app.before_request
def log_request():
    logger.info(f"[HTTP] {request.method} {request.path}")


@app.errorhandler(error_utils.BookingError)
def handle_booking_error(error):
    if error.status >= 500 or isinstance(error, error_utils.ConfirmationEventError):
        logger.error(f"{type(error).__name__}: {error.message}")
    body = {"error": error.message}
    headers = {}
    if isinstance(error, error_utils.UpstreamUnavailable):
        body["retryable"] = error.retryable
        if error.retryable:
            headers["Retry-After"] = str(RETRY_AFTER_SECONDS)
    return jsonify(body), error.status, headers


@app.route('/')
def home():
    return "Rink Booking API is running. Try /health or /api/slots", 200, {"Content-Type": "text/plain; charset=utf-8"}


@app.route('/health')
def health():
    settings = current_app.config['SETTINGS']
    return jsonify({
        "ok": True,
        "hasStripe": current_app.config['PAYMENTS'] is not None,
        "hasDatabase": current_app.config['STORE_FACTORY'] is not None,
        "hasIcs": current_app.config['CALENDAR_FEED'] is not None,
        "arenaTz": settings.arena_tz,
    })


# Parse the feed, cut into priced blocks in the arena TZ, drop booked/held ones
@app.route('/api/slots', methods=['GET'])
@instantiate_database
def list_slots():
    feed = current_app.config['CALENDAR_FEED']
    if feed is None:
        raise error_utils.NotConfigured("Missing AVAILABILITY_ICS_URL in .env")
    intervals = feed.fetch_intervals()
    if g.db_error is not None:
        logger.error(f"[SLOTS] Booking store unreachable: {g.db_error.message}")
    now = current_app.config['CLOCK']()
    resolver = AvailabilityResolver(current_app.config['PRICING'])
    slots = sorted(resolver.list_available(intervals, now, g.db), key=lambda slot: slot.start.astimezone(timezone.utc))
    response = []
    for slot in slots:
        entry = slot.to_dict()
        entry["title"] = format_usd(slot.price_minor_units)
        response.append(entry)
    return jsonify(response)


# Quick peek at what the feed parses to, admin only
@app.route('/debug/ics', methods=['GET'])
@auth.login_required
def debug_ics():
    feed = current_app.config['CALENDAR_FEED']
    if feed is None:
        raise error_utils.NotConfigured("No AVAILABILITY_ICS_URL")
    intervals = feed.fetch_intervals()
    sample = [{"summary": raw.summary, "start": raw.start.isoformat(), "end": raw.end.isoformat()}
              for raw in intervals[:5]]
    return jsonify({"count": len(intervals), "arenaTz": current_app.config['SETTINGS'].arena_tz, "sample": sample})


@app.route('/api/create-checkout-session', methods=['POST'])
@instantiate_database
def create_checkout_session():
    if g.db is None and g.db_error is not None:
        raise g.db_error
    body = request.get_json(silent=True) or {}
    sid = body.get('slotId')
    if not sid or not isinstance(sid, str):
        raise error_utils.ValidationError("Missing slotId")
    logger.info(f"[CHECKOUT] Start {sid} {body.get('start')} {body.get('end')}")
    contact = CustomerContact.from_form(body.get('name'), body.get('email'), body.get('phone'), body.get('purpose'))
    # Client price (if any) is ignored, the coordinator prices the slot itself
    result = _coordinator().initiate_checkout(sid, body.get('start'), body.get('end'), contact)
    return jsonify({"url": result.redirect_url,
                    "expiresAt": result.expires_at.isoformat(),
                    "price_minor_units": result.amount_minor_units})


@app.route('/api/stripe/webhook', methods=['POST'])
@instantiate_database
def stripe_webhook():
    payments = current_app.config['PAYMENTS']
    if payments is None:
        raise error_utils.NotConfigured("Webhook not configured")

    content_length = request.headers.get('Content-Length', None)
    if content_length: # If not None
        content_length = int(content_length)
        if content_length > MAX_WEBHOOK_CONTENT_LENGTH:
            logger.error(f"Rejecting webhook request. Payload too large: {content_length}")
            return jsonify({"error": "Max content length exceeded"}), 413
    # If it is None, manually verify length
    total_size = 0
    payload_chunks = []
    for chunk in request.stream:
        total_size += len(chunk)
        if total_size > MAX_WEBHOOK_CONTENT_LENGTH:
            logger.error(f"Rejecting webhook request. Payload too large: {total_size}")
            return jsonify({"error": "Max content length exceeded"}), 413
        payload_chunks.append(chunk)

    # Join into payload since stream can only be read once
    payload = b"".join(payload_chunks).decode("utf-8", errors='replace')
    sig_header = request.headers.get('Stripe-Signature')

    # Raises ConfirmationEventError (400) before anything is written
    confirmation = payments.construct_confirmation(payload, sig_header)
    if confirmation is None:
        return jsonify({"received": True}), 200

    if g.db is None and g.db_error is not None:
        # Provider redelivers on 5xx, confirmation is idempotent
        raise g.db_error
    _coordinator().confirm_payment(confirmation)
    return jsonify({"received": True}), 200


if __name__ == '__main__':
    # production
    if os.environ.get('FLASK_ENV') == 'production':
        app.run(debug=False)
    else:
        toolbar = DebugToolbarExtension(app)
        app.run(debug=True, port=int(os.environ.get('PORT', 8080)))
