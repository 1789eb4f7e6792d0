from dataclasses import dataclass
import json
import logging
from typing import Dict, Optional
import stripe
from stripe import SignatureVerificationError
from .error_utils import ConfirmationEventError, NotConfigured, UpstreamUnavailable
from .reservation import PaymentConfirmation

logger = logging.getLogger(__name__)

PRODUCT_NAME = "Private Ice Rental"

# Events that mean the customer has paid for the checkout session
CONFIRMATION_EVENT_TYPES = ("checkout.session.completed", "checkout.session.async_payment_succeeded")


@dataclass(frozen=True)
class PaymentSession:
    redirect_handle: str
    session_ref: str


class StripeProcessor:

    def __init__(self, api_key: str, success_url: str, cancel_url: str, webhook_secret: str = '', timeout: float = 10.0):
        if not api_key:
            raise NotConfigured("Stripe not configured (STRIPE_API_KEY missing)")
        stripe.api_key = api_key
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)
        self._success_url = success_url
        self._cancel_url = cancel_url
        self._webhook_secret = webhook_secret

    def create_session(self, amount_minor_units: int, currency: str, description: str, customer_email: str,
                       metadata: Dict[str, str]) -> PaymentSession:
        """
        Creates a hosted Checkout Session for one slot. The metadata is echoed back on the webhook event.
        """
        try:
            session = stripe.checkout.Session.create(
                mode='payment',
                payment_method_types=['card'],
                success_url=self._success_url + '?session_id={CHECKOUT_SESSION_ID}',
                cancel_url=self._cancel_url,
                customer_email=customer_email,
                line_items=[
                    {
                        'price_data': {
                            'currency': currency,
                            'product_data': {
                                'name': PRODUCT_NAME,
                                'description': description,
                            },
                            'unit_amount': amount_minor_units,
                        },
                        'quantity': 1,
                    },
                ],
                metadata=metadata,
                client_reference_id=metadata.get('slot_id'),
            )
        except (stripe.APIConnectionError, stripe.RateLimitError) as e:
            logger.error(f"Stripe unreachable creating checkout session: {e}")
            raise UpstreamUnavailable("Payment provider unavailable") from e
        except stripe.StripeError as e:
            logger.error(f"Stripe rejected checkout session: {e}")
            raise UpstreamUnavailable("Failed to create checkout session", retryable=False) from e
        return PaymentSession(session.url, session.id)

    def construct_confirmation(self, payload: str, sig_header: Optional[str]) -> Optional[PaymentConfirmation]:
        """
        Verifies the webhook signature and turns a paid checkout session event into a PaymentConfirmation.

        Returns None for event types (or unpaid sessions) that don't confirm anything.
        Raises ConfirmationEventError for bad signatures or malformed metadata.
        """
        if not self._webhook_secret:
            raise NotConfigured("Webhook not configured (STRIPE_WEBHOOK_SECRET missing)")
        if not sig_header:
            raise ConfirmationEventError("Missing signature")
        try:
            stripe.Webhook.construct_event(payload, sig_header, self._webhook_secret)
        except ValueError:
            raise ConfirmationEventError("Invalid payload")
        except SignatureVerificationError:
            raise ConfirmationEventError("Invalid signature")

        # Signature covers the raw payload, read it back as plain dicts
        event = json.loads(payload)
        event_type = event.get('type')
        logger.info(f"[WEBHOOK] Event: {event_type}")
        if event_type not in CONFIRMATION_EVENT_TYPES:
            return None

        session = (event.get('data') or {}).get('object') or {}
        if session.get('payment_status') == 'unpaid':
            logger.info(f"[WEBHOOK] Session {session.get('id')} not paid yet, skipping")
            return None
        return PaymentConfirmation.from_metadata(
            session.get('metadata'),
            session.get('amount_total'),
            session.get('currency'),
            session.get('payment_intent') or session.get('id'),
        )
