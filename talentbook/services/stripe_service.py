"""Stripe service — webhook ingestion, event dispatch, session verification.

Responsible for:
- Verifying webhook signatures before the payload is trusted
- Recording each event exactly once (stripe_events primary key)
- Dispatching novel events to event-specific handlers
- Re-checking a checkout session's payment state with Stripe
"""

import json
import logging
from datetime import datetime, timezone

import stripe
from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from talentbook.errors import (
    InvalidSignature,
    PaymentNotConfirmed,
    TransientPersistenceFailure,
    ValidationError,
)
from talentbook.extensions import db
from talentbook.models.stripe_event import StripeEvent
from talentbook.services.billing_service import (
    handle_subscription_changed,
    handle_subscription_deleted,
)
from talentbook.services.fulfillment_service import (
    handle_checkout_completed,
    resolve_customer_email,
)
from talentbook.services.stripe_client import configure_stripe

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Webhook Handling
# ──────────────────────────────────────────────

def verify_webhook_signature(payload, sig_header):
    """Verify the Stripe-Signature header and parse the event envelope.

    The HMAC check runs on the raw body before any JSON is parsed.
    Returns the event as a plain dict.
    Raises InvalidSignature on a missing or bad signature.
    """
    if not sig_header:
        raise InvalidSignature("Missing signature")

    try:
        stripe.WebhookSignature.verify_header(
            payload,
            sig_header,
            current_app.config["STRIPE_WEBHOOK_SECRET"],
            current_app.config["STRIPE_WEBHOOK_TOLERANCE"],
        )
    except stripe.SignatureVerificationError as e:
        raise InvalidSignature() from e

    try:
        event = json.loads(payload)
    except ValueError as e:
        raise ValidationError("payload", "Malformed event payload") from e

    if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
        raise ValidationError("payload", "Event is missing id or type")
    return event


def _noop(event):
    """Accepted event type with no local side effect."""


EVENT_HANDLERS = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.created": handle_subscription_changed,
    "customer.subscription.updated": handle_subscription_changed,
    "customer.subscription.deleted": handle_subscription_deleted,
    "payment_intent.succeeded": _noop,
    "charge.succeeded": _noop,
}


def dispatch_event(event):
    """Route an event to its handler by type.

    Unknown types are ignored, never rejected. Returns True if a handler ran.
    """
    handler = EVENT_HANDLERS.get(event["type"])
    if handler is None:
        logger.info(f"No handler for {event['type']} ({event['id']}), recorded only")
        return False
    handler(event)
    return True


def handle_webhook_event(event):
    """Record a verified event and dispatch it if it is new.

    The stripe_events insert is the deduplication gate: a redelivered event
    fails the primary key on flush and is acknowledged without dispatch.
    The event row and the handler's writes commit together, so a handler
    failure leaves no event row behind and Stripe's retry runs it again.

    Returns "processed", "ignored" or "already_processed".
    Raises TransientPersistenceFailure when nothing durable was recorded.
    """
    event_id = event["id"]
    event_type = event["type"]

    created = event.get("created")
    record = StripeEvent(
        stripe_event_id=event_id,
        event_type=event_type,
        created=(
            datetime.fromtimestamp(created, tz=timezone.utc)
            if isinstance(created, (int, float)) else None
        ),
        payload=event,
    )
    db.session.add(record)

    # --- Idempotency gate ---
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        logger.info(f"Duplicate webhook event {event_id}, skipping")
        return "already_processed"
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Could not record webhook event {event_id}: {e}")
        raise TransientPersistenceFailure("DB error (event)") from e

    # --- Dispatch + commit ---
    try:
        handled = dispatch_event(event)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error handling {event_type} ({event_id}): {e}", exc_info=True)
        raise TransientPersistenceFailure("Webhook handler failure") from e

    logger.info(f"Webhook event {event_id} ({event_type}) recorded")
    return "processed" if handled else "ignored"


# ──────────────────────────────────────────────
# Session verification
# ──────────────────────────────────────────────

def verify_checkout_session(session_id):
    """Ask Stripe whether a checkout session is a paid one-time payment.

    This is the server-side check the signup flow relies on; the success
    redirect alone proves nothing.

    Returns {"ok", "email", "amount_total", "currency", "metadata"}.
    Raises ValidationError, PaymentNotConfirmed or TransientPersistenceFailure
    (Stripe unreachable or timed out).
    """
    if not session_id or not isinstance(session_id, str):
        raise ValidationError("session_id", "Missing session_id")

    configure_stripe()
    try:
        session = stripe.checkout.Session.retrieve(
            session_id, expand=["payment_intent", "customer"]
        )
    except stripe.InvalidRequestError as e:
        logger.warning(f"verify-session: unknown session {session_id}: {e}")
        raise PaymentNotConfirmed("Unknown checkout session") from e
    except stripe.StripeError as e:
        logger.error(f"verify-session: Stripe unavailable for {session_id}: {e}")
        raise TransientPersistenceFailure("Payment provider unavailable") from e

    if session.get("payment_status") != "paid" or session.get("mode") != "payment":
        logger.info(
            f"verify-session: {session_id} not paid "
            f"(status={session.get('payment_status')}, mode={session.get('mode')})"
        )
        raise PaymentNotConfirmed()

    return {
        "ok": True,
        "email": resolve_customer_email(session),
        "amount_total": session.get("amount_total"),
        "currency": session.get("currency"),
        "metadata": dict(session.get("metadata") or {}),
    }
