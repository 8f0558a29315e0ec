"""Fulfillment service — reconciles completed checkout sessions.

Handles checkout.session.completed:
- Always records a normalized StripeOrder first (the audit trail)
- For purpose == "verification" at exactly the expected price, upserts
  the VerificationEmail row so the pending signup can complete
- For recurring checkouts, attaches the subscription id to the
  customer's placeholder subscription row

All writes use flush(); the webhook gateway owns the commit.
"""

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy.dialects import postgresql, sqlite

from talentbook.errors import PriceMismatch
from talentbook.extensions import db
from talentbook.models.order import StripeOrder
from talentbook.models.verification import VerificationEmail
from talentbook.services.billing_service import (
    attach_checkout_subscription,
    get_user_id_from_stripe_customer,
    log_billing_audit,
)

logger = logging.getLogger(__name__)

VERIFICATION_PURPOSE = "verification"


def _object_id(value):
    """Stripe fields like `customer` may be an id or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    return value.get("id")


def resolve_customer_email(session):
    """Best-effort payer email for a checkout session, lower-cased.

    Precedence: metadata.email, then customer_details.email, then the
    session-level customer_email. Returns "" when none is present.
    """
    metadata = session.get("metadata") or {}
    customer_details = session.get("customer_details") or {}
    email = (
        metadata.get("email")
        or customer_details.get("email")
        or session.get("customer_email")
        or ""
    )
    return str(email).strip().lower()


def check_verification_price(amount_total, currency, app_config):
    """Raise PriceMismatch unless amount and currency equal the verification fee."""
    expected_amount = app_config["VERIFICATION_AMOUNT"]
    expected_currency = app_config["VERIFICATION_CURRENCY"]
    if amount_total != expected_amount or currency != expected_currency:
        raise PriceMismatch(amount_total, currency, expected_amount, expected_currency)


def record_order(session, email, purpose):
    """Insert the StripeOrder for a completed session.

    If the session was already recorded (unique session_id), the existing
    row is returned unchanged; orders are immutable.
    """
    session_id = session.get("id")
    existing = StripeOrder.query.filter_by(session_id=session_id).first()
    if existing:
        logger.info(f"Order for session {session_id} already recorded")
        return existing

    metadata = session.get("metadata") or {}
    order = StripeOrder(
        session_id=session_id,
        payment_intent_id=_object_id(session.get("payment_intent")),
        customer_id=_object_id(session.get("customer")),
        email=email or None,
        amount_total=session.get("amount_total") or 0,
        currency=(
            session.get("currency") or current_app.config["VERIFICATION_CURRENCY"]
        ).lower(),
        payment_status=session.get("payment_status"),
        purpose=purpose or None,
        user_type=metadata.get("userType") or None,
        payload=dict(session),
    )
    db.session.add(order)
    db.session.flush()
    return order


def upsert_verification_email(email, session_id, verified_at=None):
    """Mark an email verified, creating or updating its row.

    Uses INSERT .. ON CONFLICT (email) DO UPDATE on PostgreSQL and SQLite so
    two verifications of the same email never collide on the primary key.
    """
    verified_at = verified_at or datetime.now(timezone.utc)
    values = {
        "email": email,
        "is_verified": True,
        "verified_at": verified_at,
        "last_session_id": session_id,
    }

    dialect = db.session.get_bind().dialect.name
    if dialect in ("postgresql", "sqlite"):
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        stmt = insert(VerificationEmail).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[VerificationEmail.email],
            set_={
                "is_verified": stmt.excluded.is_verified,
                "verified_at": stmt.excluded.verified_at,
                "last_session_id": stmt.excluded.last_session_id,
            },
        )
        db.session.execute(stmt)
    else:
        db.session.merge(VerificationEmail(**values))

    db.session.flush()


def handle_checkout_completed(event):
    """Handle checkout.session.completed.

    Order first, then the purpose-specific side effect. A price mismatch
    on a verification payment is logged and audited; the order stays.
    """
    session = event["data"]["object"]
    config = current_app.config

    session_id = session.get("id")
    amount_total = session.get("amount_total") or 0
    # Compared as delivered; a session without a currency never verifies.
    currency = (session.get("currency") or "").lower()
    metadata = session.get("metadata") or {}
    purpose = str(metadata.get("purpose") or "")
    email = resolve_customer_email(session)
    stripe_customer_id = _object_id(session.get("customer"))

    order = record_order(session, email, purpose)
    logger.info(
        f"Recorded order {order.id} for session {session_id} "
        f"({amount_total} {currency}, purpose={purpose or '-'})"
    )

    if purpose == VERIFICATION_PURPOSE:
        try:
            check_verification_price(amount_total, currency, config)
        except PriceMismatch as e:
            logger.warning(f"Session {session_id}: {e.message}; email not verified")
            log_billing_audit("verification.price_mismatch", {
                "session_id": session_id,
                "amount_total": amount_total,
                "currency": currency,
            })
            return

        if not email:
            logger.warning(f"Verification session {session_id} has no email")
            return

        upsert_verification_email(email, session_id)
        log_billing_audit("verification.recorded", {
            "session_id": session_id,
            "email": email,
        })
        logger.info(f"Email {email} verified by session {session_id}")

    elif session.get("mode") == "subscription":
        attach_checkout_subscription(
            stripe_customer_id, _object_id(session.get("subscription"))
        )
        log_billing_audit("subscription.checkout_completed", {
            "session_id": session_id,
            "stripe_customer_id": stripe_customer_id,
        }, actor_user_id=get_user_id_from_stripe_customer(stripe_customer_id))
