"""Billing service — customer mapping, subscription sync, audit helpers.

Responsible for:
- Mapping local users to Stripe customers (one live mapping per user)
- Seeding the "not_started" subscription row at recurring checkout
- Syncing billing_subscriptions rows from Stripe subscription events
- Writing billing audit events
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from talentbook.errors import TransientPersistenceFailure
from talentbook.extensions import db
from talentbook.models.audit import AuditEvent
from talentbook.models.billing import BillingCustomer, BillingSubscription
from talentbook.services.stripe_client import configure_stripe

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Customer mapping
# ──────────────────────────────────────────────

def get_live_billing_customer(user_id):
    """Return the user's non-deleted BillingCustomer, or None."""
    return BillingCustomer.query.filter_by(
        user_id=user_id, deleted_at=None
    ).first()


def get_or_create_billing_customer(user, email=None):
    """Get the user's live BillingCustomer or create one.

    Creates at most one Stripe customer per call. The insert relies on the
    partial unique index on user_id: if a concurrent checkout for the same
    user committed first, its mapping wins and ours is discarded.

    Returns the BillingCustomer instance (committed).
    Raises TransientPersistenceFailure on database errors.
    """
    customer = get_live_billing_customer(user.id)
    if customer:
        return customer

    stripe = configure_stripe()
    params = {"metadata": {"user_id": str(user.id)}}
    if email or user.email:
        params["email"] = email or user.email
    if user.full_name:
        params["name"] = user.full_name
    stripe_customer = stripe.Customer.create(**params)

    user_id = user.id
    customer = BillingCustomer(
        user_id=user_id,
        stripe_customer_id=stripe_customer.id,
    )
    db.session.add(customer)
    try:
        log_billing_audit("billing_customer.created", {
            "stripe_customer_id": stripe_customer.id,
        }, actor_user_id=user_id)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        winner = get_live_billing_customer(user_id)
        if winner is None:
            raise TransientPersistenceFailure("Could not record billing customer")
        logger.warning(
            f"Concurrent checkout mapped user {user_id} first; "
            f"Stripe customer {stripe_customer.id} left unmapped"
        )
        return winner
    except SQLAlchemyError as e:
        db.session.rollback()
        raise TransientPersistenceFailure("Could not record billing customer") from e

    logger.info(f"Mapped user {user_id} to Stripe customer {stripe_customer.id}")
    return customer


def get_user_id_from_stripe_customer(stripe_customer_id):
    """Look up the local user_id for a Stripe customer ID.

    Returns user_id string or None.
    """
    if not stripe_customer_id:
        return None
    customer = BillingCustomer.query.filter_by(
        stripe_customer_id=stripe_customer_id
    ).first()
    if customer:
        return customer.user_id
    return None


# ──────────────────────────────────────────────
# Subscriptions
# ──────────────────────────────────────────────

def ensure_subscription_placeholder(stripe_customer_id):
    """Seed a "not_started" subscription row for a customer if none exists.

    Lets readers tell "never subscribed" apart from "checkout started".
    Returns the BillingSubscription instance (committed).
    """
    sub = BillingSubscription.query.filter_by(
        stripe_customer_id=stripe_customer_id
    ).first()
    if sub:
        return sub

    sub = BillingSubscription(
        stripe_customer_id=stripe_customer_id,
        status="not_started",
    )
    db.session.add(sub)
    try:
        db.session.commit()
    except IntegrityError:
        # Another checkout seeded it between our read and write.
        db.session.rollback()
        return BillingSubscription.query.filter_by(
            stripe_customer_id=stripe_customer_id
        ).first()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise TransientPersistenceFailure("Could not record subscription") from e
    return sub


def _extract_period_end(sub_data):
    """Extract current_period_end from a Stripe subscription object.

    Newer API versions moved current_period_end from the subscription top
    level to items.data[0].current_period_end, so both are checked.

    Returns a timezone-aware datetime or None.
    """
    ts = sub_data.get("current_period_end")

    if not ts:
        items = sub_data.get("items")
        if items and items.get("data"):
            ts = items["data"][0].get("current_period_end")

    if ts:
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    return None


def _extract_price_id(sub_data):
    items = sub_data.get("items")
    if items and items.get("data"):
        return (items["data"][0].get("price") or {}).get("id")
    return None


def upsert_subscription(stripe_customer_id, stripe_subscription_id, status,
                        stripe_price_id=None, current_period_end=None,
                        cancel_at_period_end=False):
    """Create or update the customer's BillingSubscription from Stripe data.

    Uses flush() so the webhook transaction controls the commit boundary.
    """
    sub = None
    if stripe_subscription_id:
        sub = BillingSubscription.query.filter_by(
            stripe_subscription_id=stripe_subscription_id
        ).first()
    if sub is None:
        sub = BillingSubscription.query.filter_by(
            stripe_customer_id=stripe_customer_id
        ).first()

    if sub:
        sub.status = status
        if stripe_subscription_id:
            sub.stripe_subscription_id = stripe_subscription_id
        if stripe_price_id:
            sub.stripe_price_id = stripe_price_id
        if current_period_end:
            sub.current_period_end = current_period_end
        sub.cancel_at_period_end = cancel_at_period_end
    else:
        sub = BillingSubscription(
            stripe_customer_id=stripe_customer_id,
            stripe_subscription_id=stripe_subscription_id,
            stripe_price_id=stripe_price_id,
            status=status,
            current_period_end=current_period_end,
            cancel_at_period_end=cancel_at_period_end,
        )
        db.session.add(sub)

    db.session.flush()
    return sub


def attach_checkout_subscription(stripe_customer_id, stripe_subscription_id):
    """Record the subscription id a recurring checkout produced.

    Status stays as-is; customer.subscription.* events carry the real state.
    """
    if not stripe_customer_id or not stripe_subscription_id:
        return None
    sub = BillingSubscription.query.filter_by(
        stripe_customer_id=stripe_customer_id
    ).first()
    if sub is None:
        sub = BillingSubscription(
            stripe_customer_id=stripe_customer_id,
            status="not_started",
        )
        db.session.add(sub)
    if not sub.stripe_subscription_id:
        sub.stripe_subscription_id = stripe_subscription_id
    db.session.flush()
    return sub


def handle_subscription_changed(event):
    """Handle customer.subscription.created / customer.subscription.updated."""
    sub_data = event["data"]["object"]
    stripe_customer_id = sub_data.get("customer")

    user_id = get_user_id_from_stripe_customer(stripe_customer_id)
    if not user_id:
        logger.warning(
            f"{event['type']}: no local customer for {stripe_customer_id}"
        )
        return

    # Stripe uses cancel_at_period_end OR cancel_at (a future timestamp)
    # to indicate the subscription is set to cancel.
    is_cancelling = bool(
        sub_data.get("cancel_at_period_end", False)
        or sub_data.get("cancel_at") is not None
    )
    status = sub_data.get("status", "incomplete")

    upsert_subscription(
        stripe_customer_id=stripe_customer_id,
        stripe_subscription_id=sub_data.get("id"),
        status=status,
        stripe_price_id=_extract_price_id(sub_data),
        current_period_end=_extract_period_end(sub_data),
        cancel_at_period_end=is_cancelling,
    )

    log_billing_audit("subscription.synced", {
        "stripe_subscription_id": sub_data.get("id"),
        "status": status,
        "cancel_at_period_end": is_cancelling,
    }, actor_user_id=user_id)


def handle_subscription_deleted(event):
    """Handle customer.subscription.deleted — marks the row canceled."""
    sub_data = event["data"]["object"]
    stripe_subscription_id = sub_data.get("id")

    sub = BillingSubscription.query.filter_by(
        stripe_subscription_id=stripe_subscription_id
    ).first()
    if not sub:
        logger.warning(
            f"subscription.deleted: no local record for sub={stripe_subscription_id}"
        )
        return

    sub.status = "canceled"
    sub.cancel_at_period_end = False
    db.session.flush()

    log_billing_audit("subscription.deleted", {
        "stripe_subscription_id": stripe_subscription_id,
    }, actor_user_id=get_user_id_from_stripe_customer(sub.stripe_customer_id))


# ──────────────────────────────────────────────
# Audit
# ──────────────────────────────────────────────

def log_billing_audit(action, metadata=None, actor_user_id=None):
    """Log a billing-related audit event.

    Actor is None for system-initiated (webhook) events.
    """
    event = AuditEvent(
        actor_user_id=actor_user_id,
        action=action,
        metadata_=metadata or {},
    )
    db.session.add(event)
    db.session.flush()
