"""Billing models.

- BillingCustomer: links a local user to a Stripe customer ID.
  At most one live (deleted_at IS NULL) row per user, enforced by a
  partial unique index so concurrent checkouts cannot both insert.
- BillingSubscription: one row per Stripe customer, seeded as
  "not_started" at recurring checkout and synced from webhooks afterwards.
"""

import uuid

from talentbook.extensions import db


class BillingCustomer(db.Model):
    __tablename__ = "billing_customers"
    __table_args__ = (
        db.Index(
            "uq_billing_customers_live_user",
            "user_id",
            unique=True,
            postgresql_where=db.text("deleted_at IS NULL"),
            sqlite_where=db.text("deleted_at IS NULL"),
        ),
    )

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    stripe_customer_id = db.Column(
        db.String(255), unique=True, nullable=False
    )
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="billing_customers")

    def __repr__(self):
        return f"<BillingCustomer stripe={self.stripe_customer_id}>"


class BillingSubscription(db.Model):
    __tablename__ = "billing_subscriptions"

    # -- Valid statuses (not_started is local; the rest are synced from Stripe) --
    STATUSES = [
        "not_started",
        "incomplete",
        "incomplete_expired",
        "trialing",
        "active",
        "past_due",
        "canceled",
        "unpaid",
        "paused",
    ]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_customer_id = db.Column(
        db.String(255), unique=True, nullable=False
    )
    stripe_subscription_id = db.Column(
        db.String(255), unique=True, nullable=True
    )
    stripe_price_id = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(50), nullable=False, default="not_started")
    current_period_end = db.Column(
        db.DateTime(timezone=True), nullable=True
    )
    cancel_at_period_end = db.Column(db.Boolean, default=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self):
        return f"<BillingSubscription {self.stripe_customer_id} ({self.status})>"
