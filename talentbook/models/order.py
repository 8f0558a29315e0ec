"""Stripe order model.

A normalized receipt for every completed checkout session, written by the
fulfillment reconciler before any purpose-specific side effect.
session_id is unique: a session is recorded once even if its webhook is
handled twice.
"""

import uuid

from talentbook.extensions import db


class StripeOrder(db.Model):
    __tablename__ = "stripe_orders"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    session_id = db.Column(db.String(255), unique=True, nullable=False)
    payment_intent_id = db.Column(db.String(255), nullable=True)
    customer_id = db.Column(db.String(255), nullable=True)  # null for anonymous
    email = db.Column(db.String(255), nullable=True)
    amount_total = db.Column(db.Integer, nullable=False, default=0)  # minor units
    currency = db.Column(db.String(10), nullable=False)
    payment_status = db.Column(db.String(50), nullable=True)  # paid | unpaid | no_payment_required
    purpose = db.Column(db.String(50), nullable=True)  # verification | subscription | boost | ...
    user_type = db.Column(db.String(50), nullable=True)
    payload = db.Column(db.JSON, nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<StripeOrder {self.session_id} {self.amount_total} {self.currency}>"
