"""Stripe event model (idempotency table).

Every webhook event is recorded by its Stripe event ID, which is the
primary key. Inserting a redelivered event raises a uniqueness conflict;
that conflict is the only deduplication signal the gateway uses.
Rows are never updated and are kept for audit/replay.
"""

from talentbook.extensions import db


class StripeEvent(db.Model):
    __tablename__ = "stripe_events"

    stripe_event_id = db.Column(
        db.String(255), primary_key=True
    )  # e.g. "evt_1Abc..."
    event_type = db.Column(
        db.String(255), nullable=False
    )  # e.g. "checkout.session.completed"
    created = db.Column(
        db.DateTime(timezone=True), nullable=True
    )  # provider-side creation time
    received_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    payload = db.Column(db.JSON, nullable=False)

    def __repr__(self):
        return f"<StripeEvent {self.stripe_event_id} ({self.event_type})>"
