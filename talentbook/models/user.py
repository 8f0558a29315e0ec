"""User model.

The identity backend for this service: accounts are only ever created by
the signup completion flow, after a verification payment is confirmed.
Flask-Login integration via UserMixin.
"""

import uuid

from flask_login import UserMixin

from talentbook.extensions import db


class User(UserMixin, db.Model):
    __tablename__ = "users"

    # -- Roles chosen at signup --
    USER_TYPES = ["job_seeker", "company"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(255))
    user_type = db.Column(db.String(50), nullable=False)  # job_seeker | company
    is_verified = db.Column(db.Boolean, default=False)
    signup_session_id = db.Column(
        db.String(255), unique=True, nullable=True
    )  # checkout session that paid for this account, e.g. "cs_test_..."
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    billing_customers = db.relationship(
        "BillingCustomer", back_populates="user", lazy="dynamic"
    )
    audit_events = db.relationship(
        "AuditEvent", back_populates="actor", lazy="dynamic"
    )

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "user_type": self.user_type,
            "is_verified": bool(self.is_verified),
        }

    def __repr__(self):
        return f"<User {self.email}>"
