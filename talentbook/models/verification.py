"""Verification email model.

Keyed by the (lower-cased) email. Written only by the fulfillment
reconciler when a verification payment of the exact expected price
arrives; repeated payments upsert the same row.
"""

from talentbook.extensions import db


class VerificationEmail(db.Model):
    __tablename__ = "verification_emails"

    email = db.Column(db.String(255), primary_key=True)
    is_verified = db.Column(db.Boolean, nullable=False, default=False)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_session_id = db.Column(db.String(255), nullable=True)

    def __repr__(self):
        return f"<VerificationEmail {self.email} verified={self.is_verified}>"
