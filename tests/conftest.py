"""Shared test fixtures for the TalentBook billing test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- make_user: factory for existing accounts
- sign_payload / checkout_completed_event: build webhooks the way Stripe does
"""

import hashlib
import hmac
import json
import time

import pytest
from werkzeug.security import generate_password_hash

from talentbook import create_app
from talentbook.extensions import db as _db, issue_api_token
from talentbook.models.user import User

WEBHOOK_SECRET = "whsec_test_fake"


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def make_user(db_session):
    """Create a user and return its id."""

    def _make_user(email="member@example.com", password="memberpass123",
                   user_type="company", full_name="Member User"):
        user = User(
            email=email,
            password_hash=generate_password_hash(password),
            full_name=full_name,
            user_type=user_type,
            is_verified=True,
        )
        _db.session.add(user)
        _db.session.commit()
        return user.id

    return _make_user


@pytest.fixture
def auth_headers(db_session):
    """Bearer Authorization header for a user id."""

    def _auth_headers(user_id):
        user = _db.session.get(User, user_id)
        return {"Authorization": f"Bearer {issue_api_token(user)}"}

    return _auth_headers


def sign_payload(payload, secret=WEBHOOK_SECRET, timestamp=None):
    """Build a Stripe-Signature header (v1 scheme) for a raw body."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def checkout_completed_event(event_id="evt_checkout_001", session_id="cs_test_001",
                             amount_total=100, currency="eur", metadata=None,
                             customer_details_email=None, customer_email=None,
                             customer=None, mode="payment", payment_status="paid",
                             subscription=None):
    """A checkout.session.completed envelope as Stripe delivers it."""
    return {
        "id": event_id,
        "object": "event",
        "type": "checkout.session.completed",
        "created": 1760000000,
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "mode": mode,
                "amount_total": amount_total,
                "currency": currency,
                "payment_status": payment_status,
                "payment_intent": f"pi_{session_id}",
                "customer": customer,
                "customer_email": customer_email,
                "customer_details": (
                    {"email": customer_details_email}
                    if customer_details_email else None
                ),
                "metadata": metadata if metadata is not None else {},
                "subscription": subscription,
            }
        },
    }


def post_event(client, event, secret=WEBHOOK_SECRET):
    """Serialize, sign and POST an event to /webhook."""
    payload = json.dumps(event)
    return client.post(
        "/webhook",
        data=payload,
        content_type="application/json",
        headers={"Stripe-Signature": sign_payload(payload, secret)},
    )
