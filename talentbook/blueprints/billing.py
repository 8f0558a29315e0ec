"""Billing blueprint — checkout creation and session verification.

Routes:
- POST /checkout        — create a Stripe Checkout Session, return its URL
- POST /verify-session  — confirm a session is a paid one-time payment
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user

from talentbook.extensions import limiter
from talentbook.services.checkout_service import CheckoutRequest, create_checkout_session
from talentbook.services.stripe_service import verify_checkout_session

logger = logging.getLogger(__name__)

billing_bp = Blueprint("billing", __name__)


# ──────────────────────────────────────────────
# POST /checkout
# ──────────────────────────────────────────────

@billing_bp.route("/checkout", methods=["POST"])
@limiter.limit("20 per minute")
def checkout():
    """Create a Stripe Checkout Session.

    Verification checkouts may be anonymous; every other category needs
    a bearer token or login session (401 otherwise). Validation errors
    are answered with 400 before Stripe is called.
    """
    checkout_request = CheckoutRequest.from_payload(request.get_json(silent=True))
    result = create_checkout_session(checkout_request, current_user)
    return jsonify(result.to_dict()), 200


# ──────────────────────────────────────────────
# POST /verify-session
# ──────────────────────────────────────────────

@billing_bp.route("/verify-session", methods=["POST"])
@limiter.limit("30 per minute")
def verify_session():
    """Report whether a checkout session is paid. 400 if it is not."""
    body = request.get_json(silent=True) or {}
    return jsonify(verify_checkout_session(body.get("session_id"))), 200
