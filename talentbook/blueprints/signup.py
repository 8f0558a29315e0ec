"""Signup blueprint — payment-gated account creation.

Routes:
- POST /signup            — stage the signup form, start the verification checkout
- GET  /checkout/success  — Stripe success redirect; completes the signup
- GET  /checkout/cancel   — Stripe cancel redirect
- POST /signup/reset      — "try again": discard staged signup data
"""

import logging
from urllib.parse import urlsplit

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_user

from talentbook.errors import BillingError, ValidationError
from talentbook.extensions import limiter
from talentbook.services.checkout_service import (
    MODE_ONE_TIME,
    VERIFICATION_CATEGORY,
    CheckoutRequest,
    create_checkout_session,
)
from talentbook.services.signup_service import (
    PendingSignup,
    SignupCompletion,
    clear_pending_signup,
    stage_signup,
)

logger = logging.getLogger(__name__)

signup_bp = Blueprint("signup", __name__)


def _own_redirect(form, field, base_url, default):
    """A caller-supplied redirect must stay on APP_BASE_URL's origin."""
    url = form.get(field)
    if not url:
        return default
    if not isinstance(url, str):
        raise ValidationError(field)
    target = urlsplit(url)
    base = urlsplit(base_url)
    if (target.scheme, target.netloc) != (base.scheme, base.netloc):
        raise ValidationError(field, f"{field} must point to {base.scheme}://{base.netloc}")
    return url


# ──────────────────────────────────────────────
# POST /signup
# ──────────────────────────────────────────────

@signup_bp.route("/signup", methods=["POST"])
@limiter.limit("10 per minute")
def start_signup():
    """Stage the signup and return the verification checkout URL.

    If the checkout cannot be created, the staged data is cleared so the
    form has to be submitted again.
    """
    form = request.get_json(silent=True)
    pending = PendingSignup.from_form(form)

    base_url = current_app.config["APP_BASE_URL"]
    checkout_request = CheckoutRequest.from_payload({
        "price_id": current_app.config["STRIPE_VERIFICATION_PRICE_ID"],
        "mode": MODE_ONE_TIME,
        "category": VERIFICATION_CATEGORY,
        "email": pending.email,
        "user_type": pending.user_type,
        "success_url": _own_redirect(form, "success_url", base_url, (
            f"{base_url}/checkout/success"
            f"?type=verification&session_id={{CHECKOUT_SESSION_ID}}"
        )),
        "cancel_url": _own_redirect(form, "cancel_url", base_url, (
            f"{base_url}/checkout/cancel?type=verification"
        )),
    })

    stage_signup(pending)
    try:
        result = create_checkout_session(checkout_request, current_user)
    except BillingError:
        clear_pending_signup()
        raise

    logger.info(f"Signup staged for {pending.email}, checkout {result.session_id}")
    return jsonify(result.to_dict()), 200


# ──────────────────────────────────────────────
# GET /checkout/success?type=verification&session_id=...
# ──────────────────────────────────────────────

@signup_bp.route("/checkout/success")
@limiter.limit("10 per minute")
def checkout_success():
    """Complete the pending signup for a paid verification session.

    Returns {"status": "success", "redirect_url", "redirect_delay_ms"} or
    {"status": "error", "error"} with 400.
    """
    completion = SignupCompletion(request.args.get("session_id")).run()
    if completion.state != SignupCompletion.SUCCESS:
        return jsonify(completion.to_dict()), 400

    login_user(completion.user)
    return jsonify(completion.to_dict()), 200


# ──────────────────────────────────────────────
# GET /checkout/cancel
# ──────────────────────────────────────────────

@signup_bp.route("/checkout/cancel")
def checkout_cancel():
    """User left Stripe Checkout. Staged data is kept so they can retry payment."""
    return jsonify({"status": "cancelled"}), 200


# ──────────────────────────────────────────────
# POST /signup/reset
# ──────────────────────────────────────────────

@signup_bp.route("/signup/reset", methods=["POST"])
def reset_signup():
    """Discard any staged signup data."""
    clear_pending_signup()
    return jsonify({"status": "reset"}), 200
