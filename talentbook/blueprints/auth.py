"""Auth blueprint — /auth/*

Email + password login that hands out a bearer token for API callers,
logout, and the CSRF token for browser clients. Accounts themselves are
created only by the payment-gated signup flow.
"""

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf
from werkzeug.security import check_password_hash

from talentbook.errors import BillingError, ValidationError
from talentbook.extensions import issue_api_token, limiter
from talentbook.models.user import User

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


# ──────────────────────────────────────────────
# POST /auth/login
# ──────────────────────────────────────────────

@auth_bp.route("/login", methods=["POST"])
@limiter.limit("15 per minute")
def login():
    """Check credentials, start a session and return a bearer token."""
    body = request.get_json(silent=True) or {}
    email = str(body.get("email") or "").lower().strip()
    password = str(body.get("password") or "")

    if not email:
        raise ValidationError("email", "Email and password are required.")
    if not password:
        raise ValidationError("password", "Email and password are required.")

    user = User.query.filter_by(email=email).first()

    if user is None or not check_password_hash(user.password_hash, password):
        raise BillingError("Invalid email or password.", code="INVALID_CREDENTIALS", status_code=401)

    if not user.is_active:
        raise BillingError("Your account has been deactivated.", code="ACCOUNT_INACTIVE", status_code=403)

    login_user(user)
    return jsonify({"token": issue_api_token(user), "user": user.to_dict()}), 200


# ──────────────────────────────────────────────
# POST /auth/logout
# ──────────────────────────────────────────────

@auth_bp.route("/logout", methods=["POST"])
def logout():
    logout_user()
    return jsonify({"status": "logged_out"}), 200


# ──────────────────────────────────────────────
# GET /auth/me
# ──────────────────────────────────────────────

@auth_bp.route("/me")
@login_required
def me():
    """The signed-in user (cookie session or bearer token)."""
    return jsonify({"user": current_user.to_dict()}), 200


# ──────────────────────────────────────────────
# GET /auth/csrf
# ──────────────────────────────────────────────

@auth_bp.route("/csrf")
def csrf_token():
    """CSRF token for cookie-authenticated POSTs from the browser."""
    return jsonify({"csrf_token": generate_csrf()}), 200
