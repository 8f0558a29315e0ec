import os
import logging

import click
from flask import Flask, current_app, jsonify, request
from flask_wtf.csrf import CSRFError
from werkzeug.exceptions import HTTPException

from talentbook.config import config_by_name
from talentbook.errors import BillingError
from talentbook.extensions import db, migrate, login_manager, csrf, limiter

logger = logging.getLogger(__name__)


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])
    # CSRF is enforced by csrf_protect_cookie_requests below, not globally.
    app.config["WTF_CSRF_CHECK_DEFAULT"] = False

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from talentbook import models  # noqa: F401

    # --- Register blueprints ---
    from talentbook.blueprints.auth import auth_bp
    from talentbook.blueprints.billing import billing_bp
    from talentbook.blueprints.signup import signup_bp
    from talentbook.blueprints.webhooks import webhooks_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(billing_bp)
    app.register_blueprint(signup_bp)
    app.register_blueprint(webhooks_bp)

    @app.before_request
    def csrf_protect_cookie_requests():
        """CSRF-check browser requests.

        Webhooks (signed by Stripe) and bearer-token calls carry no
        ambient cookie credential, so they are skipped.
        """
        if not current_app.config["WTF_CSRF_ENABLED"]:
            return
        if request.blueprint == "webhooks":
            return
        if request.headers.get("Authorization", "").lower().startswith("bearer "):
            return
        csrf.protect()

    # --- Error handlers ---
    register_error_handlers(app)

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_error_handlers(app):
    """Render every error as JSON."""

    @app.errorhandler(BillingError)
    def billing_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(CSRFError)
    def csrf_error(e):
        return jsonify({"error": e.description, "code": "CSRF_FAILED"}), 400

    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify({"error": e.description, "code": e.name.upper().replace(" ", "_")}), e.code

    @app.errorhandler(Exception)
    def server_error(e):
        logger.error(f"Unhandled error on {request.path}: {e}", exc_info=True)
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("create-verification-price")
    def create_verification_price():
        """Create the one-time €1.00 account verification price in Stripe.

        Run once, then copy the printed price ID into the
        STRIPE_VERIFICATION_PRICE_ID environment variable.
        """
        from talentbook.services.stripe_client import configure_stripe

        _stripe = configure_stripe()

        price = _stripe.Price.create(
            unit_amount=app.config["VERIFICATION_AMOUNT"],
            currency=app.config["VERIFICATION_CURRENCY"],
            product_data={
                "name": "Account Verification Fee",
                "statement_descriptor": "TB VERIFICATION",
            },
            metadata={"category": "verification"},
        )

        click.echo("")
        click.echo("=" * 60)
        click.echo("Stripe verification price created!")
        click.echo("=" * 60)
        click.echo(f"  Price ID:  {price.id}")
        click.echo(f"  Amount:    {price.unit_amount / 100:.2f} {price.currency.upper()}")
        click.echo("")
        click.echo("Add this to your environment variables:")
        click.echo(f"  STRIPE_VERIFICATION_PRICE_ID={price.id}")
        click.echo("=" * 60)

    @app.cli.command("verify-stripe-prices")
    def verify_stripe_prices():
        """Check the configured verification price exists and matches the expected fee.

        Run with prod env vars to confirm Live prices; run with test vars for Test mode.
        """
        import stripe as _stripe

        api_key = app.config.get("STRIPE_SECRET_KEY")
        price_id = app.config.get("STRIPE_VERIFICATION_PRICE_ID")

        if not api_key:
            click.echo("ERROR: STRIPE_SECRET_KEY is not set.")
            return
        if not price_id:
            click.echo("ERROR: STRIPE_VERIFICATION_PRICE_ID is not set.")
            return
        key_mode = "Live" if api_key.startswith("sk_live_") else "Test"
        click.echo(f"Stripe key mode: {key_mode}")

        _stripe.api_key = api_key
        try:
            price = _stripe.Price.retrieve(price_id)
        except _stripe.InvalidRequestError as e:
            click.echo(f"  {price_id}: ERROR: {e}")
            return

        livemode = getattr(price, "livemode", "?")
        click.echo(f"  {price_id}: livemode={livemode}, "
                   f"amount={price.unit_amount} {price.currency}")
        if livemode is True and key_mode != "Live":
            click.echo("  WARNING: This price is Live but your key is Test.")
        elif livemode is False and key_mode == "Live":
            click.echo("  WARNING: This price is Test but your key is Live.")
        if (price.unit_amount != app.config["VERIFICATION_AMOUNT"]
                or price.currency != app.config["VERIFICATION_CURRENCY"]):
            click.echo(
                "  WARNING: Price does not match VERIFICATION_AMOUNT/"
                "VERIFICATION_CURRENCY; webhooks will not mark emails verified."
            )
