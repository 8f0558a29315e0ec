"""Webhooks blueprint — /webhook

Receives Stripe webhook events. CSRF-exempt.
Raw body is required for signature verification.
"""

import logging

from flask import Blueprint, jsonify, request

from talentbook.errors import InvalidSignature
from talentbook.services.stripe_service import handle_webhook_event, verify_webhook_signature

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__)


@webhooks_bp.route("/webhook", methods=["POST"])
def stripe_webhook():
    """Receive and process Stripe webhook events.

    1. Get raw body (required for signature verification)
    2. Verify signature with STRIPE_WEBHOOK_SECRET — nothing touches the
       database before this passes
    3. Record + dispatch via handle_webhook_event (idempotent)
    4. 200 on processed or duplicate, 500 on transient failure so Stripe
       redelivers

    CSRF is exempted for this blueprint in create_app().
    """
    payload = request.get_data(as_text=True)
    sig_header = request.headers.get("Stripe-Signature")

    try:
        event = verify_webhook_signature(payload, sig_header)
    except InvalidSignature as e:
        logger.warning(f"Webhook signature verification failed: {e.message}")
        raise

    status = handle_webhook_event(event)
    return jsonify({"ok": True, "status": status, "duplicate": status == "already_processed"}), 200
