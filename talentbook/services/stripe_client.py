"""Stripe SDK configuration.

Every service that talks to Stripe calls configure_stripe() first so the
API key and the bounded network timeout come from the app config.
"""

import stripe
from flask import current_app


def configure_stripe():
    """Point the module-level Stripe client at the configured account.

    The HTTP client is rebuilt only when the timeout changes, so repeated
    calls within a process reuse one connection pool.
    """
    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]
    timeout = current_app.config["STRIPE_TIMEOUT_SECONDS"]
    client = stripe.default_http_client
    if client is None or getattr(client, "_timeout", None) != timeout:
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)
    return stripe
