"""Tests for the Stripe SDK setup shared by every provider call."""

import stripe

from talentbook.services.stripe_client import configure_stripe


class TestConfigureStripe:

    def test_installs_bounded_http_client(self, app, monkeypatch):
        monkeypatch.setattr(stripe, "default_http_client", None)

        configure_stripe()

        client = stripe.default_http_client
        assert isinstance(client, stripe.RequestsClient)
        assert client._timeout == app.config["STRIPE_TIMEOUT_SECONDS"]
        assert stripe.api_key == "sk_test_fake"

    def test_reuses_client_while_timeout_unchanged(self, monkeypatch):
        monkeypatch.setattr(stripe, "default_http_client", None)

        configure_stripe()
        first = stripe.default_http_client
        configure_stripe()

        assert stripe.default_http_client is first

    def test_rebuilds_client_when_timeout_changes(self, app, monkeypatch):
        monkeypatch.setattr(stripe, "default_http_client", None)
        configure_stripe()
        first = stripe.default_http_client

        monkeypatch.setitem(app.config, "STRIPE_TIMEOUT_SECONDS", 2.5)
        configure_stripe()

        assert stripe.default_http_client is not first
        assert stripe.default_http_client._timeout == 2.5
