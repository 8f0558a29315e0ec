"""Tests for POST /checkout.

Covers:
- Request validation (400 naming the field, Stripe never called)
- Category gating (verification anonymous, everything else needs a bearer)
- Lazy customer mapping: one live mapping per user, race resolution
- not_started subscription placeholder for recurring checkouts
- Reserved metadata keys
- Stripe failures surface as 500
"""

from unittest.mock import MagicMock, patch

import pytest
import stripe

from talentbook.extensions import db
from talentbook.models.audit import AuditEvent
from talentbook.models.billing import BillingCustomer, BillingSubscription
from talentbook.services import billing_service


def _session(session_id="cs_test_123"):
    return MagicMock(id=session_id, url=f"https://checkout.stripe.com/c/pay/{session_id}")


def _customer(customer_id="cus_test_123"):
    return MagicMock(id=customer_id)


def _body(**overrides):
    body = {
        "price_id": "price_pro_monthly",
        "success_url": "http://localhost:5000/done",
        "cancel_url": "http://localhost:5000/cancelled",
        "category": "premium",
    }
    body.update(overrides)
    return body


class TestCheckoutValidation:
    """Malformed requests never reach Stripe."""

    @pytest.mark.parametrize("missing", ["price_id", "success_url", "cancel_url"])
    @patch("stripe.checkout.Session.create")
    def test_missing_required_field(self, mock_create, client, missing):
        body = _body(category="verification", email="ada@example.com")
        body.pop(missing)

        resp = client.post("/checkout", json=body)

        assert resp.status_code == 400
        data = resp.get_json()
        assert data["field"] == missing
        assert data["code"] == "VALIDATION_ERROR"
        mock_create.assert_not_called()

    @patch("stripe.checkout.Session.create")
    def test_blank_price_id(self, mock_create, client):
        resp = client.post("/checkout", json=_body(price_id="   "))
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "price_id"
        mock_create.assert_not_called()

    @patch("stripe.checkout.Session.create")
    def test_invalid_mode(self, mock_create, client):
        resp = client.post("/checkout", json=_body(mode="setup"))
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "mode"
        mock_create.assert_not_called()

    @patch("stripe.checkout.Session.create")
    def test_invalid_user_type(self, mock_create, client):
        resp = client.post("/checkout", json=_body(user_type="admin"))
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "user_type"

    @patch("stripe.checkout.Session.create")
    def test_nested_metadata_rejected(self, mock_create, client):
        resp = client.post("/checkout", json=_body(metadata={"nested": {"a": 1}}))
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "metadata"

    def test_non_json_body(self, client):
        resp = client.post("/checkout", data="price_id=x", content_type="text/plain")
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "body"


class TestCheckoutAuthentication:
    """Non-verification categories require a bearer credential."""

    @patch("stripe.Customer.create")
    @patch("stripe.checkout.Session.create")
    def test_anonymous_premium_is_401(self, mock_create, mock_customer, client):
        resp = client.post("/checkout", json=_body())

        assert resp.status_code == 401
        assert resp.get_json()["code"] == "AUTHENTICATION_REQUIRED"
        mock_create.assert_not_called()
        mock_customer.assert_not_called()
        assert BillingCustomer.query.count() == 0

    @patch("stripe.checkout.Session.create")
    def test_invalid_bearer_is_401(self, mock_create, client):
        resp = client.post(
            "/checkout",
            json=_body(),
            headers={"Authorization": "Bearer not-a-real-token"},
        )
        assert resp.status_code == 401
        mock_create.assert_not_called()

    @patch("stripe.checkout.Session.create")
    def test_user_id_mismatch_is_400(self, mock_create, client, make_user, auth_headers):
        user_id = make_user()
        resp = client.post(
            "/checkout",
            json=_body(user_id="someone-else"),
            headers=auth_headers(user_id),
        )
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "user_id"
        mock_create.assert_not_called()


class TestAuthenticatedCheckout:
    """Gated categories map the caller to one Stripe customer."""

    @patch("stripe.Customer.create")
    @patch("stripe.checkout.Session.create")
    def test_creates_mapping_and_session(self, mock_create, mock_customer, client,
                                         make_user, auth_headers):
        user_id = make_user(email="acme@example.com")
        mock_customer.return_value = _customer("cus_acme")
        mock_create.return_value = _session("cs_acme")

        resp = client.post("/checkout", json=_body(), headers=auth_headers(user_id))

        assert resp.status_code == 200
        assert resp.get_json() == {
            "session_id": "cs_acme",
            "url": "https://checkout.stripe.com/c/pay/cs_acme",
        }

        mock_customer.assert_called_once()
        assert mock_customer.call_args.kwargs["metadata"] == {"user_id": user_id}
        assert mock_customer.call_args.kwargs["email"] == "acme@example.com"

        kwargs = mock_create.call_args.kwargs
        assert kwargs["customer"] == "cus_acme"
        assert kwargs["mode"] == "payment"
        assert kwargs["line_items"] == [{"price": "price_pro_monthly", "quantity": 1}]
        assert kwargs["metadata"]["purpose"] == "premium"
        assert kwargs["metadata"]["userId"] == user_id
        assert kwargs["metadata"]["userType"] == "company"

        mapping = BillingCustomer.query.filter_by(user_id=user_id).one()
        assert mapping.stripe_customer_id == "cus_acme"
        assert AuditEvent.query.filter_by(action="checkout.created").count() == 1

    @patch("stripe.Customer.create")
    @patch("stripe.checkout.Session.create")
    def test_repeated_checkouts_reuse_mapping(self, mock_create, mock_customer, client,
                                              make_user, auth_headers):
        user_id = make_user()
        mock_customer.return_value = _customer("cus_once")
        mock_create.return_value = _session()
        headers = auth_headers(user_id)

        for _ in range(3):
            resp = client.post("/checkout", json=_body(), headers=headers)
            assert resp.status_code == 200

        assert mock_customer.call_count == 1
        assert BillingCustomer.query.filter_by(user_id=user_id).count() == 1
        for call in mock_create.call_args_list:
            assert call.kwargs["customer"] == "cus_once"

    @patch("stripe.Customer.create")
    @patch("stripe.checkout.Session.create")
    def test_concurrent_mapping_keeps_winner(self, mock_create, mock_customer, client,
                                             make_user, auth_headers):
        """Another request commits a mapping between our read and insert."""
        user_id = make_user()
        db.session.add(BillingCustomer(user_id=user_id, stripe_customer_id="cus_winner"))
        db.session.commit()

        mock_customer.return_value = _customer("cus_loser")
        mock_create.return_value = _session()

        real_lookup = billing_service.get_live_billing_customer
        calls = []

        def stale_then_real(uid):
            calls.append(uid)
            if len(calls) == 1:
                return None
            return real_lookup(uid)

        with patch.object(billing_service, "get_live_billing_customer",
                          side_effect=stale_then_real):
            resp = client.post("/checkout", json=_body(), headers=auth_headers(user_id))

        assert resp.status_code == 200
        assert mock_create.call_args.kwargs["customer"] == "cus_winner"
        mappings = BillingCustomer.query.filter_by(user_id=user_id, deleted_at=None).all()
        assert [m.stripe_customer_id for m in mappings] == ["cus_winner"]

    @patch("stripe.Customer.create")
    @patch("stripe.checkout.Session.create")
    def test_recurring_seeds_not_started_placeholder(self, mock_create, mock_customer,
                                                     client, make_user, auth_headers):
        user_id = make_user()
        mock_customer.return_value = _customer("cus_sub")
        mock_create.return_value = _session()

        resp = client.post(
            "/checkout",
            json=_body(mode="subscription"),
            headers=auth_headers(user_id),
        )

        assert resp.status_code == 200
        assert mock_create.call_args.kwargs["mode"] == "subscription"
        sub = BillingSubscription.query.filter_by(stripe_customer_id="cus_sub").one()
        assert sub.status == "not_started"

    @patch("stripe.Customer.create")
    @patch("stripe.checkout.Session.create")
    def test_reserved_metadata_keys_win(self, mock_create, mock_customer, client,
                                        make_user, auth_headers):
        user_id = make_user()
        mock_customer.return_value = _customer()
        mock_create.return_value = _session()

        resp = client.post(
            "/checkout",
            json=_body(metadata={
                "purpose": "verification",
                "userId": "forged",
                "campaign": "spring",
                "seats": 3,
            }),
            headers=auth_headers(user_id),
        )

        assert resp.status_code == 200
        meta = mock_create.call_args.kwargs["metadata"]
        assert meta["purpose"] == "premium"
        assert meta["userId"] == user_id
        assert meta["campaign"] == "spring"
        assert meta["seats"] == "3"

    @patch("stripe.Customer.create")
    @patch("stripe.checkout.Session.create")
    def test_stripe_error_is_500(self, mock_create, mock_customer, client,
                                 make_user, auth_headers):
        user_id = make_user()
        mock_customer.return_value = _customer()
        mock_create.side_effect = stripe.APIConnectionError("connection reset")

        resp = client.post("/checkout", json=_body(), headers=auth_headers(user_id))

        assert resp.status_code == 500
        assert resp.get_json()["code"] == "TRANSIENT_FAILURE"

    @patch("stripe.Customer.create")
    @patch("stripe.checkout.Session.create")
    def test_customer_creation_error_is_500(self, mock_create, mock_customer, client,
                                            make_user, auth_headers):
        user_id = make_user()
        mock_customer.side_effect = stripe.APIConnectionError("timeout")

        resp = client.post("/checkout", json=_body(), headers=auth_headers(user_id))

        assert resp.status_code == 500
        mock_create.assert_not_called()
        assert BillingCustomer.query.count() == 0


class TestVerificationCheckout:
    """The verification fee may be paid before an account exists."""

    @patch("stripe.Customer.create")
    @patch("stripe.checkout.Session.create")
    def test_anonymous_with_email(self, mock_create, mock_customer, client):
        mock_customer.return_value = _customer("cus_pending")
        mock_create.return_value = _session("cs_verify")

        resp = client.post("/checkout", json=_body(
            category="verification",
            email="Ada@Example.com",
            user_type="job_seeker",
            price_id="price_verification_test",
        ))

        assert resp.status_code == 200
        assert resp.get_json()["session_id"] == "cs_verify"

        mock_customer.assert_called_once_with(
            email="ada@example.com",
            metadata={"pending_signup": "true"},
        )
        meta = mock_create.call_args.kwargs["metadata"]
        assert meta == {
            "purpose": "verification",
            "userId": "",
            "userType": "job_seeker",
            "category": "verification",
        }
        assert BillingCustomer.query.count() == 0

    @patch("stripe.checkout.Session.create")
    def test_anonymous_without_email_is_400(self, mock_create, client):
        resp = client.post("/checkout", json=_body(category="verification"))

        assert resp.status_code == 400
        assert resp.get_json()["field"] == "email"
        mock_create.assert_not_called()

    @patch("stripe.checkout.Session.create")
    def test_unknown_user_id_is_400(self, mock_create, client):
        resp = client.post("/checkout", json=_body(
            category="verification",
            email="ada@example.com",
            user_id="does-not-exist",
        ))
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "user_id"
        mock_create.assert_not_called()

    @patch("stripe.Customer.create")
    @patch("stripe.checkout.Session.create")
    def test_authenticated_caller_is_mapped(self, mock_create, mock_customer, client,
                                            make_user, auth_headers):
        user_id = make_user(email="known@example.com", user_type="job_seeker")
        mock_customer.return_value = _customer("cus_known")
        mock_create.return_value = _session()

        resp = client.post(
            "/checkout",
            json=_body(category="verification"),
            headers=auth_headers(user_id),
        )

        assert resp.status_code == 200
        meta = mock_create.call_args.kwargs["metadata"]
        assert meta["userId"] == user_id
        assert meta["userType"] == "job_seeker"
        assert meta["purpose"] == "verification"
        assert BillingCustomer.query.filter_by(user_id=user_id).one().stripe_customer_id == "cus_known"
