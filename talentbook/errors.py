"""Billing / provisioning exception hierarchy.

Every error carries the HTTP status the boundary should answer with.
create_app() registers a handler that renders any BillingError as JSON.
"""


class BillingError(Exception):
    """Base exception for checkout, webhook and signup failures."""

    status_code = 500

    def __init__(self, message="", code="BILLING_ERROR", status_code=None):
        self.message = message
        self.code = code
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_dict(self):
        return {"error": self.message, "code": self.code}


class ValidationError(BillingError):
    """Malformed caller input. Never retried."""

    status_code = 400

    def __init__(self, field, message=None):
        self.field = field
        super().__init__(
            message or f"Missing or invalid {field}", code="VALIDATION_ERROR"
        )

    def to_dict(self):
        data = super().to_dict()
        data["field"] = self.field
        return data


class AuthenticationRequired(BillingError):
    """Missing or invalid bearer credential for a gated checkout category."""

    status_code = 401

    def __init__(self, message="Authentication required"):
        super().__init__(message, code="AUTHENTICATION_REQUIRED")


class InvalidSignature(BillingError):
    """Webhook authenticity failure. The event is dropped."""

    status_code = 400

    def __init__(self, message="Invalid signature"):
        super().__init__(message, code="INVALID_SIGNATURE")


class TransientPersistenceFailure(BillingError):
    """Database or provider unreachable. Safe to retry."""

    status_code = 500

    def __init__(self, message="Temporary failure, please retry"):
        super().__init__(message, code="TRANSIENT_FAILURE")


class PriceMismatch(BillingError):
    """Verification payment amount/currency differs from the expected fee.

    Logged by the reconciler; the order is still recorded.
    """

    status_code = 200

    def __init__(self, amount, currency, expected_amount, expected_currency):
        self.amount = amount
        self.currency = currency
        super().__init__(
            f"Verification paid {amount} {currency}, "
            f"expected {expected_amount} {expected_currency}",
            code="PRICE_MISMATCH",
        )


class PaymentNotConfirmed(BillingError):
    """The checkout session is not a paid one-time payment."""

    status_code = 400

    def __init__(self, message="Not paid"):
        super().__init__(message, code="PAYMENT_NOT_CONFIRMED")


class AccountCreationFailure(BillingError):
    """Identity backend rejected the sign-up after a confirmed payment."""

    status_code = 400

    def __init__(self, message="Account creation failed"):
        super().__init__(message, code="ACCOUNT_CREATION_FAILED")
