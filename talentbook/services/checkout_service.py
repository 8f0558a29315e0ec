"""Checkout service — creates Stripe Checkout Sessions.

Two strategies sit behind one interface, chosen by the request category:

- AnonymousVerificationCheckout: the verification fee. May be paid before
  an account exists; reconciled later by email.
- AuthenticatedCheckout: every other product. Requires a signed-in caller
  and a Stripe customer mapped to that user.

The session metadata is the only context a later webhook carries, so both
strategies stamp {purpose, userId, userType, category} onto it.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import stripe

from talentbook.errors import (
    AuthenticationRequired,
    TransientPersistenceFailure,
    ValidationError,
)
from talentbook.extensions import db
from talentbook.models.user import User
from talentbook.services.billing_service import (
    ensure_subscription_placeholder,
    get_or_create_billing_customer,
    log_billing_audit,
)
from talentbook.services.stripe_client import configure_stripe

logger = logging.getLogger(__name__)

MODE_ONE_TIME = "payment"
MODE_RECURRING = "subscription"
MODES = (MODE_ONE_TIME, MODE_RECURRING)

VERIFICATION_CATEGORY = "verification"
RESERVED_METADATA_KEYS = ("purpose", "userId", "userType", "category")


def _require_string(payload, name, required=True):
    value = payload.get(name)
    if value is None and not required:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(name)
    return value.strip()


def normalize_email(value):
    """Trim + lower-case an email, or raise ValidationError("email")."""
    if not isinstance(value, str):
        raise ValidationError("email")
    email = value.strip().lower()
    local, _, domain = email.partition("@")
    if not local or "." not in domain:
        raise ValidationError("email")
    return email


def _stringify(value):
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass
class CheckoutRequest:
    """A validated checkout request."""

    price_id: str
    success_url: str
    cancel_url: str
    mode: str = MODE_ONE_TIME
    category: str = ""
    user_id: Optional[str] = None
    user_type: Optional[str] = None
    email: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    @property
    def is_verification(self):
        return self.category == VERIFICATION_CATEGORY

    @classmethod
    def from_payload(cls, payload):
        """Validate a JSON body. Raises ValidationError naming the field."""
        if not isinstance(payload, dict):
            raise ValidationError("body", "Invalid JSON body")

        price_id = _require_string(payload, "price_id")
        success_url = _require_string(payload, "success_url")
        cancel_url = _require_string(payload, "cancel_url")

        mode = payload.get("mode") or MODE_ONE_TIME
        if mode not in MODES:
            raise ValidationError("mode", "Invalid mode")

        category = payload.get("category") or ""
        if not isinstance(category, str):
            raise ValidationError("category")

        user_type = payload.get("user_type") or None
        if user_type is not None and user_type not in User.USER_TYPES:
            raise ValidationError("user_type")

        email = payload.get("email") or None
        if email is not None:
            email = normalize_email(email)

        metadata = payload.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise ValidationError("metadata")
        for key, value in metadata.items():
            if not isinstance(value, (str, int, float, bool)):
                raise ValidationError("metadata", f"Invalid metadata value for {key}")

        return cls(
            price_id=price_id,
            success_url=success_url,
            cancel_url=cancel_url,
            mode=mode,
            category=category.strip(),
            user_id=_require_string(payload, "user_id", required=False),
            user_type=user_type,
            email=email,
            metadata=metadata,
        )


@dataclass
class CheckoutResult:
    session_id: str
    url: str

    def to_dict(self):
        return {"session_id": self.session_id, "url": self.url}


class CheckoutStrategy:
    """Shared session creation. Subclasses resolve who is paying."""

    def create(self, request, caller):
        raise NotImplementedError

    def build_metadata(self, request, purpose, user_id="", user_type=""):
        """Caller extras first; reserved keys always win."""
        meta = {key: _stringify(value) for key, value in request.metadata.items()}
        meta.update({
            "purpose": purpose,
            "userId": user_id or "",
            "userType": user_type or "",
            "category": request.category,
        })
        return meta

    def create_session(self, request, customer_id, metadata):
        stripe_api = configure_stripe()
        try:
            session = stripe_api.checkout.Session.create(
                mode=request.mode,
                customer=customer_id,
                line_items=[{"price": request.price_id, "quantity": 1}],
                success_url=request.success_url,
                cancel_url=request.cancel_url,
                metadata=metadata,
                allow_promotion_codes=False,
                billing_address_collection="auto",
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout creation failed: {e}")
            raise TransientPersistenceFailure("Failed to create checkout session") from e

        if not session.url:
            raise TransientPersistenceFailure("Failed to create checkout session URL")

        logger.info(
            f"Created checkout session {session.id} "
            f"(category={request.category or '-'}, mode={request.mode})"
        )
        return CheckoutResult(session_id=session.id, url=session.url)

    def map_customer(self, user, email):
        """Resolve or lazily create the user's Stripe customer id."""
        try:
            return get_or_create_billing_customer(user, email).stripe_customer_id
        except stripe.StripeError as e:
            logger.error(f"Stripe customer creation failed for user {user.id}: {e}")
            raise TransientPersistenceFailure("Failed to create customer") from e


class AnonymousVerificationCheckout(CheckoutStrategy):
    """Verification fee checkout; a signed-in caller is optional."""

    def _resolve_user(self, request, caller):
        if request.user_id:
            if caller.is_authenticated and caller.id != request.user_id:
                raise ValidationError(
                    "user_id", "user_id does not match the authenticated user"
                )
            user = db.session.get(User, request.user_id)
            if user is None:
                raise ValidationError("user_id", "Unknown user_id")
            return user
        if caller.is_authenticated:
            return caller
        return None

    def create(self, request, caller):
        user = self._resolve_user(request, caller)
        email = request.email or (user.email if user else None)
        if not email:
            raise ValidationError("email", "Email is required for verification checkout")

        if user:
            customer_id = self.map_customer(user, email)
        else:
            # Pre-signup payer: no local user to map, reconciled by email later.
            stripe_api = configure_stripe()
            try:
                customer = stripe_api.Customer.create(
                    email=email,
                    metadata={"pending_signup": "true"},
                )
            except stripe.StripeError as e:
                logger.error(f"Stripe customer creation failed for {email}: {e}")
                raise TransientPersistenceFailure("Failed to create customer") from e
            customer_id = customer.id

        metadata = self.build_metadata(
            request,
            purpose=VERIFICATION_CATEGORY,
            user_id=user.id if user else "",
            user_type=request.user_type or (user.user_type if user else ""),
        )
        return self.create_session(request, customer_id, metadata)


class AuthenticatedCheckout(CheckoutStrategy):
    """Any non-verification product; requires a signed-in caller."""

    def create(self, request, caller):
        if not caller.is_authenticated:
            raise AuthenticationRequired()
        if request.user_id and request.user_id != caller.id:
            raise ValidationError(
                "user_id", "user_id does not match the authenticated user"
            )

        customer_id = self.map_customer(caller, request.email or caller.email)

        if request.mode == MODE_RECURRING:
            ensure_subscription_placeholder(customer_id)

        metadata = self.build_metadata(
            request,
            purpose=request.category,
            user_id=caller.id,
            user_type=request.user_type or caller.user_type,
        )
        return self.create_session(request, customer_id, metadata)


def select_strategy(request):
    if request.is_verification:
        return AnonymousVerificationCheckout()
    return AuthenticatedCheckout()


def create_checkout_session(request, caller):
    """Create a checkout session for a validated request.

    `caller` is the Flask-Login current_user (possibly anonymous).
    Returns a CheckoutResult.
    """
    result = select_strategy(request).create(request, caller)
    log_billing_audit("checkout.created", {
        "session_id": result.session_id,
        "category": request.category,
        "mode": request.mode,
    }, actor_user_id=caller.id if caller.is_authenticated else None)
    db.session.commit()
    return result
