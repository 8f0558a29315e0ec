"""Signup service — pending signup staging and the completion flow.

The signup form is staged client-side (Flask's signed session cookie)
before the verification fee is paid. SignupCompletion promotes it into a
real account once Stripe confirms the session is paid:

    processing -> success | error

Both terminal states clear the staged data. A failed attempt is never
retried silently; the user restarts signup.
"""

import logging
from dataclasses import asdict, dataclass

from flask import current_app, session
from werkzeug.security import generate_password_hash

from talentbook.errors import AccountCreationFailure, BillingError, ValidationError
from talentbook.extensions import db
from talentbook.models.user import User
from talentbook.services.account_service import sign_up
from talentbook.services.checkout_service import normalize_email
from talentbook.services.stripe_service import verify_checkout_session

logger = logging.getLogger(__name__)

PENDING_SIGNUP_KEY = "pending_signup"
MIN_PASSWORD_LENGTH = 8


@dataclass
class PendingSignup:
    """Signup form data awaiting payment. Holds a password hash, never the password."""

    name: str
    email: str
    password_hash: str
    user_type: str

    @classmethod
    def from_form(cls, form):
        """Validate the signup form. Raises ValidationError naming the field."""
        if not isinstance(form, dict):
            raise ValidationError("body", "Invalid JSON body")

        name = form.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("name", "Name is required.")

        email = normalize_email(form.get("email"))

        password = form.get("password")
        if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                "password",
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters.",
            )

        user_type = form.get("userType")
        if user_type not in User.USER_TYPES:
            raise ValidationError("userType")

        if User.query.filter_by(email=email).first():
            raise ValidationError("email", "An account with this email already exists.")

        return cls(
            name=name.strip(),
            email=email,
            password_hash=generate_password_hash(password),
            user_type=user_type,
        )


def stage_signup(pending):
    """Write the staged signup, replacing any earlier one."""
    session[PENDING_SIGNUP_KEY] = asdict(pending)


def load_pending_signup():
    """Return the staged PendingSignup, or None if missing or unreadable."""
    data = session.get(PENDING_SIGNUP_KEY)
    if not isinstance(data, dict):
        return None
    try:
        return PendingSignup(**data)
    except TypeError:
        return None


def clear_pending_signup():
    session.pop(PENDING_SIGNUP_KEY, None)


class SignupCompletion:
    """One attempt at turning a paid checkout session into an account."""

    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"

    def __init__(self, session_id, verify=None, create_account=None):
        self.session_id = session_id
        self.state = self.PROCESSING
        self.error = None
        self.user = None
        self.redirect_url = None
        self._verify = verify or verify_checkout_session
        self._create_account = create_account or sign_up

    def run(self):
        """Drive the attempt to a terminal state and return self."""
        pending = load_pending_signup()
        if pending is None:
            return self._fail("No pending signup data found. Please try signing up again.")

        # The success redirect is reachable by anyone; ask Stripe.
        try:
            verification = self._verify(self.session_id)
        except BillingError as e:
            return self._fail(f"Payment could not be verified: {e.message}")
        except Exception:
            logger.exception(f"Session verification crashed for {self.session_id}")
            return self._fail("Payment could not be verified. Please try signing up again.")

        paid_email = verification.get("email")
        if paid_email and paid_email != pending.email:
            return self._fail("The payment does not belong to this signup.")

        try:
            self.user = self._create_account(
                email=pending.email,
                password_hash=pending.password_hash,
                full_name=pending.name,
                user_type=pending.user_type,
                signup_session_id=self.session_id,
            )
        except AccountCreationFailure as e:
            return self._fail(e.message)
        except Exception:
            db.session.rollback()
            logger.exception(f"Account creation crashed for session {self.session_id}")
            return self._fail("Account creation failed. Please try signing up again.")

        clear_pending_signup()
        self.state = self.SUCCESS
        self.redirect_url = current_app.config["ONBOARDING_PATHS"][pending.user_type]
        logger.info(f"Signup completed for {pending.email} via {self.session_id}")
        return self

    def _fail(self, message):
        clear_pending_signup()
        self.state = self.ERROR
        self.error = message
        logger.warning(f"Signup completion failed for session {self.session_id}: {message}")
        return self

    def to_dict(self):
        if self.state == self.SUCCESS:
            return {
                "status": self.state,
                "user": self.user.to_dict(),
                "redirect_url": self.redirect_url,
                "redirect_delay_ms": current_app.config["SIGNUP_REDIRECT_DELAY_MS"],
            }
        return {"status": self.state, "error": self.error}
