"""Account service — the identity backend's sign-up call.

Creates real user accounts. Only the signup completion flow calls
sign_up(), after the paying checkout session has been re-verified.
"""

import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from talentbook.errors import AccountCreationFailure
from talentbook.extensions import db
from talentbook.models.audit import AuditEvent
from talentbook.models.user import User

logger = logging.getLogger(__name__)


def sign_up(email, password_hash, full_name, user_type, signup_session_id=None):
    """Create a verified user account.

    One account per email and one account per paying checkout session.
    Returns the committed User.
    Raises AccountCreationFailure for any rejection, including DB errors.
    """
    try:
        if User.query.filter_by(email=email).first():
            raise AccountCreationFailure("An account with this email already exists.")

        if signup_session_id and User.query.filter_by(
            signup_session_id=signup_session_id
        ).first():
            raise AccountCreationFailure(
                "This payment has already been used to create an account."
            )

        user = User(
            email=email,
            password_hash=password_hash,
            full_name=full_name,
            user_type=user_type,
            is_verified=True,  # they paid the verification fee
            signup_session_id=signup_session_id,
        )
        db.session.add(user)
        db.session.flush()  # get user.id
        db.session.add(AuditEvent(
            actor_user_id=user.id,
            action="signup.completed",
            metadata_={
                "email": email,
                "user_type": user_type,
                "session_id": signup_session_id,
            },
        ))
        db.session.commit()
    except IntegrityError as e:
        # Lost a race against another completion for the same email/session.
        db.session.rollback()
        raise AccountCreationFailure("Account creation failed: account already exists") from e
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Account creation failed for {email}: {e}")
        raise AccountCreationFailure("Account creation failed") from e

    logger.info(f"Created account {user.id} ({user_type}) for {email}")
    return user
