"""
Deferred extension instances.

Created here, bound to the app in create_app() via init_app().
"""

from flask import current_app
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_wtf.csrf import CSRFProtect
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
csrf = CSRFProtect()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # limits are per-route
    storage_uri="memory://",
)

API_TOKEN_SALT = "talentbook-api-token"


def _token_serializer():
    return URLSafeTimedSerializer(
        current_app.config["SECRET_KEY"], salt=API_TOKEN_SALT
    )


def issue_api_token(user):
    """Sign a bearer credential carrying the user's id."""
    return _token_serializer().dumps({"uid": user.id})


@login_manager.user_loader
def load_user(user_id):
    """Load user by ID from session. Imports lazily to avoid circular deps."""
    from talentbook.models.user import User

    return db.session.get(User, user_id)


@login_manager.request_loader
def load_user_from_bearer(request):
    """Resolve `Authorization: Bearer <token>` to a user.

    Bad or expired tokens resolve to None (anonymous); the caller decides
    whether anonymous access is acceptable.
    """
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None

    try:
        data = _token_serializer().loads(
            token.strip(), max_age=current_app.config["API_TOKEN_MAX_AGE"]
        )
    except (BadSignature, SignatureExpired):
        return None

    from talentbook.models.user import User

    user = db.session.get(User, data.get("uid"))
    if user is None or not user.is_active:
        return None
    return user
