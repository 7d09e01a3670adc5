"""Bearer tokens and role checks."""
from __future__ import annotations

from datetime import datetime, timezone

from flask import current_app, request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from werkzeug.security import check_password_hash

from .errors import AuthenticationError, ForbiddenError
from .extensions import db
from .models import AuthAccount, User

TOKEN_SALT = "auth-token"


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=TOKEN_SALT)


def build_token(user: User) -> str:
    return _serializer().dumps({"user_id": user.user_id, "role": user.role})


def get_jwt_identity() -> int | None:
    """Extract and validate user_id from the Authorization header token.

    Returns None when the header is missing or the token is invalid or expired.
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None

    token = auth_header[7:]
    try:
        payload = _serializer().loads(token, max_age=current_app.config.get("TOKEN_MAX_AGE", 86400))
    except (BadSignature, SignatureExpired):
        return None
    return payload.get("user_id")


def current_user() -> User:
    user_id = get_jwt_identity()
    if not user_id:
        raise AuthenticationError("Authentication required. Please log in to continue.")
    user = db.session.get(User, user_id)
    if user is None:
        raise AuthenticationError("Authentication required. Please log in to continue.")
    return user


def require_roles(*roles: str) -> User:
    """Return the caller, or raise when their stored role is not in ``roles``."""
    user = current_user()
    if user.role not in roles:
        raise ForbiddenError("You do not have permission to perform this action.")
    return user


def authenticate(email: str, password: str) -> User:
    record = (
        db.session.query(User, AuthAccount)
        .join(AuthAccount, AuthAccount.user_id == User.user_id)
        .filter(User.email == email)
        .first()
    )
    if not record:
        raise AuthenticationError("invalid email or password")

    user, auth_account = record
    if not check_password_hash(auth_account.password_hash, password):
        raise AuthenticationError("invalid email or password")

    auth_account.last_login_at = datetime.now(timezone.utc)
    return user
