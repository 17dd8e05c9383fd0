# auth.py
import logging
from datetime import datetime, timedelta, timezone
from functools import wraps

import jwt
from flask import current_app, jsonify, request

from endlesscard.errors import AuthError

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


def issue_token(user_id: str, email: str, secret: str, ttl_minutes: int = 60) -> str:
    return jwt.encode(
        {"sub": user_id, "email": email, "exp": datetime.now(timezone.utc) + timedelta(minutes=ttl_minutes)},
        secret,
        algorithm=ALGORITHM,
    )


def decode_token(token: str, secret: str) -> dict:
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except jwt.PyJWTError as e:
        raise AuthError(str(e)) from e
    if not payload.get("sub"):
        raise AuthError("Token has no subject")
    return {"id": payload["sub"], "email": payload.get("email", "")}


def current_user() -> dict:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Unauthorized")
    return decode_token(token.strip(), current_app.config["SECRET_KEY"])


def token_required(f):
    @wraps(f)
    def decorator(*args, **kwargs):
        try:
            user = current_user()
        except AuthError as e:
            logger.info("Rejected request to %s: %s", request.path, e)
            return jsonify({"error": "Unauthorized"}), 401
        return f(user, *args, **kwargs)
    return decorator
