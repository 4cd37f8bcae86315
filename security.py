"""Password hashing, opaque tokens and signed session tokens."""
import secrets
from datetime import datetime, timedelta
from typing import Optional

import bcrypt
import jwt

ALGORITHM = "HS256"


class InvalidToken(Exception):
    """A signed session token failed verification."""


def issue_opaque_token() -> str:
    """256 random bits, hex encoded. Used for email verification and password reset."""
    return secrets.token_hex(32)


def hash_password(password: str, rounds: int = 10) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def check_password(password: str, hashed: Optional[str]) -> bool:
    """Compare a password with a stored bcrypt hash.

    Anything that is not a bcrypt hash (the OAuth sentinel, an empty value)
    never matches.
    """
    if not password or not hashed or not hashed.startswith("$2"):
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def issue_session_token(
    user_id: str,
    email: str,
    secret: str,
    lifetime: timedelta,
    now: Optional[datetime] = None,
) -> str:
    issued = now or datetime.utcnow()
    claims = {
        "sub": str(user_id),
        "email": email,
        "iat": issued,
        "exp": issued + lifetime,
    }
    return jwt.encode(claims, secret, algorithm=ALGORITHM)


def verify_session_token(token: str, secret: str) -> dict:
    """Decode a session token, returning its claims."""
    try:
        return dict(jwt.decode(token, secret, algorithms=[ALGORITHM]))
    except jwt.InvalidTokenError as e:
        raise InvalidToken(str(e)) from e
