"""
Session strategies.

The API can authenticate requests in one of two ways, chosen by
`Settings.session_strategy`:

- `BearerTokenStrategy` ("jwt"): a signed token carried in the
  `Authorization: Bearer <token>` header. Resolving it needs no database
  access. There is no server-side revocation, so a token stays valid until
  it expires even after the user logs out.
- `ServerSessionStrategy` ("session"): an opaque id in an HTTP-only cookie,
  backed by a row in the `session` collection whose expiry slides forward on
  every authenticated request. Logging out deletes the row.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from bson.objectid import ObjectId
from fastapi import Request, Response
from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.database import Database

from config import Settings
from database import SESSIONS
from errors import Forbidden, Unauthenticated
from security import InvalidToken, issue_opaque_token, issue_session_token, verify_session_token

log = logging.getLogger(__name__)


class Identity(BaseModel):
    id: str
    email: str


class SessionStrategy:
    name = ""

    def issue(self, user: dict, response: Optional[Response] = None) -> Optional[str]:
        """Start a session for `user`. Returns a bearer token when the strategy has one."""
        raise NotImplementedError

    def resolve(self, request: Request, response: Optional[Response] = None) -> Identity:
        """Return the caller's identity, or raise Unauthenticated / Forbidden."""
        raise NotImplementedError

    def revoke(self, request: Request, response: Response) -> None:
        raise NotImplementedError

    def revoke_user(self, user_id: ObjectId) -> None:
        """Drop every session belonging to a user, where the strategy can."""


def bearer_token(request: Request) -> str:
    header = request.headers.get("Authorization")
    if not header:
        raise Unauthenticated("Authorization header missing")
    parts = header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise Unauthenticated("Missing or invalid Authorization header")
    return parts[1]


class BearerTokenStrategy(SessionStrategy):
    name = "jwt"

    def __init__(self, settings: Settings, clock: Callable[[], datetime] = datetime.utcnow):
        self.secret = settings.jwt_secret.get_secret_value()
        self.lifetime = timedelta(days=settings.bearer_token_days)
        self.clock = clock

    def issue(self, user, response=None):
        return issue_session_token(
            str(user["_id"]), user["email"], self.secret, self.lifetime, now=self.clock()
        )

    def resolve(self, request, response=None):
        token = bearer_token(request)
        try:
            claims = verify_session_token(token, self.secret)
        except InvalidToken:
            raise Forbidden("Invalid or expired token")
        return Identity(id=claims["sub"], email=claims["email"])

    def revoke(self, request, response):
        # Client-local: the caller discards its token.
        pass


class ServerSessionStrategy(SessionStrategy):
    name = "session"

    def __init__(self, settings: Settings, db: Database, clock: Callable[[], datetime] = datetime.utcnow):
        self.sessions = db[SESSIONS]
        self.lifetime = timedelta(hours=settings.session_hours)
        self.cookie_name = settings.session_cookie_name
        self.cookie_secure = settings.session_cookie_secure
        self.clock = clock

    def issue(self, user, response=None):
        session_id = issue_opaque_token()
        self.sessions.insert_one({
            "_id": session_id,
            "user_id": user["_id"],
            "email": user["email"],
            "created_at": self.clock(),
            "expires_at": self.clock() + self.lifetime,
        })
        if response is not None:
            self.set_cookie(response, session_id)
        return None

    def set_cookie(self, response: Response, session_id: str) -> None:
        response.set_cookie(
            self.cookie_name,
            session_id,
            max_age=int(self.lifetime.total_seconds()),
            httponly=True,
            secure=self.cookie_secure,
            samesite="lax",
        )

    def resolve(self, request, response=None):
        session_id = request.cookies.get(self.cookie_name)
        if not session_id:
            raise Unauthenticated("Not logged in")
        now = self.clock()
        session = self.sessions.find_one_and_update(
            {"_id": session_id, "expires_at": {"$gt": now}},
            {"$set": {"expires_at": now + self.lifetime}},
            return_document=ReturnDocument.AFTER,
        )
        if not session:
            self.sessions.delete_one({"_id": session_id})
            raise Forbidden("Invalid or expired session")
        if response is not None:
            self.set_cookie(response, session_id)
        return Identity(id=str(session["user_id"]), email=session["email"])

    def revoke(self, request, response):
        session_id = request.cookies.get(self.cookie_name)
        if session_id:
            self.sessions.delete_one({"_id": session_id})
        response.delete_cookie(self.cookie_name)

    def revoke_user(self, user_id):
        result = self.sessions.delete_many({"user_id": user_id})
        if result.deleted_count:
            log.info("Removed %d sessions for user %s", result.deleted_count, user_id)


def build_strategy(settings: Settings, db: Database, clock=datetime.utcnow) -> SessionStrategy:
    if settings.session_strategy == "session":
        return ServerSessionStrategy(settings, db, clock)
    return BearerTokenStrategy(settings, clock)
