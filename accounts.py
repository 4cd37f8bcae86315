"""
Account lifecycle: register, verify, login, Google OAuth, password reset.

Accounts move from pending verification to verified; a password reset can
be requested any number of times and each new request replaces the previous
reset token.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional
from urllib.parse import urlencode

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from httpx import HTTPError
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.concurrency import run_in_threadpool

from config import Settings
from database import USERS, create_document, object_id
from dependencies import get_accounts, get_settings, get_strategy
from errors import (
    AlreadyVerified,
    Conflict,
    ExpiredToken,
    Forbidden,
    InvalidCredentials,
    InvalidToken,
    NotFound,
    NotVerified,
    Unauthenticated,
    ValidationError,
)
from mailer import Mailer, password_reset_email, resend_verification_email, verification_email
from schemas import (
    OAUTH_PASSWORD_SENTINEL,
    AuthProvider,
    EmailRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    User,
)
from security import check_password, hash_password, issue_opaque_token
from sessions import SessionStrategy

log = logging.getLogger(__name__)


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def public_user(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "email": user["email"],
        "is_verified": bool(user.get("is_verified")),
        "login_count": user.get("login_count", 0),
        "last_login": user.get("last_login"),
    }


class AccountService:
    def __init__(
        self,
        db: Database,
        settings: Settings,
        mailer: Mailer,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.db = db
        self.users = db[USERS]
        self.settings = settings
        self.mailer = mailer
        self.clock = clock

    def verification_link(self, token: str) -> str:
        return f"{self.settings.backend_url.rstrip('/')}/verify-email/{token}"

    def reset_link(self, token: str) -> str:
        return f"{self.settings.frontend_url.rstrip('/')}/reset-password/{token}"

    def get_user(self, user_id) -> dict:
        user = self.users.find_one({"_id": object_id(user_id)})
        if not user:
            raise NotFound("User not found")
        return user

    def register(self, email: str, password: str) -> dict:
        """Create an unverified account and email it a verification link.

        An address already held by any account, including one provisioned
        through Google, is rejected.
        """
        email = normalize_email(email)
        if self.users.find_one({"email": email}):
            raise Conflict("User already exists")

        token = issue_opaque_token()
        user = User(
            email=email,
            password=hash_password(password, self.settings.bcrypt_rounds),
            verification_token=token,
        )
        try:
            user_id = create_document(self.db, USERS, user)
        except DuplicateKeyError:
            raise Conflict("User already exists")
        log.info("Registered account %s", email)

        # The account is kept if the email fails; the user can ask for a resend.
        self.mailer.send(verification_email(email, self.verification_link(token)))
        return self.get_user(user_id)

    def verify_email(self, token: str) -> dict:
        user = self.users.find_one_and_update(
            {"verification_token": token},
            {"$set": {
                "is_verified": True,
                "verification_token": None,
                "updated_at": self.clock(),
            }},
            return_document=ReturnDocument.AFTER,
        )
        if not user:
            raise InvalidToken("Invalid or expired token")
        log.info("Verified account %s", user["email"])
        return user

    def login(self, email: str, password: str) -> dict:
        email = normalize_email(email)
        user = self.users.find_one({"email": email})
        if not user:
            log.info("Login for unknown account %s", email)
            raise InvalidCredentials("User not found")
        if not check_password(password, user.get("password")):
            log.info("Bad password for %s", email)
            raise InvalidCredentials("Invalid credentials")
        if not user.get("is_verified"):
            raise NotVerified("Please verify your email first")

        try:
            updated = self.users.find_one_and_update(
                {"_id": user["_id"]},
                {"$set": {"last_login": self.clock()}, "$inc": {"login_count": 1}},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError:
            # Activity tracking must not block the login itself.
            log.exception("Could not record login for %s", email)
            updated = None
        log.info("Logged in %s", email)
        return updated or user

    def oauth_login(self, email: str) -> dict:
        """Find or provision the local account for an email confirmed by Google."""
        email = normalize_email(email)
        if not email:
            raise ValidationError("OAuth provider did not return an email address")

        user = self.users.find_one({"email": email})
        if user:
            if not user.get("is_verified"):
                user = self.users.find_one_and_update(
                    {"_id": user["_id"]},
                    {"$set": {"is_verified": True, "verification_token": None}},
                    return_document=ReturnDocument.AFTER,
                )
            return user

        account = User(
            email=email,
            password=OAUTH_PASSWORD_SENTINEL,
            auth_provider=AuthProvider.google,
            is_verified=True,
        )
        try:
            user_id = create_document(self.db, USERS, account)
        except DuplicateKeyError:
            # Provisioned by a concurrent callback.
            return self.users.find_one({"email": email})
        log.info("Provisioned account %s via Google", email)
        return self.get_user(user_id)

    def forgot_password(self, email: Optional[str]) -> None:
        email = normalize_email(email)
        if not email:
            raise ValidationError("Email is required")
        user = self.users.find_one({"email": email})
        if not user:
            raise NotFound("User not found")

        token = issue_opaque_token()
        minutes = self.settings.reset_token_minutes
        # Overwriting the token invalidates any link sent earlier.
        self.users.update_one(
            {"_id": user["_id"]},
            {"$set": {
                "reset_token": token,
                "reset_token_expiry": self.clock() + timedelta(minutes=minutes),
                "updated_at": self.clock(),
            }},
        )
        log.info("Issued password reset for %s", email)
        self.mailer.send(password_reset_email(email, self.reset_link(token), minutes))

    def reset_password(self, token: str, password: str) -> None:
        user = self.users.find_one({"reset_token": token})
        if not user:
            raise InvalidToken("Invalid or expired token")

        now = self.clock()
        expiry = user.get("reset_token_expiry")
        cleared = {"reset_token": None, "reset_token_expiry": None, "updated_at": now}
        if expiry is None or expiry <= now:
            self.users.update_one({"_id": user["_id"], "reset_token": token}, {"$set": cleared})
            raise ExpiredToken("Invalid or expired token")

        updated = self.users.find_one_and_update(
            {"_id": user["_id"], "reset_token": token, "reset_token_expiry": {"$gt": now}},
            {"$set": dict(cleared, password=hash_password(password, self.settings.bcrypt_rounds))},
        )
        if updated is None:
            raise InvalidToken("Invalid or expired token")
        log.info("Password reset for %s", user["email"])

    def resend_verification(self, email: Optional[str]) -> None:
        email = normalize_email(email)
        if not email:
            raise ValidationError("Email is required")
        user = self.users.find_one({"email": email})
        if not user:
            raise NotFound("No account found with that email")
        if user.get("is_verified"):
            raise AlreadyVerified("Account already verified")

        token = issue_opaque_token()
        self.users.update_one(
            {"_id": user["_id"]},
            {"$set": {"verification_token": token, "updated_at": self.clock()}},
        )
        self.mailer.send(resend_verification_email(email, self.verification_link(token)))


router = APIRouter(tags=["auth"])


def _frontend(settings: Settings, path: str, **params) -> str:
    url = f"{settings.frontend_url.rstrip('/')}{path}"
    if params:
        url = f"{url}?{urlencode(params)}"
    return url


@router.post("/register")
def register(payload: RegisterRequest, accounts: AccountService = Depends(get_accounts)):
    user = accounts.register(payload.email, payload.password)
    return {"message": "Registered, verify email sent", "user": public_user(user)}


@router.get("/verify-email/{token}")
def verify_email(
    token: str,
    accounts: AccountService = Depends(get_accounts),
    settings: Settings = Depends(get_settings),
):
    try:
        accounts.verify_email(token)
    except InvalidToken:
        return RedirectResponse(_frontend(settings, "/login", verified="false"), status_code=302)
    return RedirectResponse(_frontend(settings, "/login", verified="true"), status_code=302)


@router.post("/login")
def login(
    payload: LoginRequest,
    response: Response,
    accounts: AccountService = Depends(get_accounts),
    strategy: SessionStrategy = Depends(get_strategy),
):
    user = accounts.login(payload.email, payload.password)
    token = strategy.issue(user, response)
    return {"message": "Logged in", "user": public_user(user), "token": token}


@router.get("/auth/google")
async def google_login(request: Request):
    settings: Settings = request.app.state.settings
    client = request.app.state.oauth.create_client("google")
    if not client:
        return RedirectResponse(_frontend(settings, "/login", error="oauth_unavailable"), status_code=302)
    return await client.authorize_redirect(request, settings.google_callback_url)


@router.get("/auth/google/callback")
async def google_callback(request: Request):
    settings: Settings = request.app.state.settings
    accounts: AccountService = request.app.state.accounts
    strategy: SessionStrategy = request.app.state.strategy

    client = request.app.state.oauth.create_client("google")
    if not client:
        return RedirectResponse(_frontend(settings, "/login", error="oauth_unavailable"), status_code=302)

    try:
        token = await client.authorize_access_token(request)
        info = token.get("userinfo") or await client.userinfo(token=token)
    except (OAuthError, HTTPError):
        log.exception("Google OAuth callback failed")
        return RedirectResponse(_frontend(settings, "/login", error="oauth_failed"), status_code=302)

    if not info.get("email") or info.get("email_verified") is False:
        log.warning("Google returned no verified email")
        return RedirectResponse(_frontend(settings, "/login", error="oauth_failed"), status_code=302)

    user = await run_in_threadpool(accounts.oauth_login, info["email"])
    response = RedirectResponse(_frontend(settings, "/login", oauth="success"), status_code=302)
    bearer = await run_in_threadpool(strategy.issue, user, response)
    if bearer:
        response = RedirectResponse(_frontend(settings, "/login", token=bearer), status_code=302)
    return response


@router.post("/forgot-password")
def forgot_password(payload: EmailRequest, accounts: AccountService = Depends(get_accounts)):
    accounts.forgot_password(payload.email)
    return {"message": "Reset link sent"}


@router.post("/reset-password/{token}")
def reset_password(
    token: str,
    payload: ResetPasswordRequest,
    accounts: AccountService = Depends(get_accounts),
):
    accounts.reset_password(token, payload.password)
    return {"message": "Password updated"}


@router.post("/resend-verification")
def resend_verification(payload: EmailRequest, accounts: AccountService = Depends(get_accounts)):
    accounts.resend_verification(payload.email)
    return {"message": "Verification email sent"}


@router.get("/check-auth")
def check_auth(
    request: Request,
    response: Response,
    strategy: SessionStrategy = Depends(get_strategy),
):
    try:
        identity = strategy.resolve(request, response)
    except (Unauthenticated, Forbidden) as e:
        return JSONResponse(status_code=401, content={"authenticated": False, "error": e.message})
    return {"authenticated": True, "user": identity.model_dump()}


@router.post("/logout")
def logout(
    request: Request,
    response: Response,
    strategy: SessionStrategy = Depends(get_strategy),
):
    strategy.revoke(request, response)
    return {"message": "Logged out"}
