"""
Admin controller.

Every route requires an identity whose email is on the ADMIN_EMAILS
allow-list. Actions arrive as JSON objects tagged by their "action" field
and are parsed into one schema class per action.
"""
import logging
from datetime import datetime
from typing import Callable

from fastapi import APIRouter, Body, Depends, Response
from pydantic import TypeAdapter
from pydantic import ValidationError as SchemaError
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from accounts import normalize_email, public_user
from config import Settings
from database import PROFILES, USERS, get_documents, object_id, to_public
from dependencies import get_admin, require_admin
from errors import Conflict, Forbidden, NotFound, ValidationError
from profiles import ProfileStore
from schemas import (
    DeleteProfile,
    DeleteUser,
    FeatureProject,
    ImpersonateUser,
    ProfileAction,
    ResetUserPassword,
    TransferOwnership,
    UpdateProfile,
    UpdateUserEmail,
    UserAction,
    VerifyUser,
)
from security import hash_password
from sessions import Identity, SessionStrategy

log = logging.getLogger(__name__)

# Never returned by admin listings.
SECRET_FIELDS = {"password": 0, "verification_token": 0, "reset_token": 0, "reset_token_expiry": 0}

_user_actions = TypeAdapter(UserAction)
_profile_actions = TypeAdapter(ProfileAction)


def parse_action(adapter: TypeAdapter, payload: dict):
    try:
        return adapter.validate_python(payload)
    except SchemaError:
        raise ValidationError("Invalid action")


class AdminController:
    def __init__(
        self,
        db: Database,
        settings: Settings,
        profiles: ProfileStore,
        strategy: SessionStrategy,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.db = db
        self.users = db[USERS]
        self.profiles = db[PROFILES]
        self.profile_store = profiles
        self.settings = settings
        self.strategy = strategy
        self.clock = clock

        self.user_handlers = {
            DeleteUser: self.delete_user,
            VerifyUser: self.verify_user,
            ResetUserPassword: self.reset_user_password,
            UpdateUserEmail: self.update_user_email,
            ImpersonateUser: self.impersonate_user,
        }
        self.profile_handlers = {
            DeleteProfile: self.delete_profile,
            UpdateProfile: self.update_profile,
            FeatureProject: self.feature_project,
            TransferOwnership: self.transfer_ownership,
        }

    def _user(self, user_id) -> dict:
        user = self.users.find_one({"_id": object_id(user_id)})
        if not user:
            raise NotFound("User not found")
        return user

    def list_users_with_stats(self) -> dict:
        profiles = {
            p["user_id"]: p
            for p in self.profiles.find({}, {"user_id": 1, "username": 1, "projects": 1})
        }
        users = []
        verified = with_profile = 0
        for user in self.users.find({}, SECRET_FIELDS):
            profile = profiles.get(user["_id"])
            verified += 1 if user.get("is_verified") else 0
            with_profile += 1 if profile else 0
            entry = to_public(user)
            entry["username"] = profile["username"] if profile else None
            entry["project_count"] = len(profile.get("projects") or []) if profile else 0
            users.append(entry)

        return {
            "users": users,
            "stats": {
                "total_users": len(users),
                "verified_users": verified,
                "users_with_profile": with_profile,
                "total_projects": sum(len(p.get("projects") or []) for p in profiles.values()),
            },
        }

    def list_profiles(self) -> list:
        emails = {u["_id"]: u["email"] for u in self.users.find({}, {"email": 1})}
        out = []
        for profile in get_documents(self.db, PROFILES):
            entry = to_public(profile)
            entry["owner_email"] = emails.get(profile["user_id"])
            entry["project_count"] = len(profile.get("projects") or [])
            out.append(entry)
        return out

    def user_action(self, admin: Identity, user_id: str, action, response: Response = None) -> dict:
        user = self._user(user_id)
        log.info("Admin %s: %s on user %s", admin.email, action.action, user_id)
        return self.user_handlers[type(action)](user, action, response)

    def delete_user(self, user, action, response):
        removed = self.profile_store.delete_for_user(user["_id"])
        self.strategy.revoke_user(user["_id"])
        self.users.delete_one({"_id": user["_id"]})
        return {"message": "User deleted", "profiles_deleted": removed}

    def _set_user(self, user, fields: dict) -> dict:
        fields["updated_at"] = self.clock()
        return self.users.find_one_and_update(
            {"_id": user["_id"]}, {"$set": fields}, return_document=ReturnDocument.AFTER
        )

    def verify_user(self, user, action, response):
        updated = self._set_user(user, {"is_verified": True, "verification_token": None})
        return {"message": "User verified", "user": public_user(updated)}

    def reset_user_password(self, user, action, response):
        updated = self._set_user(user, {
            "password": hash_password(action.new_password, self.settings.bcrypt_rounds),
            "reset_token": None,
            "reset_token_expiry": None,
        })
        return {"message": "Password reset", "user": public_user(updated)}

    def update_user_email(self, user, action, response):
        email = normalize_email(action.email)
        other = self.users.find_one({"email": email})
        if other and other["_id"] != user["_id"]:
            raise Conflict("Email already in use")
        try:
            updated = self._set_user(user, {"email": email})
        except DuplicateKeyError:
            raise Conflict("Email already in use")
        return {"message": "Email updated", "user": public_user(updated)}

    def impersonate_user(self, user, action, response):
        if self.settings.environment.strip().lower() != "development":
            raise Forbidden("Impersonation is only available in development")
        token = self.strategy.issue(user, response)
        return {"message": "Impersonating user", "user": public_user(user), "token": token}

    def profile_action(self, admin: Identity, profile_id: str, action) -> dict:
        profile = self.profile_store.get_by_id(profile_id)
        log.info("Admin %s: %s on profile %s", admin.email, action.action, profile_id)
        return self.profile_handlers[type(action)](profile, action)

    def delete_profile(self, profile, action):
        self.profiles.delete_one({"_id": profile["_id"]})
        return {"message": "Profile deleted"}

    def update_profile(self, profile, action):
        fields = {}
        if action.profile is not None:
            fields["profile"] = action.profile.model_dump()
        if action.template is not None:
            fields["template"] = action.template.value
        if not fields:
            raise ValidationError("Nothing to update")
        updated = self.profile_store.update_where({"_id": profile["_id"]}, {"$set": fields})
        return {"message": "Profile updated", "profile": to_public(updated)}

    def feature_project(self, profile, action):
        updated = self.profile_store.update_project_in(
            {"_id": profile["_id"]}, action.project_id, {"featured": action.featured}
        )
        return {"message": "Project updated", "profile": to_public(updated)}

    def transfer_ownership(self, profile, action):
        new_owner = self.users.find_one({"_id": object_id(action.new_user_id)})
        if not new_owner:
            raise NotFound("User not found")
        existing = self.profiles.find_one({"user_id": new_owner["_id"]})
        if existing and existing["_id"] != profile["_id"]:
            raise Conflict("User already has a profile")
        try:
            updated = self.profile_store.update_where(
                {"_id": profile["_id"]}, {"$set": {"user_id": new_owner["_id"]}}
            )
        except DuplicateKeyError:
            raise Conflict("User already has a profile")
        return {"message": "Ownership transferred", "profile": to_public(updated)}


router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/users")
def list_users(
    admin: Identity = Depends(require_admin),
    controller: AdminController = Depends(get_admin),
):
    return controller.list_users_with_stats()


@router.get("/profiles")
def list_profiles(
    admin: Identity = Depends(require_admin),
    controller: AdminController = Depends(get_admin),
):
    return {"profiles": controller.list_profiles()}


@router.post("/users/{user_id}/action")
def user_action(
    user_id: str,
    response: Response,
    payload: dict = Body(...),
    admin: Identity = Depends(require_admin),
    controller: AdminController = Depends(get_admin),
):
    action = parse_action(_user_actions, payload)
    return controller.user_action(admin, user_id, action, response)


@router.post("/profiles/{profile_id}/action")
def profile_action(
    profile_id: str,
    payload: dict = Body(...),
    admin: Identity = Depends(require_admin),
    controller: AdminController = Depends(get_admin),
):
    action = parse_action(_profile_actions, payload)
    return controller.profile_action(admin, profile_id, action)
