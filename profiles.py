"""
Portfolio profiles and their embedded projects.

Each user owns at most one profile document; projects live inside it. Every
project mutation is a single atomic update on that document ($push,
positional $set, $pull), so concurrent edits to different projects of the
same profile do not overwrite each other.
"""
import logging
import re
from datetime import datetime
from typing import Callable, Optional

from bson.objectid import ObjectId
from fastapi import APIRouter, Depends, Query
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import PROFILES, create_document, object_id, to_public
from dependencies import get_identity, get_profiles
from errors import Conflict, NotFound, ValidationError
from schemas import (
    USERNAME_PATTERN,
    CreateProfileRequest,
    Profile,
    ProfileInfo,
    Project,
    ProjectFields,
    ProjectUpdate,
    Template,
    UpdateProfileRequest,
    UpdateTemplateRequest,
)
from sessions import Identity

log = logging.getLogger(__name__)

TEMPLATES = {t.value for t in Template}


class ProfileStore:
    def __init__(self, db: Database, clock: Callable[[], datetime] = datetime.utcnow):
        self.db = db
        self.profiles = db[PROFILES]
        self.clock = clock

    @staticmethod
    def validate_username(username: Optional[str]) -> str:
        username = (username or "").strip()
        if not username:
            raise ValidationError("Username is required")
        if not re.match(USERNAME_PATTERN, username):
            raise ValidationError("Username must be 3-30 letters or digits")
        return username

    def username_available(self, username: str) -> bool:
        username = self.validate_username(username)
        return self.profiles.count_documents({"username": username}, limit=1) == 0

    def create_profile(self, owner: Identity, username: str) -> dict:
        username = self.validate_username(username)
        owner_id = object_id(owner.id)
        if not self.username_available(username):
            raise Conflict("Username already taken")
        if self.profiles.find_one({"user_id": owner_id}):
            raise Conflict("Profile already exists")

        profile = Profile(
            user_id=owner_id,
            username=username,
            profile=ProfileInfo(name=owner.email.split("@")[0]),
        )
        try:
            profile_id = create_document(self.db, PROFILES, profile.to_document())
        except DuplicateKeyError:
            # The unique indexes decide races the pre-checks above cannot.
            if self.profiles.find_one({"user_id": owner_id}):
                raise Conflict("Profile already exists")
            raise Conflict("Username already taken")
        log.info("Created profile %s for %s", username, owner.email)
        return self.get_by_id(profile_id)

    def get_by_id(self, profile_id) -> dict:
        profile = self.profiles.find_one({"_id": object_id(profile_id)})
        if not profile:
            raise NotFound("Profile not found")
        return profile

    def get_own_profile(self, owner_id) -> dict:
        profile = self.profiles.find_one({"user_id": object_id(owner_id)})
        if not profile:
            raise NotFound("Profile not found")
        return profile

    def get_public_profile(self, username: str) -> dict:
        profile = self.profiles.find_one({"username": username})
        if not profile:
            raise NotFound("Profile not found")
        return profile

    def update_where(self, selector: dict, update: dict) -> dict:
        update.setdefault("$set", {})["updated_at"] = self.clock()
        profile = self.profiles.find_one_and_update(
            selector, update, return_document=ReturnDocument.AFTER
        )
        if not profile:
            raise NotFound("Profile not found")
        return profile

    def update_profile_fields(self, owner_id, info: ProfileInfo) -> dict:
        """Replace the whole nested profile sub-document."""
        return self.update_where({"user_id": object_id(owner_id)}, {"$set": {"profile": info.model_dump()}})

    def update_template(self, owner_id, template: Optional[str]) -> dict:
        if template not in TEMPLATES:
            raise ValidationError("Invalid template")
        return self.update_where({"user_id": object_id(owner_id)}, {"$set": {"template": template}})

    def add_project(self, owner_id, fields: ProjectFields) -> dict:
        project = Project(**fields.model_dump()).to_document()
        self.update_where({"user_id": object_id(owner_id)}, {"$push": {"projects": project}})
        return project

    def update_project(self, owner_id, project_id, changes: dict) -> dict:
        return self.update_project_in({"user_id": object_id(owner_id)}, project_id, changes)

    def update_project_in(self, selector: dict, project_id, changes: dict) -> dict:
        """Shallow-merge `changes` into one project of the profile matched by `selector`."""
        pid = object_id(project_id)
        matched = dict(selector, **{"projects._id": pid})
        if not changes:
            profile = self.profiles.find_one(matched)
            if profile is None:
                self._raise_missing(selector)
            return profile

        update = {"$set": {f"projects.$.{key}": value for key, value in changes.items()}}
        update["$set"]["updated_at"] = self.clock()
        result = self.profiles.update_one(matched, update)
        if result.matched_count == 0:
            self._raise_missing(selector)
        return self.profiles.find_one(selector)

    def _raise_missing(self, selector: dict):
        if self.profiles.find_one(selector) is None:
            raise NotFound("Profile not found")
        raise NotFound("Project not found")

    def delete_project(self, owner_id, project_id) -> dict:
        """Remove a project; removing one that is already gone is not an error."""
        if not ObjectId.is_valid(project_id):
            # No project can carry an unparsable id, so it is already absent.
            return self.get_own_profile(owner_id)
        pid = object_id(project_id)
        return self.update_where({"user_id": object_id(owner_id)}, {"$pull": {"projects": {"_id": pid}}})

    def delete_for_user(self, user_id: ObjectId) -> int:
        return self.profiles.delete_many({"user_id": user_id}).deleted_count


router = APIRouter(prefix="/api/profiles", tags=["profiles"])


@router.get("/check-username")
def check_username(
    username: Optional[str] = Query(None),
    profiles: ProfileStore = Depends(get_profiles),
):
    return {"exists": not profiles.username_available(username)}


@router.post("", status_code=201)
def create_profile(
    payload: CreateProfileRequest,
    identity: Identity = Depends(get_identity),
    profiles: ProfileStore = Depends(get_profiles),
):
    return to_public(profiles.create_profile(identity, payload.username))


@router.get("/me")
def get_my_profile(
    identity: Identity = Depends(get_identity),
    profiles: ProfileStore = Depends(get_profiles),
):
    return to_public(profiles.get_own_profile(identity.id))


@router.put("/me/profile")
def update_my_profile(
    payload: UpdateProfileRequest,
    identity: Identity = Depends(get_identity),
    profiles: ProfileStore = Depends(get_profiles),
):
    return to_public(profiles.update_profile_fields(identity.id, payload.profile))


@router.put("/me/template")
def update_my_template(
    payload: UpdateTemplateRequest,
    identity: Identity = Depends(get_identity),
    profiles: ProfileStore = Depends(get_profiles),
):
    return to_public(profiles.update_template(identity.id, payload.template))


@router.post("/me/projects", status_code=201)
def add_project(
    payload: ProjectFields,
    identity: Identity = Depends(get_identity),
    profiles: ProfileStore = Depends(get_profiles),
):
    return to_public(profiles.add_project(identity.id, payload))


@router.put("/me/projects/{project_id}")
def update_project(
    project_id: str,
    payload: ProjectUpdate,
    identity: Identity = Depends(get_identity),
    profiles: ProfileStore = Depends(get_profiles),
):
    changes = payload.model_dump(exclude_unset=True)
    return to_public(profiles.update_project(identity.id, project_id, changes))


@router.delete("/me/projects/{project_id}")
def delete_project(
    project_id: str,
    identity: Identity = Depends(get_identity),
    profiles: ProfileStore = Depends(get_profiles),
):
    return to_public(profiles.delete_project(identity.id, project_id))


# Registered last so it does not shadow /me and /check-username.
@router.get("/{username}")
def get_public_profile(username: str, profiles: ProfileStore = Depends(get_profiles)):
    return to_public(profiles.get_public_profile(username))
