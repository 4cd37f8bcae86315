"""
Database Schemas for MyPortfolify

Each top-level Pydantic model corresponds to a MongoDB collection.
The collection name is the lowercase of the class name.

Collections:
- User: credentials, verification/reset tokens and login activity
- Profile: public portfolio keyed by username, with embedded projects

The request bodies accepted by the API live at the bottom of the module.
"""
from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from bson.objectid import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

USERNAME_PATTERN = r"^[a-zA-Z0-9]{3,30}$"

# Stored in place of a hash for accounts provisioned through Google; it is not
# a valid bcrypt hash so it can never match a password.
OAUTH_PASSWORD_SENTINEL = "!oauth"

Password = Annotated[str, Field(min_length=6, max_length=72)]


def stored_now() -> datetime:
    """Current UTC time at the millisecond precision BSON keeps."""
    now = datetime.utcnow()
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


class Template(str, Enum):
    default = "default"
    minimal = "minimal"
    professional = "professional"


class AuthProvider(str, Enum):
    password = "password"
    google = "google"


class User(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    email: EmailStr
    password: str = Field(..., description="bcrypt hash, or the OAuth sentinel")
    auth_provider: AuthProvider = Field(AuthProvider.password, validate_default=True)
    is_verified: bool = False
    verification_token: Optional[str] = None
    reset_token: Optional[str] = None
    reset_token_expiry: Optional[datetime] = None
    last_login: Optional[datetime] = None
    login_count: int = 0


class SocialLinks(BaseModel):
    github: str = ""
    linkedin: str = ""
    twitter: str = ""
    personal_website: str = ""


class SkillGroup(BaseModel):
    tech_name: str
    skills_used: List[str] = Field(default_factory=list)


class Education(BaseModel):
    college_name: str = ""
    branch: str = ""
    course: str = ""
    year_of_passout: Optional[int] = None


class WorkExperience(BaseModel):
    company_name: str = ""
    position: str = ""
    duration: str = ""
    description: str = ""
    currently_working: bool = False


class ProfileInfo(BaseModel):
    name: str = ""
    passionate_text: str = ""
    bio: str = ""
    avatar: str = ""
    social_links: SocialLinks = Field(default_factory=SocialLinks)
    skills: List[SkillGroup] = Field(default_factory=list)
    education: List[Education] = Field(default_factory=list)
    work_experience: List[WorkExperience] = Field(default_factory=list)


class ProjectFields(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    tech_stack: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)
    live_url: Optional[str] = None
    github_url: Optional[str] = None
    category: Optional[str] = None
    featured: bool = False


class Project(ProjectFields):
    model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True)

    id: ObjectId = Field(default_factory=ObjectId, alias="_id")
    created_at: datetime = Field(default_factory=stored_now)

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True)


class Profile(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, use_enum_values=True)

    user_id: ObjectId = Field(..., description="Owning user")
    username: str = Field(..., pattern=USERNAME_PATTERN, description="Unique public URL slug")
    profile: ProfileInfo = Field(default_factory=ProfileInfo)
    projects: List[Project] = Field(default_factory=list)
    template: Template = Field(Template.default, validate_default=True)

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True)


# Request bodies

class RegisterRequest(BaseModel):
    email: EmailStr
    password: Password


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class EmailRequest(BaseModel):
    email: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    password: Password


class CreateProfileRequest(BaseModel):
    username: str


class UpdateProfileRequest(BaseModel):
    profile: ProfileInfo


class UpdateTemplateRequest(BaseModel):
    template: str


class ProjectUpdate(BaseModel):
    """Partial project edit; only the fields sent are merged into the stored entry."""

    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    tech_stack: Optional[List[str]] = None
    images: Optional[List[str]] = None
    live_url: Optional[str] = None
    github_url: Optional[str] = None
    category: Optional[str] = None
    featured: Optional[bool] = None

    @field_validator("title", "description", "tech_stack", "images", "featured")
    @classmethod
    def not_null(cls, value):
        # Omit a field to leave it unchanged; null would blank a stored value.
        if value is None:
            raise ValueError("may not be null")
        return value


# Admin actions, one variant per action tag

class DeleteUser(BaseModel):
    action: Literal["delete"]


class VerifyUser(BaseModel):
    action: Literal["verify"]


class ResetUserPassword(BaseModel):
    action: Literal["reset-password"]
    new_password: Password


class UpdateUserEmail(BaseModel):
    action: Literal["update-email"]
    email: EmailStr


class ImpersonateUser(BaseModel):
    action: Literal["impersonate"]


UserAction = Annotated[
    Union[DeleteUser, VerifyUser, ResetUserPassword, UpdateUserEmail, ImpersonateUser],
    Field(discriminator="action"),
]


class DeleteProfile(BaseModel):
    action: Literal["delete"]


class UpdateProfile(BaseModel):
    action: Literal["update"]
    profile: Optional[ProfileInfo] = None
    template: Optional[Template] = None


class FeatureProject(BaseModel):
    action: Literal["feature-project"]
    project_id: str
    featured: bool = True


class TransferOwnership(BaseModel):
    action: Literal["transfer-ownership"]
    new_user_id: str


ProfileAction = Annotated[
    Union[DeleteProfile, UpdateProfile, FeatureProject, TransferOwnership],
    Field(discriminator="action"),
]
