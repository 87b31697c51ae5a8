from datetime import datetime
from enum import Enum
from typing import Annotated, List, Optional

from bson import ObjectId
from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, EmailStr, Field, field_validator


def _check_object_id(value: str) -> str:
    if not ObjectId.is_valid(value):
        raise ValueError(f"{value!r} is not a valid ObjectId")
    return value


# Stored as ObjectId, exchanged as its hex string
PyObjectId = Annotated[str, BeforeValidator(str), AfterValidator(_check_object_id)]


class Role(str, Enum):
    JOB_SEEKER = "job_seeker"
    EMPLOYER = "employer"
    UNASSIGNED = "unassigned"


ROLE_ALIASES = {
    "jobseeker": "job_seeker",
    "seeker": "job_seeker",
    "candidate": "job_seeker",
    "recruiter": "employer",
    "hr": "employer",
    "company": "employer",
    "hiring_manager": "employer",
}


def normalize_role(role: Optional[str]) -> str:
    """Map free-form role names ("Hiring Manager", "job-seeker") onto Role values."""
    if not role:
        return Role.UNASSIGNED.value
    normalized = role.strip().lower().replace(" ", "_").replace("-", "_")
    return ROLE_ALIASES.get(normalized, normalized)


class UserProfile(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[PyObjectId] = Field(default=None, alias="_id")
    clerk_id: str
    email: EmailStr
    role: Annotated[Role, BeforeValidator(normalize_role)] = Role.UNASSIGNED
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    willing_to_relocate: bool = False
    skills: List[str] = Field(default_factory=list)
    company_name: Optional[str] = None
    company_website: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserUpdate(BaseModel):
    """Fields a user may change; which of them apply depends on the role."""

    role: Optional[Role] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    willing_to_relocate: Optional[bool] = None
    skills: Optional[List[str]] = None
    company_name: Optional[str] = None
    company_website: Optional[str] = None

    @field_validator("role", mode="before")
    @classmethod
    def normalize_optional_role(cls, value):
        return None if value is None else normalize_role(value)
