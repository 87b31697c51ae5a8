from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.user import PyObjectId


class EmploymentType(str, Enum):
    FULL_TIME = "full_time"
    PART_TIME = "part_time"
    CONTRACT = "contract"
    INTERNSHIP = "internship"
    TEMPORARY = "temporary"


class ApplicationStatus(str, Enum):
    SUBMITTED = "submitted"
    REVIEWED = "reviewed"
    INTERVIEW = "interview"
    REJECTED = "rejected"
    ACCEPTED = "accepted"


class SalaryRange(BaseModel):
    min: Optional[int] = Field(default=None, ge=0)
    max: Optional[int] = Field(default=None, ge=0)
    currency: str = "USD"


class Location(BaseModel):
    city: Optional[str] = None
    country: Optional[str] = None
    remote: bool = False


class JobApplication(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[PyObjectId] = Field(default=None, alias="_id")
    user_id: str
    applied_at: datetime
    status: ApplicationStatus = ApplicationStatus.SUBMITTED
    resume_id: Optional[str] = None
    cover_letter: Optional[str] = None


class JobPostingCreate(BaseModel):
    title: str = Field(min_length=1)
    company: str = Field(min_length=1)
    description: str = ""
    employment_type: EmploymentType = EmploymentType.FULL_TIME
    location: Location = Field(default_factory=Location)
    salary: Optional[SalaryRange] = None
    skills_required: List[str] = Field(default_factory=list)


class JobPostingUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    company: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    employment_type: Optional[EmploymentType] = None
    location: Optional[Location] = None
    salary: Optional[SalaryRange] = None
    skills_required: Optional[List[str]] = None


class JobPosting(JobPostingCreate):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[PyObjectId] = Field(default=None, alias="_id")
    employer_id: str
    is_active: bool = True
    posted_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    applications: List[JobApplication] = Field(default_factory=list)
