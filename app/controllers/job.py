import logging
import re
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from bson import ObjectId
from fastapi import HTTPException, status

from app.models.job import (
    ApplicationStatus,
    EmploymentType,
    JobPosting,
    JobPostingCreate,
    PyObjectId,
)

logger = logging.getLogger(__name__)

POSTING_LIFETIME = timedelta(days=30)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobCRUD:
    def __init__(self, db_collection):
        self.collection = db_collection

    async def create_job(self, job_data: JobPostingCreate, employer_id: str) -> JobPosting:
        """Create a new job posting"""
        now = utcnow()
        document = job_data.model_dump(mode="json")
        document.update(
            employer_id=employer_id,
            is_active=True,
            posted_at=now,
            expires_at=now + POSTING_LIFETIME,
            applications=[],
        )

        result = await self.collection.insert_one(document)
        if not result.inserted_id:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to create job posting",
            )
        logger.info("Employer %s created job %s", employer_id, result.inserted_id)
        return await self.get_job_by_id(str(result.inserted_id))

    async def get_job_by_id(self, job_id: PyObjectId) -> JobPosting:
        """Get a job by its ID"""
        job = await self.collection.find_one({"_id": ObjectId(job_id)})
        if not job:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
        return JobPosting.model_validate(job)

    async def get_jobs_by_employer(self, employer_id: str, active_only: bool = True) -> List[JobPosting]:
        """Get all jobs posted by an employer"""
        query = {"employer_id": employer_id}
        if active_only:
            query["is_active"] = True
        cursor = self.collection.find(query)
        return [JobPosting.model_validate(job) async for job in cursor]

    async def search_jobs(
        self,
        query: Optional[str] = None,
        location: Optional[str] = None,
        employment_type: Optional[EmploymentType] = None,
        min_salary: Optional[int] = None,
        skills: Optional[List[str]] = None,
        limit: int = 20,
        skip: int = 0,
    ) -> List[JobPosting]:
        """Search active, unexpired jobs with optional filters"""
        search_filter = {"is_active": True, "expires_at": {"$gt": utcnow()}}

        if query:
            search_filter["$text"] = {"$search": query}

        if location:
            pattern = re.escape(location)
            alternatives = [
                {"location.city": {"$regex": pattern, "$options": "i"}},
                {"location.country": {"$regex": pattern, "$options": "i"}},
            ]
            if location.lower() == "remote":
                alternatives.append({"location.remote": True})
            search_filter["$or"] = alternatives

        if employment_type:
            search_filter["employment_type"] = EmploymentType(employment_type).value

        if min_salary:
            search_filter["salary.min"] = {"$gte": min_salary}

        if skills:
            search_filter["skills_required"] = {"$all": skills}

        cursor = self.collection.find(search_filter).skip(skip).limit(limit)
        return [JobPosting.model_validate(job) async for job in cursor]

    async def _require_owner(self, job_id: PyObjectId, employer_id: str, action: str) -> None:
        existing = await self.collection.find_one({"_id": ObjectId(job_id)})
        if not existing:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
        if existing.get("employer_id") != employer_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Not authorized to {action} this job",
            )

    async def update_job(self, job_id: PyObjectId, update_data: dict, employer_id: str) -> JobPosting:
        """Update a job posting (owner only)"""
        await self._require_owner(job_id, employer_id, "update")
        if update_data:
            await self.collection.update_one({"_id": ObjectId(job_id)}, {"$set": update_data})
        return await self.get_job_by_id(job_id)

    async def set_job_status(self, job_id: PyObjectId, is_active: bool, employer_id: str) -> JobPosting:
        """Activate or deactivate a job posting"""
        return await self.update_job(job_id, {"is_active": is_active}, employer_id)

    async def delete_job(self, job_id: PyObjectId, employer_id: str) -> bool:
        """Delete a job posting"""
        await self._require_owner(job_id, employer_id, "delete")
        result = await self.collection.delete_one(
            {"_id": ObjectId(job_id), "employer_id": employer_id}
        )
        if result.deleted_count == 0:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
        return True

    async def add_job_application(
        self,
        job_id: PyObjectId,
        user_id: str,
        resume_id: Optional[str] = None,
        cover_letter: Optional[str] = None,
    ) -> dict:
        """Add a job application to an active job posting"""
        application = {
            "_id": ObjectId(),
            "user_id": user_id,
            "applied_at": utcnow(),
            "status": ApplicationStatus.SUBMITTED.value,
            "resume_id": resume_id,
            "cover_letter": cover_letter,
        }

        result = await self.collection.update_one(
            {
                "_id": ObjectId(job_id),
                "is_active": True,
                "applications.user_id": {"$ne": user_id},
            },
            {"$push": {"applications": application}},
        )
        if result.matched_count == 0:
            job = await self.get_job_by_id(job_id)
            if not job.is_active:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail="Job is no longer accepting applications",
                )
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Already applied to this job",
            )
        return {"status": "applied", "application_id": str(application["_id"])}

    async def get_applications(self, job_id: PyObjectId, employer_id: str) -> List[dict]:
        """Applications for a job, visible to its employer only"""
        job = await self.get_job_by_id(job_id)
        if job.employer_id != employer_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not authorized to view these applications",
            )
        return [application.model_dump(mode="json") for application in job.applications]

    async def update_application_status(
        self,
        job_id: PyObjectId,
        application_id: PyObjectId,
        employer_id: str,
        new_status: ApplicationStatus,
    ) -> dict:
        """Update an application status (employer only)"""
        await self._require_owner(job_id, employer_id, "review applications for")
        result = await self.collection.update_one(
            {"_id": ObjectId(job_id), "applications._id": ObjectId(application_id)},
            {"$set": {"applications.$.status": ApplicationStatus(new_status).value}},
        )
        if result.matched_count == 0:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Application not found")
        return {"status": "updated", "application_status": ApplicationStatus(new_status).value}
