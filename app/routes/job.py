from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from app.context import AppContext
from app.controllers.job import JobCRUD
from app.models.job import (
    ApplicationStatus,
    EmploymentType,
    JobPosting,
    JobPostingCreate,
    JobPostingUpdate,
    PyObjectId,
)


def create_router(context: AppContext) -> APIRouter:
    router = APIRouter()

    # Dependency to get job CRUD operations
    async def get_job_crud():
        yield JobCRUD(context.db.jobs)

    # Job Posting Endpoints
    @router.post("/", response_model=JobPosting, status_code=status.HTTP_201_CREATED)
    async def create_job_posting(
        job_data: JobPostingCreate,
        employer_id: str = Query(..., description="Authenticated employer's Clerk ID"),
        crud: JobCRUD = Depends(get_job_crud),
    ):
        """
        Create a new job posting
        """
        return await crud.create_job(job_data, employer_id)

    @router.get("/", response_model=List[JobPosting])
    async def search_jobs(
        query: Optional[str] = None,
        location: Optional[str] = None,
        employment_type: Optional[EmploymentType] = None,
        min_salary: Optional[int] = Query(None, ge=0),
        skills: Optional[List[str]] = Query(None),
        limit: int = Query(20, ge=1, le=100),
        skip: int = Query(0, ge=0),
        crud: JobCRUD = Depends(get_job_crud),
    ):
        """
        Search for jobs with various filters
        """
        return await crud.search_jobs(
            query=query,
            location=location,
            employment_type=employment_type,
            min_salary=min_salary,
            skills=skills,
            limit=limit,
            skip=skip,
        )

    # Employer Job Management
    @router.get("/employer/{employer_id}", response_model=List[JobPosting])
    async def get_employer_jobs(
        employer_id: str, active_only: bool = True, crud: JobCRUD = Depends(get_job_crud)
    ):
        """
        Get all jobs posted by an employer
        """
        return await crud.get_jobs_by_employer(employer_id, active_only=active_only)

    @router.get("/{job_id}", response_model=JobPosting)
    async def get_job_details(job_id: PyObjectId, crud: JobCRUD = Depends(get_job_crud)):
        """
        Get details of a specific job posting
        """
        return await crud.get_job_by_id(job_id)

    @router.put("/{job_id}", response_model=JobPosting)
    async def update_job_posting(
        job_id: PyObjectId,
        update: JobPostingUpdate,
        employer_id: str = Query(..., description="Authenticated employer's Clerk ID"),
        crud: JobCRUD = Depends(get_job_crud),
    ):
        """
        Update a job posting (only by the employer who created it)
        """
        changes = update.model_dump(mode="json", exclude_unset=True)
        return await crud.update_job(job_id, changes, employer_id)

    @router.patch("/{job_id}/status", response_model=JobPosting)
    async def update_job_status(
        job_id: PyObjectId,
        is_active: bool,
        employer_id: str = Query(..., description="Authenticated employer's Clerk ID"),
        crud: JobCRUD = Depends(get_job_crud),
    ):
        """
        Activate or deactivate a job posting
        """
        return await crud.set_job_status(job_id, is_active, employer_id)

    @router.delete("/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_job_posting(
        job_id: PyObjectId,
        employer_id: str = Query(..., description="Authenticated employer's Clerk ID"),
        crud: JobCRUD = Depends(get_job_crud),
    ):
        """
        Delete a job posting
        """
        await crud.delete_job(job_id, employer_id)

    # Job Application Endpoints
    @router.post("/{job_id}/applications", status_code=status.HTTP_201_CREATED)
    async def apply_to_job(
        job_id: PyObjectId,
        cover_letter: Optional[str] = None,
        resume_id: Optional[str] = None,
        user_id: str = Query(..., description="Authenticated user's Clerk ID"),
        crud: JobCRUD = Depends(get_job_crud),
    ):
        """
        Apply to a job posting
        """
        return await crud.add_job_application(job_id, user_id, resume_id, cover_letter)

    @router.get("/{job_id}/applications", response_model=List[dict])
    async def get_job_applications(
        job_id: PyObjectId,
        employer_id: str = Query(..., description="Authenticated employer's Clerk ID"),
        crud: JobCRUD = Depends(get_job_crud),
    ):
        """
        Get applications for a job (only accessible to the employer)
        """
        return await crud.get_applications(job_id, employer_id)

    @router.patch("/{job_id}/applications/{application_id}", response_model=dict)
    async def update_application_status(
        job_id: PyObjectId,
        application_id: PyObjectId,
        new_status: ApplicationStatus = Query(..., alias="status"),
        employer_id: str = Query(..., description="Authenticated employer's Clerk ID"),
        crud: JobCRUD = Depends(get_job_crud),
    ):
        """
        Update application status (employer only)
        """
        return await crud.update_application_status(job_id, application_id, employer_id, new_status)

    return router
