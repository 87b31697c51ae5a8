import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.context import AppContext
from app.controllers.user import UserCRUD
from app.models.user import UserProfile, UserUpdate

logger = logging.getLogger(__name__)


def create_router(context: AppContext) -> APIRouter:
    router = APIRouter()

    # Dependency to get user CRUD instance
    async def get_user_crud():
        yield UserCRUD(context.db.users)

    @router.get("/me", response_model=UserProfile)
    async def get_current_user(
        clerk_id: str = Query(..., min_length=1, description="Authenticated user's Clerk ID"),
        crud: UserCRUD = Depends(get_user_crud),
    ):
        """
        Get complete profile of the authenticated user
        """
        return await crud.get_user(clerk_id)

    @router.patch("/me", response_model=UserProfile)
    async def update_profile(
        update: UserUpdate,
        clerk_id: str = Query(..., min_length=1, description="Authenticated user's Clerk ID"),
        crud: UserCRUD = Depends(get_user_crud),
    ):
        """
        Update profile fields allowed for the user's role
        """
        if not update.model_fields_set:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Update data cannot be empty",
            )
        user = await crud.update_user_profile(clerk_id, update)
        logger.info("Profile updated for user %s", clerk_id)
        return user

    @router.delete("/me", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_profile(
        clerk_id: str = Query(..., min_length=1, description="Authenticated user's Clerk ID"),
        crud: UserCRUD = Depends(get_user_crud),
    ):
        """Delete the authenticated user's profile"""
        if not await crud.delete_user(clerk_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    return router
