import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import HTTPException, status
from pymongo import ReturnDocument

from app.models.user import Role, UserProfile, UserUpdate, normalize_role

logger = logging.getLogger(__name__)

COMMON_FIELDS = ("first_name", "last_name", "phone", "location", "willing_to_relocate")

ROLE_FIELDS = {
    Role.JOB_SEEKER: COMMON_FIELDS + ("skills",),
    Role.EMPLOYER: COMMON_FIELDS + ("company_name", "company_website"),
    Role.UNASSIGNED: COMMON_FIELDS,
}


class UserCRUD:
    def __init__(self, db_collection):
        self.collection = db_collection

    def _current_role(self, document: dict) -> Role:
        try:
            return Role(normalize_role(document.get("role")))
        except ValueError:
            return Role.UNASSIGNED

    async def get_user_by_clerk_id(self, clerk_id: str) -> Optional[UserProfile]:
        """Get a user by their Clerk ID"""
        raw_user = await self.collection.find_one({"clerk_id": clerk_id})
        if not raw_user:
            return None
        return UserProfile.model_validate(raw_user)

    async def get_user(self, clerk_id: str) -> UserProfile:
        user = await self.get_user_by_clerk_id(clerk_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        return user

    async def update_user_profile(self, clerk_id: str, update: UserUpdate) -> UserProfile:
        """
        Apply a profile update, keeping only the fields the user's role owns.

        An unassigned user may pick a role once; after that the role is fixed
        and employer-only or seeker-only fields sent by the other role are
        dropped.
        """
        existing = await self.collection.find_one({"clerk_id": clerk_id})
        if not existing:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

        current_role = self._current_role(existing)
        requested_role = update.role
        if requested_role and current_role != Role.UNASSIGNED and requested_role != current_role:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Cannot change role from {current_role.value} to {requested_role.value}",
            )
        effective_role = requested_role or current_role

        changes = update.model_dump(exclude_unset=True, exclude={"role"})
        allowed = ROLE_FIELDS[effective_role]
        dropped = sorted(field for field in changes if field not in allowed)
        if dropped:
            logger.info("Ignoring %s fields %s for user %s", effective_role.value, dropped, clerk_id)

        update_doc = {field: value for field, value in changes.items() if field in allowed}
        update_doc["role"] = effective_role.value
        update_doc["updated_at"] = datetime.now(timezone.utc)

        result = await self.collection.find_one_and_update(
            {"clerk_id": clerk_id},
            {"$set": update_doc},
            return_document=ReturnDocument.AFTER,
        )
        if not result:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        return UserProfile.model_validate(result)

    async def delete_user(self, clerk_id: str) -> bool:
        """Delete a user profile"""
        result = await self.collection.delete_one({"clerk_id": clerk_id})
        return result.deleted_count > 0
