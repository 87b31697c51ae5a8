from fastapi import APIRouter
from pydantic import BaseModel, Field

from app.context import AppContext


class EchoRequest(BaseModel):
    name: str = Field(..., min_length=1)


def create_router(context: AppContext) -> APIRouter:
    router = APIRouter()

    @router.post("/test-post")
    async def test_post(payload: EchoRequest):
        """Echo the posted name back; handy for checking the request pipeline."""
        return {"message": f"Your name is {payload.name}"}

    return router
