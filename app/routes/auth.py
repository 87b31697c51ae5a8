import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Request, status
from svix.webhooks import Webhook, WebhookVerificationError

from app.context import AppContext

logger = logging.getLogger(__name__)


def _primary_email(user_data: dict):
    primary_id = user_data.get("primary_email_address_id")
    return next(
        (
            email.get("email_address")
            for email in user_data.get("email_addresses", [])
            if email.get("id") == primary_id
        ),
        None,
    )


def create_router(context: AppContext) -> APIRouter:
    router = APIRouter()

    @router.post("/clerk/webhook")
    async def handle_user_created(request: Request):
        """
        Receive Clerk user events and create a skeleton user on ``user.created``.

        The signature is checked against the bytes Clerk sent; the event
        itself is read from the sanitized body.
        """
        webhook_secret = context.settings.clerk_webhook_secret
        if not webhook_secret:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Webhook secret not configured",
            )

        payload = request.state.received_body
        try:
            Webhook(webhook_secret).verify(payload, dict(request.headers))
        except WebhookVerificationError as e:
            logger.warning("Webhook verification failed: %s", e)
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook signature"
            )

        data = request.state.json
        if data is None:
            data = json.loads(await request.body())
        if not isinstance(data, dict):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook payload must be an object"
            )
        if data.get("type") != "user.created":
            return {"status": "ignored"}

        user_data = data.get("data", {})
        user_id = user_data.get("id")
        email = _primary_email(user_data)
        if not user_id or not email:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Missing required user data",
            )

        existing_user = await context.db.users.find_one({"clerk_id": user_id})
        if existing_user:
            logger.info("User %s already exists", user_id)
            return {"status": "exists"}

        now = datetime.now(timezone.utc)
        await context.db.users.insert_one(
            {
                "clerk_id": user_id,
                "email": email,
                "role": "unassigned",
                "created_at": now,
                "updated_at": now,
            }
        )
        logger.info("Created skeleton user for %s", user_id)
        return {"status": "success"}

    return router
