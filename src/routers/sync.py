"""Sync endpoints: manual trigger, cancellation, credential hand-off."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from fastapi import APIRouter, HTTPException, status

from src.dependencies import Services
from src.fitsync.base import AccessCredential, utc_now
from src.models.sync import CredentialGrant, SyncResultRead

router = APIRouter(prefix="/sync", tags=["sync"])
logger = logging.getLogger("fitsync.api.sync")


@router.post("/{user_id}", response_model=SyncResultRead)
async def trigger_sync(user_id: str, services: Services) -> Any:
    """Run a sync cycle for the user now.

    Also enrolls the user in the periodic loop, matching what a login does.
    Returns 409 when the provider needs the user to re-consent.
    """
    scheduler = services.scheduler
    scheduler.register_user(user_id)
    result = await scheduler.trigger_sync(user_id, manual=True)
    if result.needs_reauth:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=result.error or "Provider authorization required",
        )
    return SyncResultRead.model_validate(result)


@router.delete("/{user_id}", status_code=status.HTTP_202_ACCEPTED)
async def cancel_sync(user_id: str, services: Services) -> dict:
    cancelled = services.scheduler.cancel(user_id)
    return {"user_id": user_id, "cancelled": cancelled}


@router.put("/{user_id}/credentials", status_code=status.HTTP_204_NO_CONTENT)
async def store_credentials(user_id: str, body: CredentialGrant, services: Services) -> None:
    """Accept provider tokens obtained by the client's OAuth flow."""
    credential = AccessCredential(
        token=body.access_token,
        expires_at=utc_now() + timedelta(seconds=body.expires_in),
        refresh_token=body.refresh_token,
        scope=list(body.scope),
    )
    await services.scheduler.credential_manager(user_id).set_credential(credential)
    services.scheduler.register_user(user_id)
    logger.info("Credential grant stored for user %s", user_id)
