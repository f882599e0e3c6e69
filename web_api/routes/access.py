"""
Content access routes

Reports an account's trial/subscription access and feature table. An
account may only read its own access; admins may read any.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from accounts import access_gate
from accounts.errors import NotFoundError
from web_api.dependencies import ServiceContainer, SessionToken, get_services, get_session

router = APIRouter()


async def _load_visible_account(account_id: str, session: SessionToken, services: ServiceContainer):
    if session.account_id != account_id and not session.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    account = await services.store.get_by_id(account_id)
    if account is None:
        raise NotFoundError(f"Unknown account {account_id}")
    return account


@router.get("/{account_id}")
async def get_access(
    account_id: str,
    session: SessionToken = Depends(get_session),
    services: ServiceContainer = Depends(get_services),
):
    account = await _load_visible_account(account_id, session, services)
    now = services.clock()
    tz = services.settings.display_timezone
    has_access = access_gate.has_content_access(account, now)
    return {
        "account_id": account.id,
        "has_content_access": has_access,
        "needs_subscription": access_gate.needs_subscription(account, now),
        "is_on_trial": access_gate.is_on_trial(account, now),
        "has_active_subscription": access_gate.has_active_subscription(account, now),
        "trial_message": access_gate.trial_display_message(account, now, tz),
        "trial_remaining": access_gate.trial_time_remaining_text(account, now),
        "status_message": access_gate.access_status_message(account, now, tz),
        "lock_reason": None if has_access else access_gate.content_lock_reason(account, now),
        "features": access_gate.feature_access(account, now),
    }


@router.get("/{account_id}/features/{feature}")
async def get_feature_access(
    account_id: str,
    feature: str,
    session: SessionToken = Depends(get_session),
    services: ServiceContainer = Depends(get_services),
):
    account = await _load_visible_account(account_id, session, services)
    return {
        "feature": feature,
        "available": access_gate.is_feature_available(account, feature, services.clock()),
    }
