"""
Admin routes

Account enable/disable/delete, admin creation and user statistics. Every
route except login needs an admin bearer token; the acting admin is
re-checked against the identity store on each mutation.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel, Field

from accounts.errors import NotFoundError
from accounts.models import Role
from web_api.dependencies import (
    ServiceContainer,
    SessionToken,
    get_services,
    require_admin,
    require_super_admin,
    security_scheme,
)

router = APIRouter()


# ============ Request/Response Models ============

class AdminLoginRequest(BaseModel):
    phone_number: str
    password: str


class DisableAccountRequest(BaseModel):
    reason: str = Field(..., min_length=1, description="Shown in the audit trail")


class CreateAdminRequest(BaseModel):
    phone_number: str
    full_name: str = Field(..., min_length=1)
    email: str
    password: str
    role: Role = Role.ADMIN


# ============ Routes ============

@router.post("/login")
async def admin_login(request: AdminLoginRequest, services: ServiceContainer = Depends(get_services)):
    admin = await services.admin.authenticate_admin(request.phone_number, request.password)
    if admin is None:
        raise NotFoundError("Admin authentication failed")
    return {
        "token": services.tokens.issue(admin.id, is_admin=True),
        "account": admin.summary(),
    }


@router.post("/logout")
async def admin_logout(
    session: SessionToken = Depends(require_admin),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
    services: ServiceContainer = Depends(get_services),
):
    services.tokens.revoke(credentials.credentials)
    return {"status": "logged_out"}


@router.post("/admins", status_code=201)
async def create_admin(
    request: CreateAdminRequest,
    session: SessionToken = Depends(require_super_admin),
    services: ServiceContainer = Depends(get_services),
):
    admin = await services.admin.create_admin_user(
        request.phone_number,
        request.full_name,
        request.email,
        request.password,
        role=request.role,
        acting_admin_id=session.account_id,
    )
    return {"account": admin.summary()}


@router.get("/accounts")
async def list_accounts(
    session: SessionToken = Depends(require_admin),
    services: ServiceContainer = Depends(get_services),
):
    accounts = await services.admin.list_accounts()
    return {"accounts": [account.summary() for account in accounts]}


@router.delete("/accounts/by-phone/{phone_number}")
async def delete_account_by_phone(
    phone_number: str,
    session: SessionToken = Depends(require_admin),
    services: ServiceContainer = Depends(get_services),
):
    if not await services.admin.delete_account_by_phone(phone_number, session.account_id):
        raise NotFoundError(f"No account for phone {phone_number}")
    return {"status": "deleted"}


@router.post("/accounts/{account_id}/enable")
async def enable_account(
    account_id: str,
    session: SessionToken = Depends(require_admin),
    services: ServiceContainer = Depends(get_services),
):
    account = await services.admin.enable(account_id, session.account_id)
    return {"account": account.summary()}


@router.post("/accounts/{account_id}/disable")
async def disable_account(
    account_id: str,
    request: DisableAccountRequest,
    session: SessionToken = Depends(require_admin),
    services: ServiceContainer = Depends(get_services),
):
    account = await services.admin.disable(account_id, request.reason, session.account_id)
    return {"account": account.summary(), "reason": account.disabled_reason}


@router.get("/stats")
async def user_statistics(
    session: SessionToken = Depends(require_admin),
    services: ServiceContainer = Depends(get_services),
):
    return await services.admin.user_statistics()
