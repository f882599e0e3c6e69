"""
Authentication Routes for the ExamCoach access API

Registration, signup phone verification and the two-factor login flow.
Each login attempt is addressed by the login id returned from
``POST /login``; the attempt's state lives server-side only.
"""

from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from accounts import access_gate
from accounts.errors import AccountError, NotFoundError, ValidationError
from web_api.dependencies import ServiceContainer, get_services

router = APIRouter()


# ============ Request/Response Models ============

class RegisterRequest(BaseModel):
    """New account registration"""
    phone_number: str = Field(..., description="Phone number, with or without country code")
    password: str = Field(..., description="Account password")
    email: Optional[str] = Field(None, description="Optional e-mail address")
    full_name: Optional[str] = Field(None, description="Display name")


class RegisterResponse(BaseModel):
    account_id: str
    phone_number: str
    message: str = "Registration successful. Verify your phone number to start your free trial."


class PhoneVerificationRequest(BaseModel):
    account_id: str


class PhoneVerificationConfirmRequest(BaseModel):
    account_id: str
    code: str = Field(..., description="6-digit verification code")


class LoginRequest(BaseModel):
    """First factor: phone number or e-mail plus password"""
    identifier: str = Field(..., description="Phone number or e-mail address")
    password: str


class LoginResponse(BaseModel):
    login_id: str
    state: str
    expires_in_seconds: int


class VerifyCodeRequest(BaseModel):
    code: str = Field(..., description="6-digit verification code")


class LoginStateResponse(BaseModel):
    login_id: str
    state: str
    expires_in_seconds: Optional[int] = None


class AuthenticatedResponse(BaseModel):
    token: str
    account: dict
    access_status: str
    has_content_access: bool


# ============ Helper Functions ============

def _get_coordinator(services: ServiceContainer, login_id: str):
    coordinator = services.logins.get(login_id)
    if coordinator is None:
        raise NotFoundError("Unknown or expired login id")
    return coordinator


def _remaining_seconds(coordinator) -> Optional[int]:
    remaining = coordinator.session_time_remaining
    return int(remaining.total_seconds()) if remaining else None


def _raise_last_error(coordinator, fallback: str) -> None:
    error = coordinator.last_error
    if isinstance(error, AccountError):
        raise error
    raise ValidationError(fallback)


# ============ Registration ============

@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(request: RegisterRequest, services: ServiceContainer = Depends(get_services)):
    """Create an unverified account"""
    account = await services.registration.register(
        phone=request.phone_number,
        password=request.password,
        email=request.email,
        full_name=request.full_name,
    )
    return RegisterResponse(account_id=account.id, phone_number=account.phone_number)


@router.post("/verify-phone/send")
async def send_phone_verification(
    request: PhoneVerificationRequest,
    services: ServiceContainer = Depends(get_services),
):
    await services.registration.start_phone_verification(request.account_id)
    return {"status": "sent"}


@router.post("/verify-phone/confirm")
async def confirm_phone_verification(
    request: PhoneVerificationConfirmRequest,
    services: ServiceContainer = Depends(get_services),
):
    """Confirm the signup code; the first confirmation starts the free trial"""
    account = await services.registration.confirm_phone_verification(
        request.account_id, request.code
    )
    now = services.clock()
    tz = services.settings.display_timezone
    return {
        "account": account.summary(),
        "trial_message": access_gate.trial_display_message(account, now, tz),
        "trial_remaining": access_gate.trial_time_remaining_text(account, now),
    }


# ============ Two-factor login ============

@router.post("/login", response_model=LoginResponse)
async def login(request: LoginRequest, services: ServiceContainer = Depends(get_services)):
    """Verify the password and open a login attempt"""
    login_id, coordinator = services.logins.create()
    if not await coordinator.verify_credentials(request.identifier, request.password):
        services.logins.discard(login_id)
        _raise_last_error(coordinator, "Invalid credentials")

    return LoginResponse(
        login_id=login_id,
        state=coordinator.state.value,
        expires_in_seconds=_remaining_seconds(coordinator) or 0,
    )


@router.post("/login/{login_id}/send-code", response_model=LoginStateResponse)
async def send_login_code(login_id: str, services: ServiceContainer = Depends(get_services)):
    coordinator = _get_coordinator(services, login_id)
    if not await coordinator.send_second_factor():
        _raise_last_error(coordinator, "Could not send verification code")

    return LoginStateResponse(
        login_id=login_id,
        state=coordinator.state.value,
        expires_in_seconds=_remaining_seconds(coordinator),
    )


@router.post("/login/{login_id}/verify-code", response_model=LoginStateResponse)
async def verify_login_code(
    login_id: str,
    request: VerifyCodeRequest,
    services: ServiceContainer = Depends(get_services),
):
    coordinator = _get_coordinator(services, login_id)
    if not await coordinator.verify_second_factor(request.code):
        _raise_last_error(coordinator, "Invalid verification code")

    return LoginStateResponse(login_id=login_id, state=coordinator.state.value)


@router.post("/login/{login_id}/complete", response_model=AuthenticatedResponse)
async def complete_login(login_id: str, services: ServiceContainer = Depends(get_services)):
    """Exchange a fully authenticated attempt for a bearer token"""
    coordinator = _get_coordinator(services, login_id)
    account = await coordinator.complete_authentication()
    if account is None:
        raise ValidationError("Verification code has not been confirmed")

    services.logins.discard(login_id)
    now = services.clock()
    return AuthenticatedResponse(
        token=services.tokens.issue(account.id, is_admin=account.is_admin),
        account=account.summary(),
        access_status=access_gate.access_status_message(
            account, now, services.settings.display_timezone
        ),
        has_content_access=access_gate.has_content_access(account, now),
    )


@router.delete("/login/{login_id}")
async def cancel_login(login_id: str, services: ServiceContainer = Depends(get_services)):
    coordinator = services.logins.get(login_id)
    if coordinator is not None:
        coordinator.reset()
    services.logins.discard(login_id)
    return {"status": "reset"}
