"""
Two-Factor Authentication Routes

API endpoints for 2FA setup, login verification, and management.
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.auth import get_current_user, get_current_user_with_role, issue_token_for
from gatekeeper.constants.auth import DEVICE_TOKEN_COOKIE
from gatekeeper.constants.roles import ADMIN_ROLES
from gatekeeper.database import get_db
from gatekeeper.exceptions import InvalidOperationError, InvalidSessionError
from gatekeeper.middleware.logging import client_address
from gatekeeper.middleware.rate_limit import SEND_CODE_LIMIT, VERIFY_LIMIT, limiter
from gatekeeper.models.two_factor import TwoFactorMethod
from gatekeeper.models.user import User
from gatekeeper.services.factor_registry import FactorState, FactorStatus
from gatekeeper.services.trusted_device_store import DeviceInfo
from gatekeeper.services.two_factor_service import TwoFactorService, get_two_factor_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Two-Factor Authentication"])


# ============== Schemas ==============


class TwoFactorStatusResponse(BaseModel):
    """2FA status response."""

    enabled: bool
    state: FactorState
    method: TwoFactorMethod | None = None
    enabled_at: datetime | None = None
    last_used_at: datetime | None = None
    backup_codes_remaining: int = 0
    trusted_devices: int = 0
    destination: str | None = None

    @classmethod
    def from_status(cls, status: FactorStatus) -> "TwoFactorStatusResponse":
        return cls(
            enabled=status.enabled,
            state=status.state,
            method=status.method,
            enabled_at=status.enabled_at,
            last_used_at=status.last_used_at,
            backup_codes_remaining=status.backup_codes_remaining,
            trusted_devices=status.trusted_devices,
            destination=status.destination,
        )


class SetupInfoResponse(TwoFactorStatusResponse):
    available_methods: list[TwoFactorMethod]


class SetupRequest(BaseModel):
    method: TwoFactorMethod
    phone_number: str | None = Field(None, max_length=32)


class SetupResponse(BaseModel):
    """Response for 2FA setup initiation."""

    method: TwoFactorMethod
    message: str
    secret: str | None = None
    provisioning_uri: str | None = None
    qr_code: str | None = None  # Base64 encoded PNG
    destination: str | None = None


class VerifyCodeRequest(BaseModel):
    code: str = Field(..., min_length=6, max_length=16)


class TwoFactorEnableResponse(BaseModel):
    """Response when 2FA is enabled."""

    enabled: bool
    backup_codes: list[str]
    message: str


class PasswordRequest(BaseModel):
    password: str = Field(..., min_length=1)


class LoginVerifyRequest(BaseModel):
    user_id: int
    code: str = Field(..., min_length=6, max_length=16)
    nonce: str = Field(..., min_length=1, max_length=64)
    trust_device: bool = False


class LoginVerifyResponse(BaseModel):
    access_token: str
    token_type: str
    device_token: str | None = None


class SendCodeRequest(BaseModel):
    user_id: int


class MessageResponse(BaseModel):
    message: str


class BackupCodesStatus(BaseModel):
    total: int
    remaining: int


class BackupCodesResponse(BaseModel):
    """Response with backup codes."""

    backup_codes: list[str]
    message: str


class TrustedDeviceResponse(BaseModel):
    id: int
    device_name: str | None = None
    browser: str | None = None
    os: str | None = None
    ip_address: str | None = None
    trusted_until: datetime
    last_used_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class PolicyResponse(BaseModel):
    trust_days: int
    totp_enabled: bool
    email_enabled: bool
    sms_enabled: bool
    grace_period_days: int
    required_roles: list[str]
    allowed_methods: list[TwoFactorMethod]


class PolicyUpdateRequest(BaseModel):
    trust_days: int | None = Field(None, ge=1, le=365)
    totp_enabled: bool | None = None
    email_enabled: bool | None = None
    sms_enabled: bool | None = None
    grace_period_days: int | None = Field(None, ge=0, le=365)
    required_roles: list[str] | None = None


def policy_response(policy) -> PolicyResponse:
    return PolicyResponse(
        trust_days=policy.trust_days,
        totp_enabled=policy.totp_enabled,
        email_enabled=policy.email_enabled,
        sms_enabled=policy.sms_enabled,
        grace_period_days=policy.grace_period_days,
        required_roles=list(policy.required_roles or []),
        allowed_methods=policy.allowed_methods(),
    )


# ============== Status & Setup ==============


@router.get("/status", response_model=TwoFactorStatusResponse)
async def get_2fa_status(
    current_user: User = Depends(get_current_user),
    service: TwoFactorService = Depends(get_two_factor_service),
) -> TwoFactorStatusResponse:
    """Get current 2FA status for the authenticated user."""
    return TwoFactorStatusResponse.from_status(await service.registry.status(current_user))


@router.get("/setup", response_model=SetupInfoResponse)
async def get_2fa_setup(
    current_user: User = Depends(get_current_user),
    service: TwoFactorService = Depends(get_two_factor_service),
) -> SetupInfoResponse:
    """Current status plus the methods that may be configured."""
    info = await service.registry.setup_info(current_user)
    return SetupInfoResponse(
        **TwoFactorStatusResponse.from_status(info).model_dump(),
        available_methods=info.available_methods,
    )


@router.post("/setup", response_model=SetupResponse)
async def setup_2fa(
    data: SetupRequest,
    current_user: User = Depends(get_current_user),
    service: TwoFactorService = Depends(get_two_factor_service),
) -> SetupResponse:
    """
    Begin 2FA setup.

    TOTP returns a secret and QR code for the authenticator app; e-mail and
    SMS send a code. Either way /verify-setup completes the setup.
    """
    result = await service.registry.begin_setup(current_user, data.method, data.phone_number)
    return SetupResponse(
        method=result.method,
        message=result.message,
        secret=result.secret,
        provisioning_uri=result.provisioning_uri,
        qr_code=result.qr_code,
        destination=result.destination,
    )


@router.post("/verify-setup", response_model=TwoFactorEnableResponse)
async def verify_and_enable_2fa(
    data: VerifyCodeRequest,
    current_user: User = Depends(get_current_user),
    service: TwoFactorService = Depends(get_two_factor_service),
) -> TwoFactorEnableResponse:
    """
    Complete 2FA setup by verifying a code.

    IMPORTANT: Backup codes are only shown once - save them securely!
    """
    backup_codes = await service.registry.confirm_setup(current_user.id, data.code)
    return TwoFactorEnableResponse(
        enabled=True,
        backup_codes=backup_codes,
        message="Two-factor authentication enabled. Save your backup codes in a secure place.",
    )


@router.post("/disable", response_model=MessageResponse)
async def disable_2fa(
    data: PasswordRequest,
    current_user: User = Depends(get_current_user),
    service: TwoFactorService = Depends(get_two_factor_service),
) -> MessageResponse:
    """Disable 2FA. Removes backup codes and trusted devices."""
    await service.registry.disable(current_user, data.password)
    return MessageResponse(message="Two-factor authentication disabled")


# ============== Login Verification ==============


@router.post("/verify", response_model=LoginVerifyResponse)
@limiter.limit(VERIFY_LIMIT)
async def verify_login(
    request: Request,
    response: Response,
    data: LoginVerifyRequest,
    db: AsyncSession = Depends(get_db),
    service: TwoFactorService = Depends(get_two_factor_service),
) -> LoginVerifyResponse:
    """
    Complete a login that returned a two-factor challenge.

    Accepts a code from the configured method or a backup code.
    """
    device = None
    if data.trust_device:
        device = DeviceInfo.from_user_agent(request.headers.get("user-agent"), client_address(request))

    outcome = await service.login_gate.verify(
        data.user_id, data.nonce, data.code, trust_device=data.trust_device, device=device
    )

    user = await db.get(User, outcome.user_id)
    if user is None:
        raise InvalidSessionError()

    if outcome.device_token:
        policy = await service.policy.get()
        response.set_cookie(
            key=DEVICE_TOKEN_COOKIE,
            value=outcome.device_token,
            max_age=policy.trust_days * 86400,
            httponly=True,
            secure=request.url.scheme == "https",
            samesite="lax",
        )

    return LoginVerifyResponse(**issue_token_for(user), device_token=outcome.device_token)


@router.post("/send-code", response_model=MessageResponse)
@limiter.limit(SEND_CODE_LIMIT)
async def send_login_code(
    request: Request,
    data: SendCodeRequest,
    db: AsyncSession = Depends(get_db),
    service: TwoFactorService = Depends(get_two_factor_service),
) -> MessageResponse:
    """Re-send the e-mail or SMS code for a pending login."""
    user = await db.get(User, data.user_id)
    if user is None:
        raise InvalidOperationError("Verification codes cannot be sent for this account")

    await service.login_gate.resend(user)
    return MessageResponse(message="Verification code sent")


# ============== Backup Codes ==============


@router.get("/backup-codes", response_model=BackupCodesStatus)
async def get_backup_codes_status(
    current_user: User = Depends(get_current_user),
    service: TwoFactorService = Depends(get_two_factor_service),
) -> BackupCodesStatus:
    total, remaining = await service.backup_codes.counts(current_user.id)
    return BackupCodesStatus(total=total, remaining=remaining)


@router.post("/backup-codes", response_model=BackupCodesResponse)
async def regenerate_backup_codes(
    data: PasswordRequest,
    current_user: User = Depends(get_current_user),
    service: TwoFactorService = Depends(get_two_factor_service),
) -> BackupCodesResponse:
    """
    Generate a new batch of backup codes.

    All previous backup codes stop working.
    """
    backup_codes = await service.registry.regenerate_backup_codes(current_user, data.password)
    return BackupCodesResponse(
        backup_codes=backup_codes,
        message="New backup codes generated. Previous codes are no longer valid.",
    )


# ============== Trusted Devices ==============


@router.get("/trusted-devices", response_model=list[TrustedDeviceResponse])
async def list_trusted_devices(
    current_user: User = Depends(get_current_user),
    service: TwoFactorService = Depends(get_two_factor_service),
) -> list[TrustedDeviceResponse]:
    devices = await service.list_trusted_devices(current_user.id)
    return [TrustedDeviceResponse.model_validate(device) for device in devices]


@router.delete("/trusted-devices/{device_id}", response_model=MessageResponse)
async def revoke_trusted_device(
    device_id: int,
    current_user: User = Depends(get_current_user),
    service: TwoFactorService = Depends(get_two_factor_service),
) -> MessageResponse:
    await service.revoke_trusted_device(current_user.id, device_id)
    return MessageResponse(message="Trusted device removed")


# ============== Admin Policy ==============


@router.get("/settings", response_model=PolicyResponse)
async def get_2fa_settings(
    current_user: User = Depends(get_current_user_with_role(ADMIN_ROLES)),
    service: TwoFactorService = Depends(get_two_factor_service),
) -> PolicyResponse:
    return policy_response(await service.policy.get())


@router.put("/settings", response_model=PolicyResponse)
async def update_2fa_settings(
    data: PolicyUpdateRequest,
    current_user: User = Depends(get_current_user_with_role(ADMIN_ROLES)),
    service: TwoFactorService = Depends(get_two_factor_service),
) -> PolicyResponse:
    policy = await service.policy.update(data.model_dump(exclude_unset=True))
    logger.info(f"Two-factor policy updated by user {current_user.id}")
    return policy_response(policy)
