"""
Authentication Routes

Password login. When the account has an enabled second factor the response
is a challenge instead of a token, and the login is completed through
`POST /2fa/verify`.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.auth import get_user_by_email, issue_token_for, verify_password
from gatekeeper.constants.auth import DEVICE_TOKEN_COOKIE, DEVICE_TOKEN_HEADER
from gatekeeper.database import get_db
from gatekeeper.exceptions import InvalidCredentialsError
from gatekeeper.middleware.rate_limit import TOKEN_LIMIT, limiter
from gatekeeper.models.two_factor import TwoFactorMethod
from gatekeeper.services.two_factor_service import TwoFactorService, get_two_factor_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Authentication"])


class Token(BaseModel):
    access_token: str
    token_type: str


class TwoFactorChallenge(BaseModel):
    """Returned instead of a token when a second factor is required."""

    two_factor_required: bool = True
    user_id: int
    method: TwoFactorMethod
    nonce: str


def device_token_from(request: Request) -> str | None:
    return request.cookies.get(DEVICE_TOKEN_COOKIE) or request.headers.get(DEVICE_TOKEN_HEADER)


@router.post("/token", response_model=Token | TwoFactorChallenge)
@limiter.limit(TOKEN_LIMIT)
async def login_for_access_token(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db),
    service: TwoFactorService = Depends(get_two_factor_service),
):
    """
    Exchange e-mail and password for an access token, or a two-factor challenge.
    """
    user = await get_user_by_email(db, form_data.username)
    if user is None or not verify_password(form_data.password, user.hashed_password):
        logger.warning("Login failed: invalid credentials")
        raise InvalidCredentialsError("Invalid email or password")

    decision = await service.login_gate.begin(user, device_token=device_token_from(request))
    if not decision.allowed:
        return TwoFactorChallenge(user_id=decision.user_id, method=decision.method, nonce=decision.nonce)

    logger.info(f"Access token created for user {user.id}")
    return Token(**issue_token_for(user))
