"""
Login Gate

Sits between a successful password check and the issuing of an access token.
When the user has an enabled second factor, and the presented device token is
not trusted, the login is suspended behind a short-lived nonce until a valid
code is submitted with it.
"""

import enum
import logging
import secrets
from dataclasses import dataclass

from pyotp.utils import strings_equal

from gatekeeper.exceptions import (
    InvalidOperationError,
    InvalidSessionError,
    InvalidVerificationCodeError,
    TwoFactorNotSetUpError,
)
from gatekeeper.models.two_factor import TwoFactorMethod
from gatekeeper.models.user import User
from gatekeeper.services.backup_code_vault import BackupCodeVault
from gatekeeper.services.events import SECOND_FACTOR_CONFIRMED, EventListener, TwoFactorEvent, publish
from gatekeeper.services.factor_registry import FactorRegistry
from gatekeeper.services.policy_service import PolicyService
from gatekeeper.services.totp_engine import TOTPEngine
from gatekeeper.services.trusted_device_store import DeviceInfo, TrustedDeviceStore
from gatekeeper.services.verification_channel import VerificationChannelStore
from gatekeeper.utils.clock import Clock, to_unix, utcnow
from gatekeeper.utils.nonce_cache import InMemoryNonceCache, RedisNonceCache, nonce_key

logger = logging.getLogger(__name__)

NONCE_LENGTH = 32
NONCE_ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"


class LoginDecisionKind(str, enum.Enum):
    ALLOWED = "allowed"
    CHALLENGE_REQUIRED = "challenge_required"


@dataclass
class LoginDecision:
    kind: LoginDecisionKind
    user_id: int
    method: TwoFactorMethod | None = None
    nonce: str | None = None

    @property
    def allowed(self) -> bool:
        return self.kind == LoginDecisionKind.ALLOWED


@dataclass
class VerificationOutcome:
    user_id: int
    method: TwoFactorMethod
    used_backup_code: bool = False
    device_token: str | None = None


def generate_nonce() -> str:
    return "".join(secrets.choice(NONCE_ALPHABET) for _ in range(NONCE_LENGTH))


class LoginGate:
    def __init__(
        self,
        registry: FactorRegistry,
        totp: TOTPEngine,
        backup_codes: BackupCodeVault,
        channel: VerificationChannelStore,
        devices: TrustedDeviceStore,
        policy: PolicyService,
        nonce_cache: InMemoryNonceCache | RedisNonceCache,
        nonce_ttl: int = 300,
        clock: Clock = utcnow,
        listeners: list[EventListener] | None = None,
    ):
        self.registry = registry
        self.totp = totp
        self.backup_codes = backup_codes
        self.channel = channel
        self.devices = devices
        self.policy = policy
        self.nonce_cache = nonce_cache
        self.nonce_ttl = nonce_ttl
        self.clock = clock
        self.listeners = listeners or []

    async def begin(self, user: User, device_token: str | None = None) -> LoginDecision:
        """Decide whether a password-authenticated login needs a second factor."""
        registration = await self.registry.get_enabled(user.id)
        if registration is None:
            return LoginDecision(kind=LoginDecisionKind.ALLOWED, user_id=user.id)

        if device_token and await self.devices.is_trusted(user.id, device_token):
            logger.info(f"Trusted device bypassed two-factor challenge for user {user.id}")
            return LoginDecision(kind=LoginDecisionKind.ALLOWED, user_id=user.id, method=registration.method)

        nonce = generate_nonce()
        await self.nonce_cache.set(nonce_key(user.id), nonce, self.nonce_ttl)

        if registration.method.uses_channel:
            await self.channel.issue(user.id, registration.method, self.registry.destination_for(user, registration))

        logger.info(f"Two-factor challenge issued for user {user.id} ({registration.method.value})")
        return LoginDecision(
            kind=LoginDecisionKind.CHALLENGE_REQUIRED,
            user_id=user.id,
            method=registration.method,
            nonce=nonce,
        )

    async def _check_nonce(self, user_id: int, nonce: str | None) -> None:
        live = await self.nonce_cache.get(nonce_key(user_id))
        if not live or not nonce or not strings_equal(live, nonce):
            logger.warning(f"Two-factor verification with invalid session for user {user_id}")
            raise InvalidSessionError()

    async def verify(
        self,
        user_id: int,
        nonce: str | None,
        code: str,
        trust_device: bool = False,
        device: DeviceInfo | None = None,
    ) -> VerificationOutcome:
        """
        Complete a suspended login.

        The nonce is claimed before any code is compared or consumed, so a
        request that loses the race for it never spends a channel or backup
        code. The configured method is tried first and backup codes second;
        every failure surfaces as the same InvalidVerificationCodeError and
        hands the nonce back for another attempt.
        """
        await self._check_nonce(user_id, nonce)

        registration = await self.registry.get_enabled(user_id)
        if registration is None:
            raise TwoFactorNotSetUpError()

        key = nonce_key(user_id)
        remaining_ttl = await self.nonce_cache.ttl(key)
        # Only one verification may run against a given login attempt
        if not await self.nonce_cache.pop_if_match(key, nonce):
            raise InvalidSessionError()

        method = registration.method
        verified = False
        used_backup_code = False
        try:
            if method == TwoFactorMethod.TOTP:
                verified = self.totp.verify(registration.secret, code, to_unix(self.clock()))
            elif method.uses_channel:
                verified = await self.channel.verify(user_id, code)

            if not verified:
                used_backup_code = verified = await self.backup_codes.consume(user_id, code)
        finally:
            if not verified and remaining_ttl:
                await self.nonce_cache.set_if_absent(key, nonce, remaining_ttl)

        if not verified:
            logger.warning(f"Two-factor verification failed for user {user_id}")
            raise InvalidVerificationCodeError()

        await self.registry.touch_last_used(user_id)

        device_token = None
        if trust_device:
            policy = await self.policy.get()
            device_token = await self.devices.trust(user_id, policy.trust_days, device)

        logger.info(f"Second factor confirmed for user {user_id}")
        await publish(
            self.listeners,
            TwoFactorEvent(
                name=SECOND_FACTOR_CONFIRMED,
                user_id=user_id,
                method=method.value,
                occurred_at=self.clock(),
                details={"backup_code": used_backup_code, "trusted_device": trust_device},
            ),
        )

        return VerificationOutcome(
            user_id=user_id,
            method=method,
            used_backup_code=used_backup_code,
            device_token=device_token,
        )

    async def resend(self, user: User) -> TwoFactorMethod:
        """Issue a fresh channel code for a login that is waiting on one."""
        registration = await self.registry.get_enabled(user.id)
        if registration is None or not registration.method.uses_channel:
            raise InvalidOperationError("Verification codes cannot be sent for this account")

        if not await self.nonce_cache.get(nonce_key(user.id)):
            raise InvalidOperationError("Verification codes cannot be sent for this account")

        await self.channel.issue(user.id, registration.method, self.registry.destination_for(user, registration))
        return registration.method
