"""
Factor Registry

Owns the per-user second-factor registration and its lifecycle:

    NO_FACTOR -> PENDING_SETUP -> CONFIRMED_DISABLED -> CONFIRMED_ENABLED

A registration only gates login once a code for the pending method has been
verified. Disabling re-proves the password and removes every dependent
record before the registration itself.
"""

import enum
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.auth import verify_password
from gatekeeper.exceptions import (
    InvalidCredentialsError,
    InvalidOperationError,
    InvalidVerificationCodeError,
    TwoFactorNotSetUpError,
    ValidationError,
)
from gatekeeper.models.two_factor import FactorRegistration, TwoFactorMethod
from gatekeeper.models.user import User
from gatekeeper.repositories.two_factor import FactorRegistrationRepository
from gatekeeper.services.backup_code_vault import BackupCodeVault
from gatekeeper.services.events import (
    BACKUP_CODES_REGENERATED,
    TWO_FACTOR_DISABLED,
    TWO_FACTOR_ENABLED,
    EventListener,
    TwoFactorEvent,
    publish,
)
from gatekeeper.services.policy_service import PolicyService
from gatekeeper.services.totp_engine import TOTPEngine
from gatekeeper.services.trusted_device_store import TrustedDeviceStore
from gatekeeper.services.verification_channel import VerificationChannelStore, mask_destination
from gatekeeper.utils.clock import Clock, to_unix, utcnow
from gatekeeper.utils.secret_codec import generate_secret

logger = logging.getLogger(__name__)

PHONE_SEPARATORS = re.compile(r"[\s\-.()]")
PHONE_PATTERN = re.compile(r"^\+?\d{7,15}$")


class FactorState(str, enum.Enum):
    NO_FACTOR = "no_factor"
    PENDING_SETUP = "pending_setup"
    CONFIRMED_DISABLED = "confirmed_disabled"
    CONFIRMED_ENABLED = "confirmed_enabled"


def normalize_phone_number(phone_number: str | None) -> str:
    """Strip formatting and validate an E.164-style number."""
    cleaned = PHONE_SEPARATORS.sub("", phone_number or "")
    if not PHONE_PATTERN.match(cleaned):
        raise ValidationError("A valid phone number is required for SMS codes", field="phone_number")
    return cleaned


def state_of(registration: FactorRegistration | None) -> FactorState:
    if registration is None:
        return FactorState.NO_FACTOR
    if not registration.is_confirmed:
        return FactorState.PENDING_SETUP
    if registration.is_enabled:
        return FactorState.CONFIRMED_ENABLED
    return FactorState.CONFIRMED_DISABLED


@dataclass
class SetupResult:
    method: TwoFactorMethod
    message: str
    secret: str | None = None
    provisioning_uri: str | None = None
    qr_code: str | None = None
    destination: str | None = None


@dataclass
class FactorStatus:
    enabled: bool
    state: FactorState
    method: TwoFactorMethod | None = None
    enabled_at: datetime | None = None
    last_used_at: datetime | None = None
    backup_codes_remaining: int = 0
    trusted_devices: int = 0
    destination: str | None = None
    available_methods: list[TwoFactorMethod] = field(default_factory=list)


class FactorRegistry:
    def __init__(
        self,
        db: AsyncSession,
        totp: TOTPEngine,
        backup_codes: BackupCodeVault,
        channel: VerificationChannelStore,
        devices: TrustedDeviceStore,
        policy: PolicyService,
        clock: Clock = utcnow,
        listeners: list[EventListener] | None = None,
        password_verifier: Callable[[str, str], bool] = verify_password,
        secret_length: int = 16,
    ):
        self.db = db
        self.registrations = FactorRegistrationRepository(db)
        self.totp = totp
        self.backup_codes = backup_codes
        self.channel = channel
        self.devices = devices
        self.policy = policy
        self.clock = clock
        self.listeners = listeners or []
        self.password_verifier = password_verifier
        self.secret_length = secret_length

    async def state(self, user_id: int) -> FactorState:
        return state_of(await self.registrations.get(user_id))

    async def get_enabled(self, user_id: int) -> FactorRegistration | None:
        return await self.registrations.get_enabled(user_id)

    def destination_for(self, user: User, registration: FactorRegistration) -> str | None:
        """Where channel codes for this registration are delivered."""
        if registration.method == TwoFactorMethod.SMS:
            return registration.phone_number
        if registration.method == TwoFactorMethod.EMAIL:
            return user.email
        return None

    async def _emit(self, name: str, user_id: int, method: TwoFactorMethod | None, **details) -> None:
        event = TwoFactorEvent(
            name=name,
            user_id=user_id,
            method=method.value if method else None,
            occurred_at=self.clock(),
            details=details,
        )
        await publish(self.listeners, event)

    def _check_password(self, user: User, password: str) -> None:
        if not password or not self.password_verifier(password, user.hashed_password):
            logger.warning(f"Password re-verification failed for user {user.id}")
            raise InvalidCredentialsError()

    async def begin_setup(
        self, user: User, method: TwoFactorMethod | str, phone_number: str | None = None
    ) -> SetupResult:
        """
        Start (or restart) setup for `method`.

        Any earlier unconfirmed setup is replaced. Raises InvalidOperationError
        while a factor is enabled; it must be disabled first.
        """
        try:
            method = TwoFactorMethod(method)
        except ValueError:
            raise ValidationError(f"Unsupported two-factor method: {method}", field="method") from None

        policy = await self.policy.get()
        if method not in policy.allowed_methods():
            raise ValidationError(f"Two-factor method '{method.value}' is not allowed", field="method")

        phone = normalize_phone_number(phone_number) if method == TwoFactorMethod.SMS else None

        registration = await self.registrations.get(user.id)
        if registration is not None and registration.is_enabled:
            raise InvalidOperationError("Two-factor authentication is already enabled; disable it first")

        if registration is None:
            registration = FactorRegistration(user_id=user.id)
            self.registrations.add(registration)

        # Codes issued for an earlier pending setup must not confirm this one
        await self.channel.delete_all(user.id)

        registration.method = method
        registration.secret = generate_secret(self.secret_length) if method == TwoFactorMethod.TOTP else None
        registration.phone_number = phone
        registration.is_confirmed = False
        registration.is_enabled = False
        registration.enabled_at = None
        registration.updated_at = self.clock()
        await self.db.commit()

        logger.info(f"Two-factor setup started for user {user.id} ({method.value})")

        if method == TwoFactorMethod.TOTP:
            uri = self.totp.provisioning_uri(registration.secret, user.email)
            return SetupResult(
                method=method,
                secret=registration.secret,
                provisioning_uri=uri,
                qr_code=self.totp.qr_code(uri),
                message="Scan the QR code with your authenticator app, then verify with a code.",
            )

        destination = self.destination_for(user, registration)
        await self.channel.issue(user.id, method, destination)
        return SetupResult(
            method=method,
            destination=mask_destination(destination),
            message="A verification code has been sent. Verify it to complete setup.",
        )

    async def confirm_setup(self, user_id: int, code: str) -> list[str]:
        """
        Verify a code for the pending method and enable the factor.

        Returns:
            The first batch of backup codes, shown only once
        """
        registration = await self.registrations.get(user_id)
        if registration is None or registration.is_confirmed:
            raise TwoFactorNotSetUpError("No pending two-factor setup")

        if registration.method == TwoFactorMethod.TOTP:
            verified = self.totp.verify(registration.secret, code, to_unix(self.clock()))
        else:
            verified = await self.channel.verify(user_id, code)

        if not verified:
            logger.warning(f"Two-factor setup verification failed for user {user_id}")
            raise InvalidVerificationCodeError()

        codes = await self.backup_codes.generate_batch(user_id)

        now = self.clock()
        registration.is_confirmed = True
        registration.is_enabled = True
        registration.enabled_at = now
        registration.updated_at = now
        await self.db.commit()

        logger.info(f"Two-factor authentication enabled for user {user_id}")
        await self._emit(TWO_FACTOR_ENABLED, user_id, registration.method)
        return codes

    async def disable(self, user: User, password: str) -> None:
        self._check_password(user, password)

        registration = await self.registrations.get(user.id)
        if registration is None:
            raise TwoFactorNotSetUpError()
        method = registration.method

        await self.backup_codes.delete_all(user.id)
        await self.devices.delete_all(user.id)
        await self.channel.delete_all(user.id)
        await self.registrations.delete_for_user(user.id)
        await self.db.commit()

        logger.info(f"Two-factor authentication disabled for user {user.id}")
        await self._emit(TWO_FACTOR_DISABLED, user.id, method)

    async def regenerate_backup_codes(self, user: User, password: str) -> list[str]:
        self._check_password(user, password)

        registration = await self.registrations.get_enabled(user.id)
        if registration is None:
            raise TwoFactorNotSetUpError()

        codes = await self.backup_codes.generate_batch(user.id)
        await self._emit(BACKUP_CODES_REGENERATED, user.id, registration.method)
        return codes

    async def status(self, user: User) -> FactorStatus:
        registration = await self.registrations.get(user.id)
        if registration is None:
            return FactorStatus(enabled=False, state=FactorState.NO_FACTOR)

        _, remaining = await self.backup_codes.counts(user.id)
        return FactorStatus(
            enabled=bool(registration.is_enabled and registration.is_confirmed),
            state=state_of(registration),
            method=registration.method,
            enabled_at=registration.enabled_at,
            last_used_at=registration.last_used_at,
            backup_codes_remaining=remaining,
            trusted_devices=await self.devices.count(user.id),
            destination=mask_destination(self.destination_for(user, registration)),
        )

    async def setup_info(self, user: User) -> FactorStatus:
        """Current status plus the methods the policy allows."""
        info = await self.status(user)
        policy = await self.policy.get()
        info.available_methods = policy.allowed_methods()
        return info

    async def touch_last_used(self, user_id: int) -> None:
        await self.registrations.touch_last_used(user_id, self.clock())
        await self.db.commit()
