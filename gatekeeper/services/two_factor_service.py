"""
Two-Factor Authentication Service

Builds the two-factor components for one request from settings and the
injected collaborators (database session, notification sender, nonce cache,
clock, event listeners).
"""

import logging

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.config import Settings, settings
from gatekeeper.database import get_db
from gatekeeper.exceptions import TrustedDeviceNotFoundError
from gatekeeper.models.two_factor import TrustedDevice
from gatekeeper.services.backup_code_vault import BackupCodeVault
from gatekeeper.services.events import TRUSTED_DEVICE_REVOKED, EventListener, TwoFactorEvent, audit_log_listener, publish
from gatekeeper.services.factor_registry import FactorRegistry
from gatekeeper.services.login_gate import LoginGate
from gatekeeper.services.notification_sender import NotificationSender, get_notification_sender
from gatekeeper.services.policy_service import PolicyService
from gatekeeper.services.totp_engine import TOTPEngine
from gatekeeper.services.trusted_device_store import TrustedDeviceStore
from gatekeeper.services.verification_channel import VerificationChannelStore
from gatekeeper.utils.clock import Clock, utcnow
from gatekeeper.utils.nonce_cache import InMemoryNonceCache, RedisNonceCache, get_nonce_cache

logger = logging.getLogger(__name__)


class TwoFactorService:
    def __init__(
        self,
        db: AsyncSession,
        sender: NotificationSender,
        nonce_cache: InMemoryNonceCache | RedisNonceCache,
        clock: Clock = utcnow,
        listeners: list[EventListener] | None = None,
        config: Settings = settings,
    ):
        self.db = db
        self.clock = clock
        self.listeners = [audit_log_listener] if listeners is None else listeners

        self.totp = TOTPEngine.from_settings(config)
        self.backup_codes = BackupCodeVault(
            db, count=config.backup_code_count, length=config.backup_code_length, clock=clock
        )
        self.channel = VerificationChannelStore(
            db,
            sender,
            ttl_seconds=config.verification_code_ttl_seconds,
            max_attempts=config.verification_max_attempts,
            clock=clock,
        )
        self.devices = TrustedDeviceStore(db, clock=clock)
        self.policy = PolicyService(db)
        self.registry = FactorRegistry(
            db,
            totp=self.totp,
            backup_codes=self.backup_codes,
            channel=self.channel,
            devices=self.devices,
            policy=self.policy,
            clock=clock,
            listeners=self.listeners,
            secret_length=config.totp_secret_length,
        )
        self.login_gate = LoginGate(
            registry=self.registry,
            totp=self.totp,
            backup_codes=self.backup_codes,
            channel=self.channel,
            devices=self.devices,
            policy=self.policy,
            nonce_cache=nonce_cache,
            nonce_ttl=config.login_nonce_ttl_seconds,
            clock=clock,
            listeners=self.listeners,
        )

    async def list_trusted_devices(self, user_id: int) -> list[TrustedDevice]:
        return await self.devices.list(user_id)

    async def revoke_trusted_device(self, user_id: int, device_id: int) -> None:
        if not await self.devices.revoke(user_id, device_id):
            raise TrustedDeviceNotFoundError(device_id)

        logger.info(f"Trusted device {device_id} revoked by user {user_id}")
        await publish(
            self.listeners,
            TwoFactorEvent(
                name=TRUSTED_DEVICE_REVOKED,
                user_id=user_id,
                method=None,
                occurred_at=self.clock(),
                details={"device_id": device_id},
            ),
        )


def get_clock() -> Clock:
    return utcnow


async def get_two_factor_service(
    db: AsyncSession = Depends(get_db),
    sender: NotificationSender = Depends(get_notification_sender),
    nonce_cache: InMemoryNonceCache | RedisNonceCache = Depends(get_nonce_cache),
    clock: Clock = Depends(get_clock),
) -> TwoFactorService:
    return TwoFactorService(db, sender, nonce_cache, clock=clock)
