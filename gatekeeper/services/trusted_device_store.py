"""
Trusted Device Store

A trusted device skips the login challenge until its trust window ends.
The raw token lives only in the client's cookie; the store keeps its
sha256 digest.
"""

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.models.two_factor import TrustedDevice
from gatekeeper.repositories.two_factor import TrustedDeviceRepository
from gatekeeper.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)

# Order matters: Edge and Chrome UAs also contain "Chrome"/"Safari"
BROWSER_MARKERS = [
    ("Edg", "Edge"),
    ("Firefox", "Firefox"),
    ("Chrome", "Chrome"),
    ("Safari", "Safari"),
]

# Android UAs contain "Linux", iOS UAs contain "Mac OS X"
OS_MARKERS = [
    ("Android", "Android"),
    ("iPhone", "iOS"),
    ("iPad", "iOS"),
    ("Windows", "Windows"),
    ("Mac", "macOS"),
    ("Linux", "Linux"),
]


def hash_device_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def _detect(user_agent: str, markers: list[tuple[str, str]]) -> str:
    for marker, name in markers:
        if marker in user_agent:
            return name
    return "Unknown"


@dataclass
class DeviceInfo:
    """Informational metadata captured when a device is trusted."""

    device_name: str | None = None
    browser: str | None = None
    os: str | None = None
    ip_address: str | None = None

    @classmethod
    def from_user_agent(cls, user_agent: str | None, ip_address: str | None = None) -> "DeviceInfo":
        user_agent = user_agent or ""
        browser = _detect(user_agent, BROWSER_MARKERS)
        os_name = _detect(user_agent, OS_MARKERS)
        return cls(
            device_name=f"{browser} on {os_name}",
            browser=browser,
            os=os_name,
            ip_address=ip_address,
        )


class TrustedDeviceStore:
    def __init__(self, db: AsyncSession, clock: Clock = utcnow):
        self.db = db
        self.devices = TrustedDeviceRepository(db)
        self.clock = clock

    async def trust(self, user_id: int, policy_days: int, device: DeviceInfo | None = None) -> str:
        """
        Trust the current device for `policy_days`.

        Returns:
            The raw device token to hand to the client
        """
        device = device or DeviceInfo()
        token = secrets.token_urlsafe(48)
        now = self.clock()
        self.devices.add(
            TrustedDevice(
                user_id=user_id,
                token_hash=hash_device_token(token),
                device_name=device.device_name,
                browser=device.browser,
                os=device.os,
                ip_address=device.ip_address,
                trusted_until=now + timedelta(days=policy_days),
                last_used_at=now,
                created_at=now,
            )
        )
        await self.db.commit()

        logger.info(f"Trusted new device for user {user_id} for {policy_days} days")
        return token

    async def is_trusted(self, user_id: int, token: str | None) -> bool:
        if not token:
            return False

        now = self.clock()
        device = await self.devices.find_live(user_id, hash_device_token(token), now)
        if device is None:
            return False

        await self.devices.touch(device.id, now)
        await self.db.commit()
        return True

    async def list(self, user_id: int) -> list[TrustedDevice]:
        return await self.devices.list_live(user_id, self.clock())

    async def count(self, user_id: int) -> int:
        return await self.devices.count_live(user_id, self.clock())

    async def revoke(self, user_id: int, device_id: int) -> bool:
        removed = await self.devices.delete(user_id, device_id)
        await self.db.commit()
        return removed

    async def delete_all(self, user_id: int) -> int:
        return await self.devices.delete_for_user(user_id)

    async def purge_expired(self, now=None) -> int:
        removed = await self.devices.delete_expired(now or self.clock())
        await self.db.commit()
        return removed
