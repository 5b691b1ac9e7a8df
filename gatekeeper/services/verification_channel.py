"""
Verification Channel Store

Six-digit codes delivered by e-mail or SMS. Each challenge expires after a
fixed lifetime and allows a bounded number of attempts; every attempt is
counted before the code is compared. When several challenges are live the
most recently issued one is the only one that verifies.
"""

import hashlib
import hmac
import logging
import secrets
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.models.two_factor import TwoFactorMethod, VerificationChallenge
from gatekeeper.repositories.two_factor import ChallengeRepository
from gatekeeper.services.notification_sender import NotificationSender
from gatekeeper.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)

CODE_DIGITS = 6


def hash_channel_code(code: str) -> str:
    return hashlib.sha256(code.encode()).hexdigest()


def mask_destination(destination: str | None) -> str | None:
    """Hide most of an e-mail address or phone number for display."""
    if not destination:
        return None
    if "@" in destination:
        local, _, domain = destination.partition("@")
        return f"{local[:1]}***@{domain}"
    return f"***{destination[-4:]}"


class VerificationChannelStore:
    def __init__(
        self,
        db: AsyncSession,
        sender: NotificationSender,
        ttl_seconds: int = 600,
        max_attempts: int = 5,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.challenges = ChallengeRepository(db)
        self.sender = sender
        self.ttl = timedelta(seconds=ttl_seconds)
        self.max_attempts = max_attempts
        self.clock = clock

    async def issue(self, user_id: int, method: TwoFactorMethod, destination: str) -> VerificationChallenge:
        """
        Create a challenge and hand the code to the notification sender.

        The challenge is committed before delivery; a delivery failure is
        logged and the challenge stays valid.
        """
        code = f"{secrets.randbelow(10**CODE_DIGITS):0{CODE_DIGITS}d}"
        now = self.clock()
        challenge = VerificationChallenge(
            user_id=user_id,
            code_hash=hash_channel_code(code),
            method=method,
            expires_at=now + self.ttl,
            attempts=0,
            created_at=now,
        )
        self.challenges.add(challenge)
        await self.db.commit()

        try:
            delivered = await self.sender.send(method.value, destination, code)
        except Exception:
            logger.exception(f"Verification code delivery raised for user {user_id}")
            delivered = False
        if not delivered:
            logger.warning(f"Verification code for user {user_id} was not delivered via {method.value}")
        else:
            logger.info(f"Verification code sent to user {user_id} via {method.value}")

        return challenge

    async def verify(self, user_id: int, code: str) -> bool:
        submitted = "".join((code or "").split())
        now = self.clock()
        challenge = await self.challenges.latest_live(user_id, now, self.max_attempts)
        if challenge is None:
            return False

        counted = await self.challenges.register_attempt(challenge.id, self.max_attempts)
        await self.db.commit()
        if not counted:
            return False

        if not hmac.compare_digest(challenge.code_hash, hash_channel_code(submitted)):
            return False

        consumed = await self.challenges.consume(challenge.id)
        await self.db.commit()
        return consumed

    async def purge_expired(self, now=None) -> int:
        removed = await self.challenges.delete_expired(now or self.clock())
        await self.db.commit()
        return removed

    async def delete_all(self, user_id: int) -> int:
        return await self.challenges.delete_for_user(user_id)
