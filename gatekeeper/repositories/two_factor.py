"""
Two-Factor Repositories

One repository per persisted entity. Statements that consume one-time
material (`mark_used`, `register_attempt`, `consume`) carry their guard in
the WHERE clause and report success through the affected row count, so two
concurrent requests can never both win.
"""

from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.models.two_factor import (
    BackupCode,
    FactorRegistration,
    TrustedDevice,
    TwoFactorPolicy,
    VerificationChallenge,
)


class FactorRegistrationRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, user_id: int) -> FactorRegistration | None:
        result = await self.db.execute(select(FactorRegistration).where(FactorRegistration.user_id == user_id))
        return result.scalar_one_or_none()

    async def get_enabled(self, user_id: int) -> FactorRegistration | None:
        result = await self.db.execute(
            select(FactorRegistration).where(
                FactorRegistration.user_id == user_id,
                FactorRegistration.is_enabled.is_(True),
                FactorRegistration.is_confirmed.is_(True),
            )
        )
        return result.scalar_one_or_none()

    def add(self, registration: FactorRegistration) -> None:
        self.db.add(registration)

    async def touch_last_used(self, user_id: int, moment: datetime) -> None:
        await self.db.execute(
            update(FactorRegistration).where(FactorRegistration.user_id == user_id).values(last_used_at=moment)
        )

    async def delete_for_user(self, user_id: int) -> int:
        result = await self.db.execute(delete(FactorRegistration).where(FactorRegistration.user_id == user_id))
        return result.rowcount or 0


class BackupCodeRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_unused(self, user_id: int) -> list[BackupCode]:
        result = await self.db.execute(
            select(BackupCode).where(BackupCode.user_id == user_id, BackupCode.is_used.is_(False))
        )
        return list(result.scalars().all())

    def add_all(self, codes: list[BackupCode]) -> None:
        self.db.add_all(codes)

    async def mark_used(self, code_id: int, moment: datetime) -> bool:
        """Flip one code to used; False if another request already did."""
        result = await self.db.execute(
            update(BackupCode)
            .where(BackupCode.id == code_id, BackupCode.is_used.is_(False))
            .values(is_used=True, used_at=moment)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def counts(self, user_id: int) -> tuple[int, int]:
        """(total, remaining) for the user's current batch."""
        result = await self.db.execute(
            select(func.count(BackupCode.id), func.count(BackupCode.id).filter(BackupCode.is_used.is_(False))).where(
                BackupCode.user_id == user_id
            )
        )
        total, remaining = result.one()
        return int(total or 0), int(remaining or 0)

    async def delete_for_user(self, user_id: int) -> int:
        result = await self.db.execute(delete(BackupCode).where(BackupCode.user_id == user_id))
        return result.rowcount or 0


class TrustedDeviceRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_live(self, user_id: int, token_hash: str, now: datetime) -> TrustedDevice | None:
        result = await self.db.execute(
            select(TrustedDevice).where(
                TrustedDevice.user_id == user_id,
                TrustedDevice.token_hash == token_hash,
                TrustedDevice.trusted_until > now,
            )
        )
        return result.scalar_one_or_none()

    async def list_live(self, user_id: int, now: datetime) -> list[TrustedDevice]:
        result = await self.db.execute(
            select(TrustedDevice)
            .where(TrustedDevice.user_id == user_id, TrustedDevice.trusted_until > now)
            .order_by(
                TrustedDevice.last_used_at.is_(None),
                TrustedDevice.last_used_at.desc(),
                TrustedDevice.created_at.desc(),
            )
        )
        return list(result.scalars().all())

    async def count_live(self, user_id: int, now: datetime) -> int:
        result = await self.db.execute(
            select(func.count(TrustedDevice.id)).where(
                TrustedDevice.user_id == user_id, TrustedDevice.trusted_until > now
            )
        )
        return int(result.scalar_one() or 0)

    def add(self, device: TrustedDevice) -> None:
        self.db.add(device)

    async def touch(self, device_id: int, moment: datetime) -> None:
        await self.db.execute(
            update(TrustedDevice)
            .where(TrustedDevice.id == device_id)
            .values(last_used_at=moment)
            .execution_options(synchronize_session=False)
        )

    async def delete(self, user_id: int, device_id: int) -> bool:
        result = await self.db.execute(
            delete(TrustedDevice).where(TrustedDevice.id == device_id, TrustedDevice.user_id == user_id)
        )
        return result.rowcount == 1

    async def delete_for_user(self, user_id: int) -> int:
        result = await self.db.execute(delete(TrustedDevice).where(TrustedDevice.user_id == user_id))
        return result.rowcount or 0

    async def delete_expired(self, now: datetime) -> int:
        result = await self.db.execute(delete(TrustedDevice).where(TrustedDevice.trusted_until <= now))
        return result.rowcount or 0


class ChallengeRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    def add(self, challenge: VerificationChallenge) -> None:
        self.db.add(challenge)

    async def latest_live(self, user_id: int, now: datetime, max_attempts: int) -> VerificationChallenge | None:
        """Most recently issued challenge that is unexpired and not exhausted."""
        result = await self.db.execute(
            select(VerificationChallenge)
            .where(
                VerificationChallenge.user_id == user_id,
                VerificationChallenge.expires_at > now,
                VerificationChallenge.attempts < max_attempts,
            )
            .order_by(VerificationChallenge.created_at.desc(), VerificationChallenge.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def register_attempt(self, challenge_id: int, max_attempts: int) -> bool:
        """Increment the attempt counter unless the cap was already reached."""
        result = await self.db.execute(
            update(VerificationChallenge)
            .where(VerificationChallenge.id == challenge_id, VerificationChallenge.attempts < max_attempts)
            .values(attempts=VerificationChallenge.attempts + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def consume(self, challenge_id: int) -> bool:
        result = await self.db.execute(delete(VerificationChallenge).where(VerificationChallenge.id == challenge_id))
        return result.rowcount == 1

    async def delete_for_user(self, user_id: int) -> int:
        result = await self.db.execute(delete(VerificationChallenge).where(VerificationChallenge.user_id == user_id))
        return result.rowcount or 0

    async def delete_expired(self, now: datetime) -> int:
        result = await self.db.execute(delete(VerificationChallenge).where(VerificationChallenge.expires_at <= now))
        return result.rowcount or 0


class PolicyRepository:
    POLICY_ID = 1

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self) -> TwoFactorPolicy | None:
        return await self.db.get(TwoFactorPolicy, self.POLICY_ID)

    def add(self, policy: TwoFactorPolicy) -> None:
        self.db.add(policy)
