"""
Backup Code Vault

Single-use recovery codes. A batch is shown to the user exactly once; only
sha256 digests of the normalized codes are stored.
"""

import hashlib
import hmac
import logging
import secrets
from random import Random

from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.models.two_factor import BackupCode
from gatekeeper.repositories.two_factor import BackupCodeRepository
from gatekeeper.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)

# No 0/O or 1/I to avoid transcription mistakes
BACKUP_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def normalize_backup_code(code: str | None) -> str:
    return "".join((code or "").replace("-", "").split()).upper()


def hash_backup_code(code: str) -> str:
    return hashlib.sha256(normalize_backup_code(code).encode()).hexdigest()


class BackupCodeVault:
    def __init__(
        self,
        db: AsyncSession,
        count: int = 10,
        length: int = 8,
        clock: Clock = utcnow,
        rng: Random | None = None,
    ):
        self.db = db
        self.codes = BackupCodeRepository(db)
        self.count = count
        self.length = length
        self.clock = clock
        self.rng = rng or secrets.SystemRandom()

    def _new_code(self) -> str:
        return "".join(self.rng.choice(BACKUP_CODE_ALPHABET) for _ in range(self.length))

    async def generate_batch(self, user_id: int) -> list[str]:
        """
        Replace the user's backup codes with a fresh batch.

        Returns:
            The plaintext codes; they cannot be recovered later
        """
        plaintext: list[str] = []
        while len(plaintext) < self.count:
            code = self._new_code()
            if code not in plaintext:
                plaintext.append(code)

        await self.codes.delete_for_user(user_id)
        now = self.clock()
        self.codes.add_all(
            [BackupCode(user_id=user_id, code_hash=hash_backup_code(code), created_at=now) for code in plaintext]
        )
        await self.db.commit()

        logger.info(f"Generated {len(plaintext)} backup codes for user {user_id}")
        return plaintext

    async def consume(self, user_id: int, code: str) -> bool:
        """Spend one unused code. At most one of several concurrent callers succeeds."""
        normalized = normalize_backup_code(code)
        if not normalized:
            return False

        submitted_hash = hash_backup_code(normalized)
        match = None
        for candidate in await self.codes.list_unused(user_id):
            if hmac.compare_digest(candidate.code_hash, submitted_hash):
                match = candidate

        if match is None:
            return False

        won = await self.codes.mark_used(match.id, self.clock())
        await self.db.commit()
        if won:
            logger.info(f"Backup code used by user {user_id}")
        return won

    async def counts(self, user_id: int) -> tuple[int, int]:
        return await self.codes.counts(user_id)

    async def delete_all(self, user_id: int) -> int:
        return await self.codes.delete_for_user(user_id)
