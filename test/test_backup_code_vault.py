"""
Tests for single-use backup codes.
"""

import asyncio

from sqlalchemy.future import select

from gatekeeper.models.two_factor import BackupCode
from gatekeeper.services.backup_code_vault import (
    BACKUP_CODE_ALPHABET,
    BackupCodeVault,
    hash_backup_code,
    normalize_backup_code,
)


class TestBackupCodeVault:
    async def test_generate_batch(self, test_db, test_user):
        """Test batch size, length and alphabet of generated codes"""
        vault = BackupCodeVault(test_db)
        codes = await vault.generate_batch(test_user.id)

        assert len(codes) == 10
        assert len(set(codes)) == 10
        assert all(len(code) == 8 for code in codes)
        assert all(symbol in BACKUP_CODE_ALPHABET for code in codes for symbol in code)
        assert await vault.counts(test_user.id) == (10, 10)

    async def test_only_hashes_are_stored(self, test_db, test_user):
        """Test that plaintext codes never reach the database"""
        vault = BackupCodeVault(test_db)
        codes = await vault.generate_batch(test_user.id)

        result = await test_db.execute(select(BackupCode.code_hash).where(BackupCode.user_id == test_user.id))
        stored = set(result.scalars().all())

        assert stored == {hash_backup_code(code) for code in codes}
        assert not stored & set(codes)

    async def test_consume_once(self, test_db, test_user):
        """Test that a backup code works only once"""
        vault = BackupCodeVault(test_db)
        codes = await vault.generate_batch(test_user.id)

        assert await vault.consume(test_user.id, codes[0]) is True
        assert await vault.consume(test_user.id, codes[0]) is False
        assert await vault.counts(test_user.id) == (10, 9)

    async def test_consume_normalizes_input(self, test_db, test_user):
        """Test that case, spaces and dashes are ignored when consuming"""
        vault = BackupCodeVault(test_db)
        code = (await vault.generate_batch(test_user.id))[0]

        assert await vault.consume(test_user.id, f" {code[:4].lower()}-{code[4:].lower()} ") is True

    async def test_unknown_code_rejected(self, test_db, test_user):
        """Test that a code outside the batch is rejected"""
        vault = BackupCodeVault(test_db)
        await vault.generate_batch(test_user.id)

        assert await vault.consume(test_user.id, "ZZZZZZZZ0") is False
        assert await vault.consume(test_user.id, "") is False

    async def test_new_batch_invalidates_previous(self, test_db, test_user):
        """Test that regenerating revokes every earlier code"""
        vault = BackupCodeVault(test_db)
        old_codes = await vault.generate_batch(test_user.id)
        await vault.generate_batch(test_user.id)

        for code in old_codes:
            assert await vault.consume(test_user.id, code) is False
        assert await vault.counts(test_user.id) == (10, 10)

    async def test_codes_are_scoped_to_owner(self, test_db, test_user, test_admin):
        """Test that one user's code is rejected for another user"""
        vault = BackupCodeVault(test_db)
        codes = await vault.generate_batch(test_user.id)

        assert await vault.consume(test_admin.id, codes[0]) is False

    async def test_concurrent_consume_has_single_winner(self, session_factory, test_db, test_user):
        """Test that two sessions consuming one code succeed exactly once"""
        codes = await BackupCodeVault(test_db).generate_batch(test_user.id)

        async with session_factory() as first, session_factory() as second:
            results = await asyncio.gather(
                BackupCodeVault(first).consume(test_user.id, codes[3]),
                BackupCodeVault(second).consume(test_user.id, codes[3]),
            )

        assert sorted(results) == [False, True]

    async def test_used_at_comes_from_clock(self, test_db, test_user, clock):
        """Test that used_at is stamped from the injected clock"""
        vault = BackupCodeVault(test_db, clock=clock)
        code = (await vault.generate_batch(test_user.id))[0]
        await vault.consume(test_user.id, code)

        result = await test_db.execute(select(BackupCode.used_at).where(BackupCode.is_used.is_(True)))
        assert result.scalar_one() == clock.now


def test_normalize_backup_code():
    """Test backup code normalization"""
    assert normalize_backup_code(" abcd-efgh ") == "ABCDEFGH"
    assert normalize_backup_code(None) == ""
