"""
Tests for the login gate: challenge issuance, verification and resend.
"""

import asyncio

import pytest

from gatekeeper.exceptions import (
    InvalidOperationError,
    InvalidSessionError,
    InvalidVerificationCodeError,
    TwoFactorNotSetUpError,
)
from gatekeeper.models.two_factor import TwoFactorMethod
from gatekeeper.services.login_gate import LoginDecisionKind
from gatekeeper.services.trusted_device_store import DeviceInfo
from gatekeeper.services.two_factor_service import TwoFactorService
from gatekeeper.utils.clock import to_unix
from gatekeeper.utils.nonce_cache import nonce_key


async def enable_totp(service, user, clock) -> tuple[str, list[str]]:
    setup = await service.registry.begin_setup(user, TwoFactorMethod.TOTP)
    code = service.totp.generate(setup.secret, to_unix(clock()))
    backup_codes = await service.registry.confirm_setup(user.id, code)
    return setup.secret, backup_codes


async def enable_email(service, user, sender) -> list[str]:
    await service.registry.begin_setup(user, TwoFactorMethod.EMAIL)
    return await service.registry.confirm_setup(user.id, sender.last_code)


class TestBegin:
    async def test_no_factor_allows_login(self, service, test_user):
        """Test that users without a factor log in directly"""
        decision = await service.login_gate.begin(test_user)

        assert decision.allowed is True
        assert decision.nonce is None

    async def test_pending_setup_allows_login(self, service, test_user):
        """Test that an unconfirmed setup does not gate login"""
        await service.registry.begin_setup(test_user, TwoFactorMethod.TOTP)

        decision = await service.login_gate.begin(test_user)
        assert decision.allowed is True

    async def test_enabled_factor_requires_challenge(self, service, test_user, clock, nonce_cache):
        """Test that an enabled factor suspends the login behind a nonce"""
        await enable_totp(service, test_user, clock)

        decision = await service.login_gate.begin(test_user)

        assert decision.kind == LoginDecisionKind.CHALLENGE_REQUIRED
        assert decision.method == TwoFactorMethod.TOTP
        assert len(decision.nonce) == 32
        assert await nonce_cache.get(nonce_key(test_user.id)) == decision.nonce

    async def test_email_challenge_sends_code(self, service, test_user, sender):
        """Test that an e-mail challenge sends a fresh code"""
        await enable_email(service, test_user, sender)
        sent_before = len(sender.sent)

        decision = await service.login_gate.begin(test_user)

        assert decision.method == TwoFactorMethod.EMAIL
        assert len(sender.sent) == sent_before + 1

    async def test_trusted_device_bypasses_challenge(self, service, test_user, clock):
        """Test that a trusted device skips the challenge"""
        await enable_totp(service, test_user, clock)
        token = await service.devices.trust(test_user.id, 30)

        decision = await service.login_gate.begin(test_user, device_token=token)
        assert decision.allowed is True

    async def test_expired_device_does_not_bypass(self, service, test_user, clock):
        """Test that an expired device token no longer skips the challenge"""
        await enable_totp(service, test_user, clock)
        token = await service.devices.trust(test_user.id, 30)
        clock.advance(days=30)

        decision = await service.login_gate.begin(test_user, device_token=token)
        assert decision.allowed is False


class TestVerify:
    async def test_totp_success(self, service, test_user, clock, events, nonce_cache):
        """Test a successful TOTP verification"""
        secret, _ = await enable_totp(service, test_user, clock)
        decision = await service.login_gate.begin(test_user)
        code = service.totp.generate(secret, to_unix(clock()))

        outcome = await service.login_gate.verify(test_user.id, decision.nonce, code)

        assert outcome.method == TwoFactorMethod.TOTP
        assert outcome.used_backup_code is False
        assert outcome.device_token is None
        assert await nonce_cache.get(nonce_key(test_user.id)) is None
        assert events.names[-1] == "second_factor_confirmed"

        status = await service.registry.status(test_user)
        assert status.last_used_at == clock.now

    async def test_nonce_checked_before_code(self, service, test_user, clock):
        """Test that a bad nonce is rejected before any code is spent"""
        _, backup_codes = await enable_totp(service, test_user, clock)
        await service.login_gate.begin(test_user)

        with pytest.raises(InvalidSessionError):
            await service.login_gate.verify(test_user.id, "x" * 32, backup_codes[0])

        # The backup code was not spent by the rejected request
        assert await service.backup_codes.counts(test_user.id) == (10, 10)

    async def test_nonce_is_single_use(self, service, test_user, clock):
        """Test that a nonce cannot complete two logins"""
        secret, _ = await enable_totp(service, test_user, clock)
        decision = await service.login_gate.begin(test_user)
        code = service.totp.generate(secret, to_unix(clock()))
        await service.login_gate.verify(test_user.id, decision.nonce, code)

        with pytest.raises(InvalidSessionError):
            await service.login_gate.verify(test_user.id, decision.nonce, code)

    async def test_nonce_expires(self, service, test_user, clock, nonce_cache):
        """Test that an expired nonce is rejected"""
        secret, _ = await enable_totp(service, test_user, clock)
        decision = await service.login_gate.begin(test_user)
        await nonce_cache.delete(nonce_key(test_user.id))

        with pytest.raises(InvalidSessionError):
            await service.login_gate.verify(
                test_user.id, decision.nonce, service.totp.generate(secret, to_unix(clock()))
            )

    async def test_wrong_code(self, service, test_user, clock, nonce_cache):
        """Test that a wrong code keeps the login open"""
        secret, _ = await enable_totp(service, test_user, clock)
        decision = await service.login_gate.begin(test_user)
        code = service.totp.generate(secret, to_unix(clock()) + 600)

        with pytest.raises(InvalidVerificationCodeError):
            await service.login_gate.verify(test_user.id, decision.nonce, code)

        # A failed attempt leaves the login open for another try
        assert await nonce_cache.get(nonce_key(test_user.id)) == decision.nonce

    async def test_backup_code_fallback(self, service, test_user, clock):
        """Test that a backup code completes a TOTP login"""
        _, backup_codes = await enable_totp(service, test_user, clock)
        decision = await service.login_gate.begin(test_user)

        outcome = await service.login_gate.verify(test_user.id, decision.nonce, backup_codes[0])

        assert outcome.used_backup_code is True
        assert await service.backup_codes.counts(test_user.id) == (10, 9)

    async def test_backup_code_fallback_for_email(self, service, test_user, sender):
        """Test that a backup code completes an e-mail login"""
        backup_codes = await enable_email(service, test_user, sender)
        decision = await service.login_gate.begin(test_user)

        outcome = await service.login_gate.verify(test_user.id, decision.nonce, backup_codes[1])
        assert outcome.used_backup_code is True

    async def test_email_code(self, service, test_user, sender):
        """Test that the e-mailed code completes the login"""
        await enable_email(service, test_user, sender)
        decision = await service.login_gate.begin(test_user)

        outcome = await service.login_gate.verify(test_user.id, decision.nonce, sender.last_code)
        assert outcome.method == TwoFactorMethod.EMAIL

    async def test_trust_device_uses_policy_days(self, service, test_user, clock):
        """Test that device trust lasts the policy's trust_days"""
        secret, _ = await enable_totp(service, test_user, clock)
        await service.policy.update({"trust_days": 7})
        decision = await service.login_gate.begin(test_user)
        code = service.totp.generate(secret, to_unix(clock()))

        outcome = await service.login_gate.verify(
            test_user.id, decision.nonce, code, trust_device=True, device=DeviceInfo.from_user_agent("Firefox")
        )

        [device] = await service.devices.list(test_user.id)
        assert outcome.device_token
        assert (device.trusted_until - clock.now).days == 7
        assert device.browser == "Firefox"

    async def test_factor_removed_mid_login(self, service, test_user, clock):
        """Test verifying after the factor was disabled mid-login"""
        await enable_totp(service, test_user, clock)
        decision = await service.login_gate.begin(test_user)
        await service.registry.disable(test_user, "testpassword")

        with pytest.raises(TwoFactorNotSetUpError):
            await service.login_gate.verify(test_user.id, decision.nonce, "123456")

    async def test_concurrent_verifications_single_winner(
        self, service, session_factory, test_user, clock, sender, nonce_cache
    ):
        """Test that two verifications of one login succeed exactly once"""
        secret, _ = await enable_totp(service, test_user, clock)
        decision = await service.login_gate.begin(test_user)
        code = service.totp.generate(secret, to_unix(clock()))

        async with session_factory() as first, session_factory() as second:
            gates = [
                TwoFactorService(db, sender, nonce_cache, clock=clock, listeners=[]).login_gate
                for db in (first, second)
            ]
            results = await asyncio.gather(
                *(gate.verify(test_user.id, decision.nonce, code) for gate in gates),
                return_exceptions=True,
            )

        failures = [result for result in results if isinstance(result, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], InvalidSessionError)

    async def test_losing_backup_code_login_keeps_code(
        self, service, session_factory, test_user, clock, sender, nonce_cache
    ):
        """A backup code submitted to a login that another request finished stays unused."""
        secret, backup_codes = await enable_totp(service, test_user, clock)
        decision = await service.login_gate.begin(test_user)
        totp_code = service.totp.generate(secret, to_unix(clock()))

        async with session_factory() as first, session_factory() as second:
            totp_gate, backup_gate = (
                TwoFactorService(db, sender, nonce_cache, clock=clock, listeners=[]).login_gate
                for db in (first, second)
            )
            results = await asyncio.gather(
                totp_gate.verify(test_user.id, decision.nonce, totp_code),
                backup_gate.verify(test_user.id, decision.nonce, backup_codes[0]),
                return_exceptions=True,
            )

        failures = [result for result in results if isinstance(result, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], InvalidSessionError)

        async with session_factory() as db:
            counts = await TwoFactorService(db, sender, nonce_cache, clock=clock, listeners=[]).backup_codes.counts(
                test_user.id
            )
        backup_login_failed = isinstance(results[1], Exception)
        assert counts == ((10, 10) if backup_login_failed else (10, 9))

    async def test_failed_backup_attempt_releases_nonce(self, service, test_user, clock, nonce_cache):
        """A wrong code hands the nonce back so the real code still completes the login."""
        _, backup_codes = await enable_totp(service, test_user, clock)
        decision = await service.login_gate.begin(test_user)

        with pytest.raises(InvalidVerificationCodeError):
            await service.login_gate.verify(test_user.id, decision.nonce, "ZZZZZZZZ")

        assert await nonce_cache.get(nonce_key(test_user.id)) == decision.nonce
        outcome = await service.login_gate.verify(test_user.id, decision.nonce, backup_codes[0])
        assert outcome.used_backup_code is True

    async def test_failed_attempt_does_not_clobber_newer_login(self, service, test_user, clock, nonce_cache):
        """A wrong code on an old login leaves a newer login's nonce in place."""
        secret, _ = await enable_totp(service, test_user, clock)
        old = await service.login_gate.begin(test_user)
        newer_nonce = "n" * 32

        original_pop = nonce_cache.pop_if_match

        async def pop_then_new_login(key, value):
            claimed = await original_pop(key, value)
            await nonce_cache.set(key, newer_nonce, 300)
            return claimed

        nonce_cache.pop_if_match = pop_then_new_login
        wrong = service.totp.generate(secret, to_unix(clock()) + 600)
        with pytest.raises(InvalidVerificationCodeError):
            await service.login_gate.verify(test_user.id, old.nonce, wrong)

        assert await nonce_cache.get(nonce_key(test_user.id)) == newer_nonce


class TestResend:
    async def test_resend_requires_live_login(self, service, test_user, sender):
        """Test that resend needs a pending login"""
        await enable_email(service, test_user, sender)

        with pytest.raises(InvalidOperationError):
            await service.login_gate.resend(test_user)

    async def test_resend_issues_new_code(self, service, test_user, sender):
        """Test that resend sends a code that completes the login"""
        await enable_email(service, test_user, sender)
        decision = await service.login_gate.begin(test_user)
        sent_before = len(sender.sent)

        assert await service.login_gate.resend(test_user) == TwoFactorMethod.EMAIL
        assert len(sender.sent) == sent_before + 1

        outcome = await service.login_gate.verify(test_user.id, decision.nonce, sender.last_code)
        assert outcome.method == TwoFactorMethod.EMAIL

    async def test_resend_not_for_totp(self, service, test_user, clock):
        """Test that resend is refused for TOTP"""
        await enable_totp(service, test_user, clock)
        await service.login_gate.begin(test_user)

        with pytest.raises(InvalidOperationError):
            await service.login_gate.resend(test_user)


async def test_listener_failure_does_not_break_login(test_db, sender, nonce_cache, clock, test_user):
    """Test that a failing listener does not fail the login"""
    async def broken_listener(event):
        raise RuntimeError("audit store down")

    service = TwoFactorService(test_db, sender, nonce_cache, clock=clock, listeners=[broken_listener])
    secret, _ = await enable_totp(service, test_user, clock)
    decision = await service.login_gate.begin(test_user)

    outcome = await service.login_gate.verify(
        test_user.id, decision.nonce, service.totp.generate(secret, to_unix(clock()))
    )
    assert outcome.user_id == test_user.id
