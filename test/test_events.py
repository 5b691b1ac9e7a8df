"""
Tests for two-factor event publishing and the audit listener.
"""

import json

from sqlalchemy.future import select

from gatekeeper.models.activity_log import ActivityLog
from gatekeeper.services.events import TWO_FACTOR_ENABLED, TwoFactorEvent, audit_log_listener, publish


def make_event(user_id: int, occurred_at) -> TwoFactorEvent:
    return TwoFactorEvent(
        name=TWO_FACTOR_ENABLED,
        user_id=user_id,
        method="totp",
        occurred_at=occurred_at,
        details={"backup_codes": 10},
    )


async def test_audit_listener_writes_activity_log(test_db, test_user, clock):
    """Test that the audit listener stores an activity log row"""
    await audit_log_listener(make_event(test_user.id, clock()))

    result = await test_db.execute(select(ActivityLog).where(ActivityLog.user_id == test_user.id))
    log = result.scalars().one()
    assert log.action == "two_factor_enabled"
    assert log.description == "Two-factor authentication enabled"
    assert log.timestamp == clock.now
    assert json.loads(log.details) == {"backup_codes": 10, "method": "totp"}


async def test_failing_listener_does_not_stop_others(test_user, clock):
    """Test that one failing listener does not block the rest"""
    received = []

    async def broken(event):
        raise RuntimeError("listener down")

    async def recorder(event):
        received.append(event.name)

    await publish([broken, recorder], make_event(test_user.id, clock()))

    assert received == ["two_factor_enabled"]
