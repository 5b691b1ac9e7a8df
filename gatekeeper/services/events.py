"""
Two-Factor Events

Security-relevant state changes are published as `TwoFactorEvent` values to
a list of async listeners. Listeners run after the change is committed; a
failing listener is logged and never affects the outcome of the operation.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from gatekeeper.utils.activity_log import log_activity

logger = logging.getLogger(__name__)

SECOND_FACTOR_CONFIRMED = "second_factor_confirmed"
TWO_FACTOR_ENABLED = "two_factor_enabled"
TWO_FACTOR_DISABLED = "two_factor_disabled"
BACKUP_CODES_REGENERATED = "backup_codes_regenerated"
TRUSTED_DEVICE_REVOKED = "trusted_device_revoked"

DESCRIPTIONS = {
    SECOND_FACTOR_CONFIRMED: "Second factor verified at login",
    TWO_FACTOR_ENABLED: "Two-factor authentication enabled",
    TWO_FACTOR_DISABLED: "Two-factor authentication disabled",
    BACKUP_CODES_REGENERATED: "Backup codes regenerated",
    TRUSTED_DEVICE_REVOKED: "Trusted device revoked",
}


@dataclass(frozen=True)
class TwoFactorEvent:
    name: str
    user_id: int
    method: str | None
    occurred_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


EventListener = Callable[[TwoFactorEvent], Awaitable[None]]


async def publish(listeners: list[EventListener], event: TwoFactorEvent) -> None:
    for listener in listeners:
        try:
            await listener(event)
        except Exception:
            logger.exception(f"Two-factor event listener failed for {event.name} (user {event.user_id})")


async def audit_log_listener(event: TwoFactorEvent) -> None:
    """Persist the event as an activity log row."""
    details = dict(event.details)
    if event.method:
        details["method"] = event.method
    await log_activity(
        action=event.name,
        user_id=event.user_id,
        description=DESCRIPTIONS.get(event.name, event.name),
        details=details or None,
        timestamp=event.occurred_at,
    )
