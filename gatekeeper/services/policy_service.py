"""
Two-Factor Policy Service

Administrator-managed policy stored as a single row. Until an administrator
saves it, defaults come from settings.
"""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.config import settings
from gatekeeper.exceptions import ValidationError
from gatekeeper.models.two_factor import TwoFactorPolicy
from gatekeeper.repositories.two_factor import PolicyRepository

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    "trust_days",
    "totp_enabled",
    "email_enabled",
    "sms_enabled",
    "grace_period_days",
    "required_roles",
)


def default_policy() -> TwoFactorPolicy:
    return TwoFactorPolicy(
        id=PolicyRepository.POLICY_ID,
        trust_days=settings.default_trust_days,
        totp_enabled=True,
        email_enabled=True,
        sms_enabled=False,
        grace_period_days=7,
        required_roles=[],
    )


class PolicyService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.policies = PolicyRepository(db)

    async def get(self) -> TwoFactorPolicy:
        """Stored policy, or an unsaved default instance."""
        policy = await self.policies.get()
        return policy if policy is not None else default_policy()

    async def update(self, changes: dict[str, Any]) -> TwoFactorPolicy:
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown policy fields: {', '.join(sorted(unknown))}")

        if "trust_days" in changes and changes["trust_days"] is not None and changes["trust_days"] < 1:
            raise ValidationError("trust_days must be at least 1", field="trust_days")

        policy = await self.policies.get()
        if policy is None:
            policy = default_policy()
            self.policies.add(policy)

        for key, value in changes.items():
            if value is not None:
                setattr(policy, key, value)

        if not policy.allowed_methods():
            await self.db.rollback()
            raise ValidationError("At least one two-factor method must stay enabled")

        await self.db.commit()
        await self.db.refresh(policy)
        logger.info(f"Two-factor policy updated: {sorted(changes)}")
        return policy
