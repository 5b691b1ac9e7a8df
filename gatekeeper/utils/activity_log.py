"""
Audit trail writer for two-factor events.
"""

import json
import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from gatekeeper import database
from gatekeeper.models.activity_log import ActivityLog
from gatekeeper.utils.clock import utcnow

logger = logging.getLogger(__name__)


def serialize_details(details: dict | None) -> str | None:
    if not details:
        return None
    try:
        return json.dumps(details, sort_keys=True, default=str)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Activity details must be JSON-serializable: {e}") from e


async def log_activity(
    action: str,
    user_id: int,
    description: str,
    details: dict | None = None,
    timestamp: datetime | None = None,
) -> None:
    """
    Store one activity row in its own session.

    The caller's transaction is already committed when events are published,
    so a failed audit write is logged and does not undo the change itself.
    """
    row = ActivityLog(
        action=action,
        user_id=user_id,
        timestamp=timestamp or utcnow(),
        description=description,
        details=serialize_details(details),
    )
    try:
        async with database.AsyncSessionLocal() as session:
            session.add(row)
            await session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Failed to record activity '{action}' for user {user_id}: {e}")
