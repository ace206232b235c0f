"""Activity log writer."""

from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from postscan.db.database import get_db_session
from postscan.db.models import Activity, ActionType

logger = structlog.get_logger(__name__)


async def log_activity(
    action_type: ActionType,
    title: str,
    description: Optional[str] = None,
    details: Optional[dict] = None,
) -> None:
    """Log an activity. Failures are reported but never interrupt the caller."""
    try:
        async with get_db_session() as db:
            db.add(Activity(
                action_type=action_type,
                title=title,
                description=description,
                details=details,
            ))
            await db.commit()
    except SQLAlchemyError as e:
        logger.warning("Failed to record activity", action_type=action_type.value, error=str(e))
