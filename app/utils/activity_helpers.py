from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from app.models.activity_models import UserActivity

async def log_user_activity(
    db: AsyncSession,
    user_id: Optional[int] = None,
    username: Optional[str] = None,
    message: str = "",
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
) -> UserActivity:
    """
    Stage an audit entry on the caller's session; it is written with the caller's commit.
    """
    activity = UserActivity(
        user_id=user_id,
        username=username or "system",
        message=message,
        entity_type=entity_type,
        entity_id=entity_id,
    )
    db.add(activity)
    return activity
