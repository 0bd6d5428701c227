from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import desc, asc, func
from app.models.activity_models import UserActivity
from typing import List, Optional, Tuple

SORT_COLUMNS = {
    "id": UserActivity.id,
    "username": UserActivity.username,
    "entity_type": UserActivity.entity_type,
    "created_at": UserActivity.created_at,
}

async def get_user_activities(
    db: AsyncSession,
    user_id: Optional[int] = None,
    username: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    page: int = 1,
    page_size: int = 20,
    sort_by: str = "created_at",
    order: str = "desc"
) -> Tuple[int, List[UserActivity]]:
    """
    Audit trail of order, coupon, payment and review actions.

    ``entity_type``/``entity_id`` narrow it to one record's history, e.g. every
    status change of a single order. Returns the total count and one page.
    """
    filters = []
    if user_id:
        filters.append(UserActivity.user_id == user_id)
    if username:
        filters.append(UserActivity.username.ilike(f"%{username}%"))
    if entity_type:
        filters.append(UserActivity.entity_type == entity_type.lower())
    if entity_id is not None:
        filters.append(UserActivity.entity_id == entity_id)

    total = (await db.execute(select(func.count(UserActivity.id)).where(*filters))).scalar() or 0

    sort_column = SORT_COLUMNS.get(sort_by, UserActivity.created_at)
    direction = asc if order.lower() == "asc" else desc
    result = await db.execute(
        select(UserActivity)
        .where(*filters)
        .order_by(direction(sort_column), direction(UserActivity.id))
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return total, result.scalars().all()
