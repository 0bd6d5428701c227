# app/utils/cleanup.py
import logging
from typing import Awaitable, Callable, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

CleanupTask = Tuple[str, Callable[[], Awaitable[object]]]


async def run_cleanup(tasks: Sequence[CleanupTask], session: Optional[AsyncSession] = None) -> dict:
    """
    Run independent cleanup steps, each inside its own error boundary.

    A failing step is logged and recorded; the remaining steps still run.
    When a session is given it is rolled back after a failed step so the
    next step starts from a clean transaction.
    """
    succeeded: list[str] = []
    failed: list[dict] = []

    for name, task in tasks:
        try:
            await task()
            succeeded.append(name)
        except Exception as e:
            logger.exception("Cleanup step %s failed", name)
            failed.append({"task": name, "error": str(e)})
            if session is not None:
                await session.rollback()

    return {"succeeded": succeeded, "failed": failed}
