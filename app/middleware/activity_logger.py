# app/middleware/activity_logger.py
import logging
import time
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("app.activity")

class ActivityLoggerMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()

        # Call actual endpoint
        response = await call_next(request)

        # Only log modifying requests; get_current_user stores the user on request.state
        if request.method in ["POST", "PUT", "PATCH", "DELETE"]:
            user = getattr(request.state, "user", None)
            username = getattr(user, "username", None) or "anonymous"
            message = getattr(response, "activity_message", None) or f"Performed {request.method} on {request.url.path}"
            logger.info(
                "%s: %s -> %s (%.1f ms)",
                username, message, response.status_code, (time.perf_counter() - started) * 1000,
            )

        return response
