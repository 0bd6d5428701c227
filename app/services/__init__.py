# app/services/__init__.py
import app.services.order_service  # noqa: F401  subscribes order completion to candidate result changes
