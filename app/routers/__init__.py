# app/routers/__init__.py
from fastapi import APIRouter

from .activity_router import router as activity_router
from .auth_router import router as auth_router
from .candidates_router import router as candidates_router
from .coupons_router import router as coupons_router
from .orders_router import router as orders_router
from .payments_router import router as payments_router
from .reviews_router import router as reviews_router

router = APIRouter(prefix="/api")

router.include_router(auth_router)
router.include_router(activity_router)
router.include_router(orders_router)
router.include_router(coupons_router)
router.include_router(candidates_router)
router.include_router(payments_router)
router.include_router(reviews_router)

__all__ = ["router"]
