# Collector routers

from fastapi import APIRouter

from .metrics import router as metrics_router
from .realtime import router as realtime_router
from .services import router as services_router

router = APIRouter()
router.include_router(metrics_router)
router.include_router(services_router)
router.include_router(realtime_router)
