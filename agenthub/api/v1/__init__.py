"""v1 API router."""

from fastapi import APIRouter

from agenthub.api.v1.app_exchange import router as app_exchange_router
from agenthub.api.v1.auth import router as auth_router
from agenthub.api.v1.me import router as me_router

router = APIRouter(prefix="/v1")

router.include_router(auth_router)          # /v1/auth/github
router.include_router(app_exchange_router)  # /v1/auth/app
router.include_router(me_router)            # /v1/me
