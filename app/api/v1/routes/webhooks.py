from fastapi import APIRouter
from app.webhooks.stripe_handler import router as stripe_router

router = APIRouter()
router.include_router(stripe_router, prefix="", tags=["webhooks"])
