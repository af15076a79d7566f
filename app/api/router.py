from fastapi import APIRouter

from app.api.endpoints import payments, prescriptions, webhooks
from app.api.endpoints.admin import refills as admin_refills

router = APIRouter()

router.include_router(payments.router)
router.include_router(prescriptions.router)
router.include_router(webhooks.router)

router.include_router(admin_refills.router)
