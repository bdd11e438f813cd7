# api/v1/router.py
from fastapi import APIRouter
from api.v1.livechat import router as livechat_router
from core.auth.routes import router as auth_router

router = APIRouter()

# Mount authentication router
router.include_router(auth_router, prefix="/auth", tags=["Authentication"])

# Mount the live chat app
router.include_router(livechat_router, prefix="/livechat")
