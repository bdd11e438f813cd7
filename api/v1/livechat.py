from fastapi import APIRouter
from apps.livechat.routes import chat, health, websocket

router = APIRouter()

# Include chat REST routes
router.include_router(chat.router, prefix="", tags=["Live Chat"])

# Include health route
router.include_router(health.router, prefix="", tags=["Health"])

# Include WebSocket routes
router.include_router(websocket.router, prefix="", tags=["WebSocket"])
