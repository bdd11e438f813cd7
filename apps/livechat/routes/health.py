from fastapi import APIRouter, Depends

from apps.livechat.services import LiveChatService, get_livechat_service

router = APIRouter()


@router.get("/health")
async def health(service: LiveChatService = Depends(get_livechat_service)):
    return {
        "status": "healthy",
        "service": "livechat",
        "connections": len(service.registry),
        "sweeper_running": service.sweeper.running,
    }
