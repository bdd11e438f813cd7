import logging
from functools import lru_cache
from typing import Optional
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from apps.livechat.services import LiveChatService, get_livechat_service
from core.auth.identity import JWTIdentityProvider

logger = logging.getLogger(__name__)

router = APIRouter()

# Close code for a connection whose token could not be resolved
WS_UNAUTHORIZED = 4401


@lru_cache()
def get_identity_provider() -> JWTIdentityProvider:
    from apps.livechat.db import AsyncSessionLocal

    return JWTIdentityProvider(AsyncSessionLocal)


def _bearer_token(websocket: WebSocket) -> Optional[str]:
    authorization = websocket.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials
    return None


@router.websocket("/ws")
async def livechat_websocket(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    service: LiveChatService = Depends(get_livechat_service),
    identity_provider: JWTIdentityProvider = Depends(get_identity_provider),
):
    """WebSocket endpoint for live support chat.

    The identity is resolved once here; every frame after that is handled by
    the message router on behalf of the registered connection.
    """
    identity = await identity_provider.resolve(token or _bearer_token(websocket))
    if identity is None:
        await websocket.close(code=WS_UNAUTHORIZED)
        return

    await websocket.accept()
    connection = service.connect(websocket, identity)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            # Binary frames go through the same envelope parsing as text
            data = message.get("text")
            if data is None:
                data = message.get("bytes") or b""
            await service.router.dispatch(connection, data)
    except WebSocketDisconnect as e:
        logger.info(f"Connection {connection.connection_id} disconnected ({e.code})")
    finally:
        await service.disconnect(connection)
