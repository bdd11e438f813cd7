from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status

from apps.livechat.exceptions import NotAParticipant, SessionNotFound
from apps.livechat.models import ChatSession, SessionStatus, AdminAvailability
from apps.livechat.schemas import (
    AdminStatsResponse,
    AdminStatusResponse,
    AdminStatusUpdate,
    AvailabilityResponse,
    ChatDepartmentResponse,
    ChatMessageResponse,
    ChatSessionResponse,
    SessionWithMessagesResponse,
    StartSessionRequest,
)
from apps.livechat.services import LiveChatService, get_livechat_service
from core.auth.dependencies import get_current_identity, require_admin
from core.auth.identity import Identity

router = APIRouter()


async def _with_messages(service: LiveChatService, session: Optional[ChatSession]) -> SessionWithMessagesResponse:
    if session is None:
        return SessionWithMessagesResponse()
    messages = await service.store.list_messages(session.id)
    return SessionWithMessagesResponse(
        session=ChatSessionResponse.model_validate(session),
        messages=[ChatMessageResponse.model_validate(m) for m in messages],
    )


async def _visible_session(service: LiveChatService, identity: Identity, session_id: str) -> ChatSession:
    """A session the caller may read: their own, or any session for admins."""
    session = await service.store.get_session(session_id)
    if session is None:
        raise SessionNotFound(session_id=session_id)
    if not identity.is_admin and session.user_id != identity.user_id:
        raise NotAParticipant(session_id=session_id)
    return session


# Client endpoints

@router.get("/session", response_model=SessionWithMessagesResponse)
async def get_current_session(
    identity: Identity = Depends(get_current_identity),
    service: LiveChatService = Depends(get_livechat_service)
):
    """Open chat session of the caller with its messages, or an empty body."""
    session = await service.store.get_open_session_for_user(identity.user_id)
    return await _with_messages(service, session)


@router.post("/session", response_model=ChatSessionResponse, status_code=status.HTTP_201_CREATED)
async def start_session(
    request: StartSessionRequest,
    identity: Identity = Depends(get_current_identity),
    service: LiveChatService = Depends(get_livechat_service)
):
    """
    Start a chat session

    - **subject**: Optional subject, defaults to the configured one
    - **department**: Optional department name
    - **departmentId**: Optional department id
    """
    session = await service.manager.start_session(
        identity,
        subject=request.subject,
        department=request.department,
        department_id=request.department_id,
    )
    return ChatSessionResponse.model_validate(session)


@router.delete("/session", response_model=ChatSessionResponse)
async def end_current_session(
    identity: Identity = Depends(get_current_identity),
    service: LiveChatService = Depends(get_livechat_service)
):
    session = await service.store.get_open_session_for_user(identity.user_id)
    if session is None:
        raise SessionNotFound("No open chat session to end")
    session = await service.manager.end_session(identity, session.id)
    return ChatSessionResponse.model_validate(session)


@router.get("/messages", response_model=List[ChatMessageResponse])
async def get_messages(
    session_id: Optional[str] = Query(None, alias="sessionId"),
    identity: Identity = Depends(get_current_identity),
    service: LiveChatService = Depends(get_livechat_service)
):
    """Messages of the given session, or of the caller's open session, in creation order."""
    if session_id:
        session = await _visible_session(service, identity, session_id)
    else:
        session = await service.store.get_open_session_for_user(identity.user_id)
        if session is None:
            return []
    messages = await service.store.list_messages(session.id)
    return [ChatMessageResponse.model_validate(m) for m in messages]


@router.get("/history", response_model=List[ChatSessionResponse])
async def get_history(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    identity: Identity = Depends(get_current_identity),
    service: LiveChatService = Depends(get_livechat_service)
):
    sessions = await service.store.list_user_history(identity.user_id, limit=limit, offset=offset)
    return [ChatSessionResponse.model_validate(s) for s in sessions]


@router.get("/history/{session_id}", response_model=SessionWithMessagesResponse)
async def get_history_session(
    session_id: str,
    identity: Identity = Depends(get_current_identity),
    service: LiveChatService = Depends(get_livechat_service)
):
    session = await _visible_session(service, identity, session_id)
    return await _with_messages(service, session)


@router.get("/departments", response_model=List[ChatDepartmentResponse])
async def get_departments(service: LiveChatService = Depends(get_livechat_service)):
    departments = await service.store.list_departments()
    return [ChatDepartmentResponse.model_validate(d) for d in departments]


# Public endpoints

@router.get("/availability", response_model=AvailabilityResponse)
async def get_availability(service: LiveChatService = Depends(get_livechat_service)):
    """Whether any admin is online to take a chat."""
    admins = await service.store.list_available_admins()
    return AvailabilityResponse(
        available=bool(admins),
        admin_count=len(admins),
        status_message="Support is online" if admins else "Support is currently offline",
        last_updated=datetime.utcnow(),
    )


# Admin endpoints

@router.get("/admin/sessions", response_model=List[ChatSessionResponse])
async def list_sessions(
    session_status: Optional[str] = Query(None, alias="status", pattern="^(open|waiting|active|ended)$"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    admin: Identity = Depends(require_admin),
    service: LiveChatService = Depends(get_livechat_service)
):
    """
    List chat sessions, most recently active first

    - **status**: open, waiting, active or ended
    """
    sessions = await service.store.list_sessions(session_status, limit=limit, offset=offset)
    return [ChatSessionResponse.model_validate(s) for s in sessions]


@router.get("/admin/sessions/active", response_model=List[ChatSessionResponse])
async def list_open_sessions(
    admin: Identity = Depends(require_admin),
    service: LiveChatService = Depends(get_livechat_service)
):
    sessions = await service.store.list_sessions("open", limit=500)
    return [ChatSessionResponse.model_validate(s) for s in sessions]


@router.get("/admin/sessions/{session_id}", response_model=SessionWithMessagesResponse)
async def get_session_detail(
    session_id: str,
    admin: Identity = Depends(require_admin),
    service: LiveChatService = Depends(get_livechat_service)
):
    session = await _visible_session(service, admin, session_id)
    return await _with_messages(service, session)


@router.post("/admin/sessions/{session_id}/assign", response_model=ChatSessionResponse)
async def claim_session(
    session_id: str,
    admin: Identity = Depends(require_admin),
    service: LiveChatService = Depends(get_livechat_service)
):
    session = await service.manager.claim_session(admin, session_id)
    return ChatSessionResponse.model_validate(session)


@router.delete("/admin/sessions/{session_id}", response_model=ChatSessionResponse)
async def end_session(
    session_id: str,
    admin: Identity = Depends(require_admin),
    service: LiveChatService = Depends(get_livechat_service)
):
    session = await service.manager.end_session(admin, session_id)
    return ChatSessionResponse.model_validate(session)


@router.get("/admin/status", response_model=AdminStatusResponse)
async def get_admin_status(
    admin: Identity = Depends(require_admin),
    service: LiveChatService = Depends(get_livechat_service)
):
    current = await service.store.get_admin_status(admin.user_id)
    if current is None:
        return AdminStatusResponse(
            user_id=admin.user_id,
            status=AdminAvailability.OFFLINE.value,
            max_concurrent_chats=5,
            auto_assign=True,
            last_activity_at=datetime.utcnow(),
        )
    return AdminStatusResponse.model_validate(current)


@router.post("/admin/status", response_model=AdminStatusResponse)
async def update_admin_status(
    update: AdminStatusUpdate,
    admin: Identity = Depends(require_admin),
    service: LiveChatService = Depends(get_livechat_service)
):
    current = await service.store.upsert_admin_status(
        admin.user_id,
        status=update.status,
        status_message=update.status_message,
        max_concurrent_chats=update.max_concurrent_chats,
        auto_assign=update.auto_assign,
    )
    service.manager.broadcast_admin_status(current)
    return AdminStatusResponse.model_validate(current)


@router.get("/admin/available", response_model=List[AdminStatusResponse])
async def list_available_admins(
    admin: Identity = Depends(require_admin),
    service: LiveChatService = Depends(get_livechat_service)
):
    admins = await service.store.list_available_admins()
    return [AdminStatusResponse.model_validate(a) for a in admins]


@router.get("/admin/stats", response_model=AdminStatsResponse)
async def get_admin_stats(
    admin: Identity = Depends(require_admin),
    service: LiveChatService = Depends(get_livechat_service)
):
    today = datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    return AdminStatsResponse(
        active_sessions=await service.store.count_sessions(SessionStatus.ACTIVE.value),
        waiting_sessions=await service.store.count_sessions(SessionStatus.WAITING.value),
        assigned_to_me=await service.store.count_active_for_admin(admin.user_id),
        ended_today=await service.store.count_sessions(SessionStatus.ENDED.value, since=today),
        live_connections=len(service.registry),
    )
