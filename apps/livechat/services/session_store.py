import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update, func, case, and_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from apps.livechat.exceptions import SessionConflict, SessionNotFound, DeliveryFailed
from apps.livechat.models import (
    ChatSession,
    ChatMessage,
    ChatDepartment,
    AdminChatStatus,
    AdminAvailability,
    SessionStatus,
    MessageType,
    OPEN_STATUSES,
)

logger = logging.getLogger(__name__)

OPEN_VALUES = [status.value for status in OPEN_STATUSES]


def _touched(now: datetime):
    """last_activity_at never moves backwards."""
    return case(
        (ChatSession.last_activity_at < now, now),
        else_=ChatSession.last_activity_at,
    )


class SessionStore:
    """Durable record of chat sessions and messages.

    Every state-changing write is a conditional UPDATE so that concurrent
    writers (other tasks, or other processes sharing the database) cannot
    produce lost updates.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    # Sessions

    async def create_session(
        self,
        user_id: str,
        subject: Optional[str],
        department: str,
        department_id: Optional[int] = None,
        priority: Optional[str] = None,
    ) -> ChatSession:
        session = ChatSession(
            user_id=user_id,
            subject=subject,
            department=department,
            department_id=department_id,
        )
        if priority:
            session.priority = priority

        async with self._session_factory() as db:
            db.add(session)
            try:
                await db.commit()
            except IntegrityError:
                # Partial unique index on (user_id) for open sessions
                await db.rollback()
                raise SessionConflict()
            await db.refresh(session)
            return session

    async def get_session(self, session_id: str) -> Optional[ChatSession]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ChatSession).where(ChatSession.id == session_id)
            )
            return result.scalar_one_or_none()

    async def get_open_session_for_user(self, user_id: str) -> Optional[ChatSession]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ChatSession).where(
                    and_(
                        ChatSession.user_id == user_id,
                        ChatSession.status.in_(OPEN_VALUES),
                    )
                )
            )
            return result.scalars().first()

    async def update_session(self, session_id: str, **values) -> ChatSession:
        """Update fields of an open session."""
        values["updated_at"] = datetime.utcnow()
        async with self._session_factory() as db:
            result = await db.execute(
                update(ChatSession)
                .where(
                    and_(
                        ChatSession.id == session_id,
                        ChatSession.status.in_(OPEN_VALUES),
                    )
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            if result.rowcount == 0:
                raise SessionNotFound(session_id=session_id)
        return await self.get_session(session_id)

    async def claim_session(self, session_id: str, admin_id: str) -> bool:
        """Compare-and-set assigned_admin_id from NULL to admin_id.

        Returns True when this call won the claim. The session moves to
        active in the same statement.
        """
        now = datetime.utcnow()
        async with self._session_factory() as db:
            result = await db.execute(
                update(ChatSession)
                .where(
                    and_(
                        ChatSession.id == session_id,
                        ChatSession.status == SessionStatus.WAITING.value,
                        ChatSession.assigned_admin_id.is_(None),
                    )
                )
                .values(
                    assigned_admin_id=admin_id,
                    status=SessionStatus.ACTIVE.value,
                    last_activity_at=_touched(now),
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount == 1

    async def end_session(self, session_id: str, reason: str) -> ChatSession:
        now = datetime.utcnow()
        async with self._session_factory() as db:
            result = await db.execute(
                update(ChatSession)
                .where(
                    and_(
                        ChatSession.id == session_id,
                        ChatSession.status.in_(OPEN_VALUES),
                    )
                )
                .values(
                    status=SessionStatus.ENDED.value,
                    end_reason=reason,
                    ended_at=now,
                    last_activity_at=_touched(now),
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            if result.rowcount == 0:
                raise SessionNotFound(session_id=session_id)
        return await self.get_session(session_id)

    async def touch_session(self, session_id: str, at: Optional[datetime] = None) -> bool:
        now = at or datetime.utcnow()
        async with self._session_factory() as db:
            result = await db.execute(
                update(ChatSession)
                .where(
                    and_(
                        ChatSession.id == session_id,
                        ChatSession.status.in_(OPEN_VALUES),
                    )
                )
                .values(last_activity_at=_touched(now), updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount == 1

    async def list_sessions(
        self, status: Optional[str] = None, limit: int = 100, offset: int = 0
    ) -> List[ChatSession]:
        query = select(ChatSession)
        if status == "open":
            query = query.where(ChatSession.status.in_(OPEN_VALUES))
        elif status:
            query = query.where(ChatSession.status == status)
        query = query.order_by(ChatSession.last_activity_at.desc()).offset(offset).limit(limit)

        async with self._session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def list_user_history(
        self, user_id: str, limit: int = 50, offset: int = 0
    ) -> List[ChatSession]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ChatSession)
                .where(ChatSession.user_id == user_id)
                .order_by(ChatSession.started_at.desc())
                .offset(offset)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def find_idle_sessions(self, cutoff: datetime) -> List[ChatSession]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ChatSession).where(
                    and_(
                        ChatSession.status.in_(OPEN_VALUES),
                        ChatSession.last_activity_at < cutoff,
                    )
                )
            )
            return list(result.scalars().all())

    async def count_sessions(self, status: str, since: Optional[datetime] = None) -> int:
        query = select(func.count()).select_from(ChatSession).where(ChatSession.status == status)
        if since is not None:
            query = query.where(ChatSession.updated_at >= since)
        async with self._session_factory() as db:
            result = await db.execute(query)
            return result.scalar_one()

    async def count_active_for_admin(self, admin_id: str) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                select(func.count())
                .select_from(ChatSession)
                .where(
                    and_(
                        ChatSession.assigned_admin_id == admin_id,
                        ChatSession.status == SessionStatus.ACTIVE.value,
                    )
                )
            )
            return result.scalar_one()

    # Messages

    async def insert_message(
        self,
        session_id: str,
        sender_id: str,
        message: str,
        is_from_admin: bool = False,
        message_type: str = MessageType.TEXT.value,
    ) -> ChatMessage:
        """Persist a message and touch its session in one transaction.

        Raises SessionNotFound if the session is unknown or no longer open,
        DeliveryFailed on any storage error. Nothing is written in either case.
        """
        now = datetime.utcnow()
        async with self._session_factory() as db:
            try:
                # Row lock on the session serializes writers for the same session
                touched = await db.execute(
                    update(ChatSession)
                    .where(
                        and_(
                            ChatSession.id == session_id,
                            ChatSession.status.in_(OPEN_VALUES),
                        )
                    )
                    .values(last_activity_at=_touched(now), updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if touched.rowcount == 0:
                    await db.rollback()
                    raise SessionNotFound(session_id=session_id)

                result = await db.execute(
                    select(func.coalesce(func.max(ChatMessage.seq), 0)).where(
                        ChatMessage.session_id == session_id
                    )
                )
                chat_message = ChatMessage(
                    session_id=session_id,
                    seq=result.scalar_one() + 1,
                    sender_id=sender_id,
                    is_from_admin=is_from_admin,
                    message=message,
                    message_type=message_type,
                    created_at=now,
                )
                db.add(chat_message)
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error(f"Failed to persist message for session {session_id}: {e}")
                raise DeliveryFailed(session_id=session_id) from e
            # Sessions are created with expire_on_commit=False; the row stays loaded
            return chat_message

    async def list_messages(self, session_id: str) -> List[ChatMessage]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ChatMessage)
                .where(ChatMessage.session_id == session_id)
                .order_by(ChatMessage.seq.asc())
            )
            return list(result.scalars().all())

    # Departments

    async def list_departments(self, active_only: bool = True) -> List[ChatDepartment]:
        query = select(ChatDepartment)
        if active_only:
            query = query.where(ChatDepartment.is_active == True)
        query = query.order_by(ChatDepartment.display_order.asc(), ChatDepartment.name.asc())
        async with self._session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def get_department(self, department_id: int) -> Optional[ChatDepartment]:
        async with self._session_factory() as db:
            return await db.get(ChatDepartment, department_id)

    async def create_department(self, name: str, **fields) -> ChatDepartment:
        department = ChatDepartment(name=name, **fields)
        async with self._session_factory() as db:
            db.add(department)
            await db.commit()
            await db.refresh(department)
            return department

    # Admin status

    async def get_admin_status(self, user_id: str) -> Optional[AdminChatStatus]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(AdminChatStatus).where(AdminChatStatus.user_id == user_id)
            )
            return result.scalar_one_or_none()

    async def upsert_admin_status(self, user_id: str, **fields) -> AdminChatStatus:
        fields = {key: value for key, value in fields.items() if value is not None}
        fields["last_activity_at"] = datetime.utcnow()
        async with self._session_factory() as db:
            result = await db.execute(
                select(AdminChatStatus).where(AdminChatStatus.user_id == user_id)
            )
            status = result.scalar_one_or_none()
            if status is None:
                status = AdminChatStatus(user_id=user_id, **fields)
                db.add(status)
            else:
                for field, value in fields.items():
                    setattr(status, field, value)
            try:
                await db.commit()
            except IntegrityError:
                # Lost an insert race for the same admin; the row exists now
                await db.rollback()
                return await self.upsert_admin_status(user_id, **fields)
            await db.refresh(status)
            return status

    async def list_available_admins(self) -> List[AdminChatStatus]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(AdminChatStatus)
                .where(AdminChatStatus.status == AdminAvailability.ONLINE.value)
                .order_by(AdminChatStatus.last_activity_at.desc())
            )
            return list(result.scalars().all())
