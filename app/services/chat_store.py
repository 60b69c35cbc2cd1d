"""SQLAlchemy implementation of the durable chat store."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, Sequence

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from app.database import SessionLocal
from app.models import (
    Chat,
    ChatMessage,
    ChatParticipant,
    MessageReaction,
    MessageRead,
    MessageType,
    ParticipantRole,
    PinnedMessage,
    PresenceStatus,
    RoomStatus,
    RoomType,
    User,
    default_room_settings,
)
from eventconnect.realtime.errors import NotFoundError, PersistenceError
from eventconnect.realtime.store import MessageRecord, RoomRecord

logger = logging.getLogger(__name__)

_SETTINGS_SECTIONS = ("notifications", "privacy", "moderation")


def _room_record(chat: Chat) -> RoomRecord:
    participants = sorted(chat.participants, key=lambda item: item.id)
    return RoomRecord(
        id=chat.id,
        type=chat.type,
        participant_ids=[participant.user_id for participant in participants],
        name=chat.name,
        description=chat.description,
        is_private=chat.is_private,
        owner_id=chat.owner_id,
        roles={participant.user_id: participant.role for participant in participants},
        status=chat.status,
        settings=dict(chat.settings or {}),
    )


def _message_record(message: ChatMessage, read_by: Sequence[int] = ()) -> MessageRecord:
    return MessageRecord(
        id=message.id,
        room_id=message.chat_id,
        sender_id=message.sender_id,
        content=message.content,
        message_type=message.message_type,
        created_at=message.created_at,
        reply_to=message.reply_to_id,
        attachments=list(message.attachments or []),
        read_by=list(read_by),
    )


class SQLAlchemyChatStore:
    """Chat store backed by the relational schema in :mod:`app.models`.

    Each call opens its own short-lived session.  Database failures surface
    as :class:`PersistenceError`; unknown rooms, messages and users as
    :class:`NotFoundError`.
    """

    def __init__(self, session_factory: sessionmaker[Session] = SessionLocal) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self, action: str) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("Database error while trying to %s", action, exc_info=logger.isEnabledFor(logging.DEBUG))
            raise PersistenceError(f"Unable to {action}") from exc
        finally:
            db.close()

    @staticmethod
    def _load_chat(db: Session, room_id: int) -> Chat:
        stmt = select(Chat).options(selectinload(Chat.participants)).where(Chat.id == room_id)
        chat = db.execute(stmt).scalar_one_or_none()
        if chat is None:
            raise NotFoundError(f"Chat {room_id} not found")
        return chat

    @staticmethod
    def _load_message(db: Session, room_id: int, message_id: int) -> ChatMessage:
        message = db.get(ChatMessage, message_id)
        if message is None or message.chat_id != room_id:
            raise NotFoundError(f"Message {message_id} not found in chat {room_id}")
        return message

    @staticmethod
    def _ensure_users(db: Session, user_ids: Sequence[int]) -> None:
        wanted = set(user_ids)
        if not wanted:
            return
        found = set(db.execute(select(User.id).where(User.id.in_(wanted))).scalars())
        missing = sorted(wanted - found)
        if missing:
            raise NotFoundError(f"Unknown user(s): {', '.join(str(item) for item in missing)}")

    async def get_room(self, room_id: int) -> RoomRecord:
        with self._session("load chat") as db:
            return _room_record(self._load_chat(db, room_id))

    async def participants(self, room_id: int) -> list[int]:
        return (await self.get_room(room_id)).participant_ids

    async def rooms_for_user(self, user_id: int) -> list[int]:
        stmt = (
            select(ChatParticipant.chat_id)
            .join(Chat, Chat.id == ChatParticipant.chat_id)
            .where(ChatParticipant.user_id == user_id, Chat.status == RoomStatus.ACTIVE)
            .order_by(ChatParticipant.chat_id)
        )
        with self._session("load chats of user") as db:
            return list(db.execute(stmt).scalars())

    async def append_message(
        self,
        room_id: int,
        sender_id: int,
        *,
        content: str,
        message_type: MessageType,
        reply_to: int | None,
        attachments: Sequence[dict[str, Any]],
    ) -> MessageRecord:
        with self._session("store message") as db:
            if reply_to is not None:
                self._load_message(db, room_id, reply_to)
            message = ChatMessage(
                chat_id=room_id,
                sender_id=sender_id,
                content=content,
                message_type=message_type,
                reply_to_id=reply_to,
                attachments=list(attachments),
                created_at=datetime.now(timezone.utc),
            )
            db.add(message)
            db.flush()
            db.add(MessageRead(message_id=message.id, user_id=sender_id))
            db.flush()
            record = _message_record(message, read_by=[sender_id])
            db.commit()
            return record

    async def update_last_activity(self, room_id: int, message: MessageRecord) -> None:
        with self._session("update chat activity") as db:
            chat = db.get(Chat, room_id)
            if chat is None:
                raise NotFoundError(f"Chat {room_id} not found")
            chat.last_activity_at = message.created_at
            chat.last_message_content = message.content
            chat.last_message_sender_id = message.sender_id
            chat.last_message_type = message.message_type
            chat.last_message_at = message.created_at
            db.commit()

    async def mark_read(self, room_id: int, user_id: int, message_ids: Sequence[int]) -> list[int]:
        """Record read receipts; return the ids newly marked as read."""
        wanted = set(message_ids)
        with self._session("mark messages as read") as db:
            existing_ids = set(
                db.execute(
                    select(ChatMessage.id).where(ChatMessage.chat_id == room_id, ChatMessage.id.in_(wanted))
                ).scalars()
            )
            already_read = set(
                db.execute(
                    select(MessageRead.message_id).where(
                        MessageRead.user_id == user_id, MessageRead.message_id.in_(existing_ids)
                    )
                ).scalars()
            )
            marked = sorted(existing_ids - already_read)
            for message_id in marked:
                db.add(MessageRead(message_id=message_id, user_id=user_id))
            db.commit()
            return marked

    async def set_reaction(self, room_id: int, message_id: int, user_id: int, reaction: str) -> None:
        with self._session("update reaction") as db:
            self._load_message(db, room_id, message_id)
            stmt = select(MessageReaction).where(
                MessageReaction.message_id == message_id, MessageReaction.user_id == user_id
            )
            existing = db.execute(stmt).scalar_one_or_none()
            if existing is None:
                db.add(MessageReaction(message_id=message_id, user_id=user_id, reaction=reaction))
            else:
                existing.reaction = reaction
            db.commit()

    async def set_pinned(self, room_id: int, message_id: int, user_id: int, pinned: bool) -> None:
        with self._session("update pinned messages") as db:
            self._load_message(db, room_id, message_id)
            stmt = select(PinnedMessage).where(
                PinnedMessage.chat_id == room_id, PinnedMessage.message_id == message_id
            )
            existing = db.execute(stmt).scalar_one_or_none()
            if pinned and existing is None:
                db.add(PinnedMessage(chat_id=room_id, message_id=message_id, pinned_by_id=user_id))
            elif not pinned and existing is not None:
                db.delete(existing)
            db.commit()

    async def search_messages(self, room_id: int, query: str, limit: int) -> list[MessageRecord]:
        """Most recent *limit* messages whose content or sender id matches *query*, oldest first."""
        term = query.strip()
        condition = ChatMessage.content.icontains(term, autoescape=True)
        if term.isdigit():
            condition = or_(condition, ChatMessage.sender_id == int(term))
        stmt = (
            select(ChatMessage)
            .where(ChatMessage.chat_id == room_id, condition)
            .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
            .limit(limit)
        )
        with self._session("search messages") as db:
            self._load_chat(db, room_id)
            messages = list(db.execute(stmt).scalars())
            return [_message_record(message) for message in reversed(messages)]

    async def create_room(
        self,
        owner_id: int,
        *,
        room_type: RoomType,
        participant_ids: Sequence[int],
        name: str | None,
        description: str | None,
        is_private: bool,
    ) -> RoomRecord:
        members = [owner_id, *(user_id for user_id in dict.fromkeys(participant_ids) if user_id != owner_id)]
        with self._session("create chat") as db:
            self._ensure_users(db, members)
            chat = Chat(
                type=room_type,
                name=name,
                description=description,
                is_private=is_private or room_type == RoomType.PRIVATE,
                owner_id=owner_id,
                settings=default_room_settings(),
                last_activity_at=datetime.now(timezone.utc),
            )
            db.add(chat)
            db.flush()
            for user_id in members:
                role = ParticipantRole.ADMIN if user_id == owner_id else ParticipantRole.MEMBER
                db.add(ChatParticipant(chat_id=chat.id, user_id=user_id, role=role))
            db.commit()
            return _room_record(self._load_chat(db, chat.id))

    async def add_participant(self, room_id: int, user_id: int) -> bool:
        with self._session("add participant") as db:
            chat = self._load_chat(db, room_id)
            self._ensure_users(db, [user_id])
            if any(participant.user_id == user_id for participant in chat.participants):
                return False
            db.add(ChatParticipant(chat_id=room_id, user_id=user_id, role=ParticipantRole.MEMBER))
            db.commit()
            return True

    async def remove_participant(self, room_id: int, user_id: int) -> bool:
        with self._session("remove participant") as db:
            self._load_chat(db, room_id)
            result = db.execute(
                delete(ChatParticipant).where(
                    ChatParticipant.chat_id == room_id, ChatParticipant.user_id == user_id
                )
            )
            db.commit()
            return bool(result.rowcount)

    async def update_settings(self, room_id: int, changes: dict[str, Any]) -> dict[str, Any]:
        with self._session("update chat settings") as db:
            chat = self._load_chat(db, room_id)
            for column in ("name", "description", "is_private"):
                if column in changes and changes[column] is not None:
                    setattr(chat, column, changes[column])
            settings = {
                section: dict(values) for section, values in (chat.settings or default_room_settings()).items()
            }
            for section in _SETTINGS_SECTIONS:
                if changes.get(section):
                    settings.setdefault(section, {}).update(changes[section])
            chat.settings = settings
            db.commit()
            return {
                "name": chat.name,
                "description": chat.description,
                "is_private": chat.is_private,
                "settings": settings,
            }

    async def update_user_status(self, user_id: int, status: str) -> None:
        with self._session("update user presence") as db:
            user = db.get(User, user_id)
            if user is None:
                raise NotFoundError(f"User {user_id} not found")
            user.presence = PresenceStatus(status)
            user.last_seen_at = datetime.now(timezone.utc)
            db.commit()
