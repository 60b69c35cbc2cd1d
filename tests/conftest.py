"""Shared pytest fixtures for the realtime chat tests."""

from __future__ import annotations

import itertools
from datetime import datetime, timezone
from typing import Any, Iterator, Sequence

import pytest
from fastapi.testclient import TestClient
from fastapi.websockets import WebSocketState
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.models import Base, ParticipantRole, RoomStatus, RoomType
from app.monitoring.registry import registry as metrics_registry
from app.services.cache import InMemoryPresenceCache
from app.services.realtime import create_chat_service
from eventconnect.realtime import ChatService
from eventconnect.realtime.errors import AuthenticationError, NotFoundError, PersistenceError
from eventconnect.realtime.store import MessageRecord, RoomRecord, UserProfile


class DummyWebSocket:
    def __init__(self) -> None:
        self.application_state = WebSocketState.CONNECTED
        self.client_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []
        self.fail = False

    async def send_json(self, payload: dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(payload)

    def kill(self) -> None:
        self.client_state = WebSocketState.DISCONNECTED

    def types(self) -> list[str]:
        return [payload["type"] for payload in self.sent]

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [payload for payload in self.sent if payload["type"] == event_type]


class FakeAuthenticator:
    """Accepts credentials of the form ``user-<id>``."""

    def __init__(self, users: dict[int, UserProfile]) -> None:
        self.users = users

    async def authenticate(self, credential: str) -> UserProfile:
        prefix, _, raw_id = credential.partition("-")
        if prefix != "user" or not raw_id.isdigit() or int(raw_id) not in self.users:
            raise AuthenticationError("Could not validate credentials")
        return self.users[int(raw_id)]


class FakeChatStore:
    """In-memory chat store honouring the store contract."""

    def __init__(self) -> None:
        self.rooms: dict[int, RoomRecord] = {}
        self.messages: list[MessageRecord] = []
        self.reads: dict[int, set[int]] = {}
        self.reactions: dict[tuple[int, int], str] = {}
        self.pins: set[tuple[int, int]] = set()
        self.statuses: list[tuple[int, str]] = []
        self.last_activity: dict[int, int] = {}
        self.fail_append = False
        self.fail_status = False
        self._room_ids = itertools.count(1000)
        self._message_ids = itertools.count(1)

    def add_room(
        self,
        room_id: int,
        participant_ids: Sequence[int],
        *,
        room_type: RoomType = RoomType.GROUP,
        owner_id: int | None = None,
        roles: dict[int, ParticipantRole] | None = None,
        status: RoomStatus = RoomStatus.ACTIVE,
    ) -> RoomRecord:
        room = RoomRecord(
            id=room_id,
            type=room_type,
            participant_ids=list(participant_ids),
            name=f"room-{room_id}",
            owner_id=owner_id,
            roles=dict(roles or {}),
            status=status,
        )
        self.rooms[room_id] = room
        return room

    async def get_room(self, room_id: int) -> RoomRecord:
        room = self.rooms.get(room_id)
        if room is None:
            raise NotFoundError(f"Chat {room_id} not found")
        return room

    async def participants(self, room_id: int) -> list[int]:
        return list((await self.get_room(room_id)).participant_ids)

    async def rooms_for_user(self, user_id: int) -> list[int]:
        return [room.id for room in self.rooms.values() if room.is_active and room.has_participant(user_id)]

    async def append_message(self, room_id, sender_id, *, content, message_type, reply_to, attachments):
        if self.fail_append:
            raise PersistenceError("disk full")
        record = MessageRecord(
            id=next(self._message_ids),
            room_id=room_id,
            sender_id=sender_id,
            content=content,
            message_type=message_type,
            created_at=datetime.now(timezone.utc),
            reply_to=reply_to,
            attachments=list(attachments),
            read_by=[sender_id],
        )
        self.messages.append(record)
        return record

    async def update_last_activity(self, room_id: int, message: MessageRecord) -> None:
        self.last_activity[room_id] = message.id

    async def mark_read(self, room_id, user_id, message_ids):
        marked = []
        for message in self.messages:
            if message.room_id == room_id and message.id in message_ids:
                readers = self.reads.setdefault(message.id, set())
                if user_id not in readers:
                    readers.add(user_id)
                    marked.append(message.id)
        return marked

    def _message(self, room_id: int, message_id: int) -> MessageRecord:
        for message in self.messages:
            if message.id == message_id and message.room_id == room_id:
                return message
        raise NotFoundError(f"Message {message_id} not found")

    async def set_reaction(self, room_id, message_id, user_id, reaction):
        self._message(room_id, message_id)
        self.reactions[(message_id, user_id)] = reaction

    async def set_pinned(self, room_id, message_id, user_id, pinned):
        self._message(room_id, message_id)
        if pinned:
            self.pins.add((room_id, message_id))
        else:
            self.pins.discard((room_id, message_id))

    async def search_messages(self, room_id, query, limit):
        needle = query.lower()
        found = [
            message
            for message in self.messages
            if message.room_id == room_id
            and (needle in message.content.lower() or str(message.sender_id) == query)
        ]
        return found[-limit:]

    async def create_room(self, owner_id, *, room_type, participant_ids, name, description, is_private):
        members = [owner_id, *[user_id for user_id in participant_ids if user_id != owner_id]]
        room = RoomRecord(
            id=next(self._room_ids),
            type=room_type,
            participant_ids=members,
            name=name,
            description=description,
            is_private=is_private,
            owner_id=owner_id,
            roles={owner_id: ParticipantRole.ADMIN},
        )
        self.rooms[room.id] = room
        return room

    async def add_participant(self, room_id, user_id):
        room = await self.get_room(room_id)
        if user_id in room.participant_ids:
            return False
        room.participant_ids.append(user_id)
        return True

    async def remove_participant(self, room_id, user_id):
        room = await self.get_room(room_id)
        if user_id not in room.participant_ids:
            return False
        room.participant_ids.remove(user_id)
        return True

    async def update_settings(self, room_id, changes):
        room = await self.get_room(room_id)
        for key in ("name", "description", "is_private"):
            if changes.get(key) is not None:
                setattr(room, key, changes[key])
        for section in ("notifications", "privacy", "moderation"):
            if changes.get(section):
                room.settings.setdefault(section, {}).update(changes[section])
        return {"name": room.name, "description": room.description, "is_private": room.is_private, "settings": room.settings}

    async def update_user_status(self, user_id: int, status: str) -> None:
        if self.fail_status:
            raise PersistenceError("status write failed")
        self.statuses.append((user_id, status))


def make_user(user_id: int) -> UserProfile:
    return UserProfile(id=user_id, username=f"user{user_id}")


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_metrics() -> Iterator[None]:
    for metric in metrics_registry._metrics.values():
        metric._samples.clear()
    yield
    for metric in metrics_registry._metrics.values():
        metric._samples.clear()


@pytest.fixture()
def users() -> dict[int, UserProfile]:
    return {user_id: make_user(user_id) for user_id in range(1, 8)}


@pytest.fixture()
def store() -> FakeChatStore:
    return FakeChatStore()


@pytest.fixture()
def presence_cache() -> InMemoryPresenceCache:
    return InMemoryPresenceCache()


@pytest.fixture()
def service(store, users, presence_cache) -> ChatService:
    return ChatService(store, FakeAuthenticator(users), presence_cache, typing_ttl_seconds=0)


@pytest.fixture()
def test_engine() -> Iterator[Engine]:
    """Provide an in-memory SQLite engine for isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(test_engine) -> sessionmaker[Session]:
    """Return a session factory bound to the test engine."""

    return sessionmaker(bind=test_engine, future=True)


@pytest.fixture()
def db_session(session_factory) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(session_factory) -> Iterator[TestClient]:
    """Yield a TestClient whose chat service uses the test database."""

    app.state.chat_service = create_chat_service(
        session_factory=session_factory, cache=InMemoryPresenceCache()
    )
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.state.chat_service = None


