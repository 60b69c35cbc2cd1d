"""Process-local record of which users joined which rooms."""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable


class RoomMembershipIndex:
    """Live room membership, a subset of each room's durable participant list.

    All methods are plain map operations and never yield to the event loop.
    """

    def __init__(self) -> None:
        self._members: dict[int, set[int]] = {}
        self._rooms_by_user: dict[int, set[int]] = defaultdict(set)

    def join(self, room_id: int, user_id: int) -> bool:
        members = self._members.setdefault(room_id, set())
        if user_id in members:
            return False
        members.add(user_id)
        self._rooms_by_user[user_id].add(room_id)
        return True

    def leave(self, room_id: int, user_id: int) -> bool:
        members = self._members.get(room_id)
        if not members or user_id not in members:
            return False
        members.discard(user_id)
        if not members:
            self._members.pop(room_id, None)
        rooms = self._rooms_by_user.get(user_id)
        if rooms is not None:
            rooms.discard(room_id)
            if not rooms:
                self._rooms_by_user.pop(user_id, None)
        return True

    def hydrate(self, user_id: int, room_ids: Iterable[int]) -> list[int]:
        """Join *user_id* to every room in *room_ids*; return the rooms newly joined."""
        return [room_id for room_id in room_ids if self.join(room_id, user_id)]

    def members_of(self, room_id: int) -> set[int]:
        return set(self._members.get(room_id, ()))

    def rooms_of(self, user_id: int) -> set[int]:
        return set(self._rooms_by_user.get(user_id, ()))

    def is_member(self, room_id: int, user_id: int) -> bool:
        return user_id in self._members.get(room_id, ())

    def room_count(self) -> int:
        return len(self._members)

    def clear(self) -> None:
        self._members.clear()
        self._rooms_by_user.clear()
