"""Real-time Lesson Rooms

Learners, parents and teachers watching the same lesson share a room
(``lesson-<id>``). Code edits, cursor moves and help requests are broadcast
to the other members; a learner's own edits are also auto-saved.

Delivery is fire-and-forget and at-most-once: listeners that are not
subscribed at broadcast time never see the event, and a failed send drops
that listener. Ordering holds only per connection.

Room membership lives in the ``Notifier`` owned by the transport; each
``LessonChannel`` only remembers which rooms its own connection joined.
"""
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any, Protocol
from uuid import UUID

from core.clock import utcnow
from core.errors import AppError, Err, Result
from core.logging import realtime_logger

log = realtime_logger()

AutoSave = Callable[[UUID, UUID, str], Awaitable[Result[Any, AppError]]]


class Listener(Protocol):
    async def send_json(self, data: Any) -> None:
        ...


class Notifier(Protocol):
    def subscribe(self, room: str, connection_id: str, listener: Listener, info: dict) -> None:
        ...

    def unsubscribe(self, room: str, connection_id: str) -> None:
        ...

    def members(self, room: str) -> list[dict]:
        ...

    async def broadcast(self, room: str, event: str, payload: dict, exclude: str | None = None) -> int:
        ...


class LocalNotifier:
    """In-process pub/sub for a single server instance.

    Rooms live in this process only, so connections served by another
    worker never see each other. Running several instances needs a shared
    broker behind the same ``Notifier`` interface.
    """

    __slots__ = ("_rooms",)

    def __init__(self):
        self._rooms: dict[str, dict[str, tuple[Listener, dict]]] = defaultdict(dict)

    def subscribe(self, room: str, connection_id: str, listener: Listener, info: dict) -> None:
        self._rooms[room][connection_id] = (listener, info)

    def unsubscribe(self, room: str, connection_id: str) -> None:
        members = self._rooms.get(room)
        if members is None:
            return
        members.pop(connection_id, None)
        if not members:
            del self._rooms[room]

    def members(self, room: str) -> list[dict]:
        return [info for _, info in self._rooms.get(room, {}).values()]

    async def broadcast(self, room: str, event: str, payload: dict, exclude: str | None = None) -> int:
        """Send to every current member except ``exclude``. Returns deliveries."""
        delivered = 0
        for connection_id, (listener, _) in list(self._rooms.get(room, {}).items()):
            if connection_id == exclude:
                continue
            try:
                await listener.send_json({"event": event, "data": payload})
                delivered += 1
            except Exception as e:
                log.warning("broadcast_delivery_failed", room=room, event=event, connection_id=connection_id, error=str(e))
                self.unsubscribe(room, connection_id)
        return delivered


# Events whose data must be an object
PAYLOAD_EVENTS = frozenset({"code-change", "request-help", "cursor-move"})


def lesson_room(lesson_id: UUID | str) -> str:
    return f"lesson-{lesson_id}"


class LessonChannel:
    """Event handling for one connection."""

    __slots__ = ("connection_id", "user_id", "username", "_notifier", "_listener", "_autosave", "_rooms")

    def __init__(
        self,
        connection_id: str,
        user_id: UUID,
        username: str | None,
        notifier: Notifier,
        listener: Listener,
        autosave: AutoSave | None = None,
    ):
        self.connection_id = connection_id
        self.user_id = user_id
        self.username = username
        self._notifier = notifier
        self._listener = listener
        self._autosave = autosave
        self._rooms: set[str] = set()

    @property
    def rooms(self) -> frozenset[str]:
        return frozenset(self._rooms)

    def _identity(self) -> dict:
        return {"id": self.connection_id, "userId": str(self.user_id), "username": self.username}

    async def handle(self, event: str, data: Any) -> None:
        if event in PAYLOAD_EVENTS and not isinstance(data, dict):
            log.warning("socket_frame_invalid", event=event, connection_id=self.connection_id)
            return
        match event:
            case "join-lesson":
                await self.join(data)
            case "leave-lesson":
                await self.leave(data)
            case "code-change":
                await self.code_change(data)
            case "request-help":
                await self.request_help(data)
            case "cursor-move":
                await self.cursor_move(data)
            case _:
                log.debug("unknown_event", event=event, connection_id=self.connection_id)

    async def join(self, lesson_id) -> None:
        room = lesson_room(lesson_id)
        self._notifier.subscribe(room, self.connection_id, self._listener, self._identity())
        self._rooms.add(room)
        await self._notifier.broadcast(room, "user-joined", self._identity(), exclude=self.connection_id)
        await self._listener.send_json({"event": "room-participants", "data": self._notifier.members(room)})
        log.info("lesson_joined", room=room, user_id=str(self.user_id))

    async def leave(self, lesson_id) -> None:
        room = lesson_room(lesson_id)
        if room not in self._rooms:
            return
        self._notifier.unsubscribe(room, self.connection_id)
        self._rooms.discard(room)
        await self._notifier.broadcast(room, "user-left", self._identity())
        log.info("lesson_left", room=room, user_id=str(self.user_id))

    async def code_change(self, data: dict) -> None:
        lesson_id = data.get("lessonId")
        code = data.get("code", "")
        room = lesson_room(lesson_id)
        await self._notifier.broadcast(
            room,
            "code-update",
            {
                "code": code,
                "userId": str(self.user_id),
                "username": self.username,
                "timestamp": utcnow().isoformat(),
            },
            exclude=self.connection_id,
        )

        # Only the owner's edits are persisted; watchers never write another user's row
        if self._autosave is None or str(data.get("userId")) != str(self.user_id):
            return
        try:
            target = UUID(str(lesson_id))
        except ValueError:
            log.warning("autosave_skipped", reason="invalid_lesson_id", lesson_id=lesson_id)
            return
        result = await self._autosave(self.user_id, target, code)
        if isinstance(result, Err):
            log.warning("autosave_failed", lesson_id=str(target), error=result.error.message)

    async def request_help(self, data: dict) -> None:
        lesson_id = data.get("lessonId")
        await self._notifier.broadcast(
            lesson_room(lesson_id),
            "help-requested",
            {
                "userId": str(self.user_id),
                "username": self.username,
                "lessonId": lesson_id,
                "question": data.get("question"),
                "timestamp": utcnow().isoformat(),
            },
            exclude=self.connection_id,
        )
        log.info("help_requested", lesson_id=lesson_id, user_id=str(self.user_id))

    async def cursor_move(self, data: dict) -> None:
        await self._notifier.broadcast(
            lesson_room(data.get("lessonId")),
            "user-cursor-moved",
            {
                "userId": str(self.user_id),
                "username": self.username,
                "position": data.get("position"),
                "timestamp": utcnow().isoformat(),
            },
            exclude=self.connection_id,
        )

    async def close(self) -> None:
        """Leave every joined room."""
        for room in list(self._rooms):
            self._notifier.unsubscribe(room, self.connection_id)
            self._rooms.discard(room)
            await self._notifier.broadcast(room, "user-left", self._identity())
        log.debug("connection_closed", connection_id=self.connection_id)
