"""
Real-time chat relay over Socket.IO.

Inbound events:
- joinUserRoom {userId}: subscribe to the personal room ``user_<userId>``
- joinRoom {postId, userId}: subscribe to the post room and bind the sender identity
- sendMessage {postId, receiverId, text}: persist, then fan out

Outbound events:
- receiveMessage {sender, text, createdAt} to the post room
- newMessage {senderId, senderName, postId, text, timestamp} to ``user_<receiverId>``
- error {message} to the originating connection only

A message is committed to the Chat Store before either broadcast is
emitted. If persisting fails, nothing is broadcast.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from sharedish.errors import RelayError, Unauthenticated, ValidationFailure
from sharedish.logging_utils import connection_context
from sharedish.metrics import connection_closed, connection_opened, record_socket_event
from sharedish.presence import PresenceRegistry
from sharedish.schemas import (
    JoinRoomPayload,
    JoinUserRoomPayload,
    NewMessageEvent,
    ReceiveMessageEvent,
    SendMessagePayload,
    normalize_id,
)
from sharedish.storage import persist_message
from sharedish.utils import post_room, preview_text, user_room

logger = logging.getLogger(__name__)

# Where a connection's identity came from
IDENTITY_FROM_CONNECT = "connect"
IDENTITY_FROM_JOIN = "join"


@dataclass(frozen=True)
class ConnectionIdentity:
    user_id: str
    source: str


@dataclass(frozen=True)
class PersistedMessage:
    """Plain values of a committed message, safe to use after the session closes."""
    thread_id: int
    message_id: int
    sender_id: str
    sender_name: str
    text: str
    created_at: str


class ChatRelay:
    """
    Socket.IO event handlers for the chat relay.

    Args:
        server: socketio.AsyncServer (anything with enter_room/emit/on)
        presence: PresenceRegistry owned by this relay
        session_factory: callable returning a SQLAlchemy Session
        preview_length: characters kept in newMessage previews
        enforce_identity: require a connect-time identity for room joins
    """

    def __init__(
        self,
        server,
        presence: PresenceRegistry,
        session_factory: Callable[[], Session],
        preview_length: int = 50,
        enforce_identity: bool = False,
    ):
        self.server = server
        self.presence = presence
        self.session_factory = session_factory
        self.preview_length = preview_length
        self.enforce_identity = enforce_identity
        self._identities: dict[str, ConnectionIdentity] = {}

    def register(self) -> None:
        """Attach the relay handlers to the Socket.IO server."""
        self.server.on("connect", self.on_connect)
        self.server.on("joinUserRoom", self.on_join_user_room)
        self.server.on("joinRoom", self.on_join_room)
        self.server.on("sendMessage", self.on_send_message)
        self.server.on("disconnect", self.on_disconnect)

    def identity(self, sid: str) -> Optional[str]:
        """User id this connection currently sends as, if any."""
        ident = self._identities.get(sid)
        return ident.user_id if ident else None

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
        with connection_context(sid):
            connection_opened()
            user_id = auth.get("userId") if isinstance(auth, dict) else None
            if user_id is None:
                logger.info("Connection opened")
                return
            try:
                user_id = normalize_id(user_id, "userId")
            except ValueError:
                logger.warning("Connection opened with an unusable auth userId")
                return
            self._identities[sid] = ConnectionIdentity(user_id, IDENTITY_FROM_CONNECT)
            logger.info(f"Connection opened for user {user_id}")

    async def on_disconnect(self, sid: str, *args) -> None:
        # Newer python-socketio versions also pass the disconnect reason
        with connection_context(sid):
            removed = self.presence.leave(sid)
            self._identities.pop(sid, None)
            connection_closed()
            logger.info(f"Connection closed, presence removed for {removed or 'no users'}")

    # =========================================================================
    # Room joins
    # =========================================================================

    async def on_join_user_room(self, sid: str, data) -> None:
        with connection_context(sid):
            try:
                payload = self._validate(JoinUserRoomPayload, data)
                self._check_claim(sid, payload.user_id)
            except RelayError as e:
                await self._reject(sid, "joinUserRoom", e)
                return

            await self.presence.join(payload.user_id, sid)
            record_socket_event("joinUserRoom")

    async def on_join_room(self, sid: str, data) -> None:
        with connection_context(sid):
            try:
                payload = self._validate(JoinRoomPayload, data)
                self._check_claim(sid, payload.user_id)
            except RelayError as e:
                await self._reject(sid, "joinRoom", e)
                return

            self._bind_join_identity(sid, payload.user_id)
            await self.server.enter_room(sid, post_room(payload.post_id))
            record_socket_event("joinRoom")
            logger.info(f"User {payload.user_id} joined post room: {payload.post_id}")

    def _check_claim(self, sid: str, claimed_user_id: str) -> None:
        """
        Validate a user id claimed by a room join against the connection.

        A connect-time identity is never contradicted. With identity
        enforcement on, a connect-time identity is required at all.
        """
        ident = self._identities.get(sid)
        if ident is not None and ident.source == IDENTITY_FROM_CONNECT:
            if ident.user_id != claimed_user_id:
                logger.warning(f"Connection of user {ident.user_id} claimed user {claimed_user_id}")
                raise Unauthenticated("User does not match this connection")
            return
        if self.enforce_identity:
            raise Unauthenticated()

    def _bind_join_identity(self, sid: str, user_id: str) -> None:
        ident = self._identities.get(sid)
        if ident is not None and ident.source == IDENTITY_FROM_CONNECT:
            return
        if ident is not None and ident.user_id != user_id:
            logger.warning(f"Connection identity rebound from {ident.user_id} to {user_id}")
        self._identities[sid] = ConnectionIdentity(user_id, IDENTITY_FROM_JOIN)

    # =========================================================================
    # Messages
    # =========================================================================

    async def on_send_message(self, sid: str, data) -> None:
        with connection_context(sid):
            try:
                sender_id = self.identity(sid)
                if sender_id is None:
                    raise Unauthenticated()
                payload = self._validate(SendMessagePayload, data)
                if payload.receiver_id == sender_id:
                    raise ValidationFailure("receiverId must be another user")

                # Runs in a worker thread; other events keep flowing meanwhile
                persisted = await run_in_threadpool(
                    self._persist, payload.post_id, sender_id, payload.receiver_id, payload.text
                )
            except RelayError as e:
                await self._reject(sid, "sendMessage", e)
                return

            await self._fan_out(payload.post_id, payload.receiver_id, persisted)
            record_socket_event("sendMessage")

    def _persist(self, post_id: str, sender_id: str, receiver_id: str, text: str) -> PersistedMessage:
        with self.session_factory() as db:
            _, message, sender_name = persist_message(db, post_id, sender_id, receiver_id, text)
            return PersistedMessage(
                thread_id=message.thread_id,
                message_id=message.id,
                sender_id=message.sender_id,
                sender_name=sender_name,
                text=message.text,
                created_at=message.created_at,
            )

    async def _fan_out(self, post_id: str, receiver_id: str, persisted: PersistedMessage) -> None:
        """
        Emit the conversation update and the receiver notification.

        Both are sent for every message. Clients viewing the conversation
        may receive the two for the same message and deduplicate locally.
        """
        conversation = ReceiveMessageEvent(
            sender=persisted.sender_id,
            text=persisted.text,
            created_at=persisted.created_at,
        )
        await self.server.emit(
            "receiveMessage", conversation.model_dump(by_alias=True), room=post_room(post_id)
        )

        notification = NewMessageEvent(
            sender_id=persisted.sender_id,
            sender_name=persisted.sender_name,
            post_id=post_id,
            text=preview_text(persisted.text, self.preview_length),
            timestamp=persisted.created_at,
        )
        await self.server.emit(
            "newMessage", notification.model_dump(by_alias=True), room=user_room(receiver_id)
        )
        logger.info(
            f"Notification sent to user {receiver_id} from {persisted.sender_name}",
            extra={"thread_id": persisted.thread_id, "message_id": persisted.message_id},
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _validate(model, data):
        if not isinstance(data, dict):
            raise ValidationFailure("Payload must be an object")
        try:
            return model.model_validate(data)
        except ValidationError as e:
            errors = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'payload'}: {err['msg']}" for err in e.errors()
            )
            raise ValidationFailure(f"Invalid payload: {errors}") from e

    async def _reject(self, sid: str, event: str, error: RelayError) -> None:
        """Report an error to the originating connection only."""
        record_socket_event(event, error.result)
        logger.warning(f"{event} rejected: {error.message}")
        await self.server.emit("error", error.to_payload(), to=sid)
