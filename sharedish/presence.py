"""
Presence registry: which live socket connections represent which user.

Presence is advisory. It routes personal notifications and answers
"is this user online", but it is never used for delivery guarantees:
persisted messages are always available through the REST read path.
"""

import logging

from sharedish.utils import user_room

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """
    In-memory mapping of user id to connection ids.

    Owned by one relay process and mutated only from its event loop.
    Each mutation completes without awaiting in between, so concurrent
    joins and leaves from different connections cannot interleave.
    """

    def __init__(self, server):
        self.server = server
        self._connections: dict[str, set[str]] = {}
        self._users_by_sid: dict[str, set[str]] = {}

    async def join(self, user_id: str, sid: str) -> None:
        """Record that ``sid`` represents ``user_id`` and subscribe it to the user's room."""
        self._connections.setdefault(user_id, set()).add(sid)
        self._users_by_sid.setdefault(sid, set()).add(user_id)
        await self.server.enter_room(sid, user_room(user_id))
        logger.info(f"User {user_id} joined their notification room")

    def leave(self, sid: str) -> list[str]:
        """
        Remove every mapping held by ``sid``.

        Room membership is dropped by the Socket.IO server itself when the
        connection closes, so only the registry maps are touched here.

        Returns:
            User ids that were mapped to this connection
        """
        user_ids = self._users_by_sid.pop(sid, set())
        for user_id in user_ids:
            sids = self._connections.get(user_id)
            if sids is None:
                continue
            sids.discard(sid)
            if not sids:
                del self._connections[user_id]
            logger.info(f"User {user_id} removed from presence for connection {sid}")
        return sorted(user_ids)

    def connections(self, user_id: str) -> set[str]:
        return set(self._connections.get(user_id, ()))

    def is_online(self, user_id: str) -> bool:
        return bool(self._connections.get(user_id))

    def online_users(self) -> list[str]:
        return sorted(self._connections)
