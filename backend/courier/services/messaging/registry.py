# backend/courier/services/messaging/registry.py
"""
Connection registry: which live connections belong to which user.

A user may hold any number of connections (multi-device). The registry
keeps both directions of the mapping, reports presence transitions
(first connection -> online, last connection gone -> offline) and writes
events to every live connection of a user.

Mutations for one user are serialized with a per-user lock; mutations for
different users run concurrently. The optional presence store is called
inside that critical section, so persisted online/offline flips happen in
the same order as the in-memory transitions.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any, Dict, List, Optional, Protocol, Set

from ...core.clock import Clock, utc_now
from ...core.keyed_lock import KeyedLock
from ...monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """A live transport endpoint (a websocket in production)."""

    connection_id: str
    # Identity established by the upstream authenticator when the transport opened
    verified_user_id: Optional[str]

    async def send_json(self, data: Dict[str, Any]) -> None:
        ...


class PresenceStore(Protocol):
    """Persists presence transitions reported by the registry."""

    async def mark_online(self, user_id: str, at: datetime) -> None:
        ...

    async def mark_offline(self, user_id: str, at: datetime) -> None:
        ...


@dataclass
class UnregistrationResult:
    connection_id: str
    user_id: Optional[str] = None
    became_offline: bool = False
    last_seen: Optional[datetime] = None


@dataclass
class RegistrationResult:
    connection_id: str
    user_id: str
    became_online: bool = False
    # Set when the connection was previously joined as another user
    replaced: Optional[UnregistrationResult] = None


class ConnectionRegistry:
    """
    In-process multimap ``user_id -> {connection_id}`` plus the reverse map.

    Lookups never raise: an unknown or fully disconnected user simply has
    no connections.
    """

    def __init__(self, presence_store: Optional[PresenceStore] = None, clock: Clock = utc_now):
        self.presence_store = presence_store
        self.clock = clock
        self._user_connections: Dict[str, Set[str]] = {}
        self._connection_users: Dict[str, str] = {}
        self._connections: Dict[str, Connection] = {}
        self._user_locks = KeyedLock("presence")

    # Mutations

    async def register(self, connection: Connection, user_id: str) -> RegistrationResult:
        """
        Attach ``connection`` to ``user_id``.

        Registering an already registered connection for the same user only
        refreshes the transport object; it never counts as a second online
        transition. If the presence store fails on an online transition the
        error propagates and the registry is left unchanged.
        """
        connection_id = connection.connection_id
        previous_user = self._connection_users.get(connection_id)

        replaced: Optional[UnregistrationResult] = None
        if previous_user is not None and previous_user != user_id:
            replaced = await self.unregister(connection_id)

        async with self._user_locks.acquire(user_id):
            current = self._user_connections.get(user_id)
            if current and connection_id in current:
                self._connections[connection_id] = connection
                return RegistrationResult(connection_id, user_id, False, replaced)

            became_online = not current
            if became_online and self.presence_store is not None:
                await self.presence_store.mark_online(user_id, self.clock())

            self._user_connections.setdefault(user_id, set()).add(connection_id)
            self._connection_users[connection_id] = user_id
            self._connections[connection_id] = connection
            self._update_gauges()

        logger.info(
            f"[PRESENCE] Registered connection {connection_id} for {user_id}",
            extra={
                "user_id": user_id,
                "connection_id": connection_id,
                "became_online": became_online,
            },
        )
        return RegistrationResult(connection_id, user_id, became_online, replaced)

    async def unregister(self, connection_id: str) -> UnregistrationResult:
        """
        Detach a connection.

        Unknown connection ids are a no-op. The in-memory state is updated
        first so no further event is routed to the dead connection; a
        presence store failure is logged and does not undo the removal.
        """
        while True:
            user_id = self._connection_users.get(connection_id)
            if user_id is None:
                self._connections.pop(connection_id, None)
                return UnregistrationResult(connection_id)

            async with self._user_locks.acquire(user_id):
                # Re-check: the connection may have moved while we waited
                if self._connection_users.get(connection_id) != user_id:
                    continue

                del self._connection_users[connection_id]
                self._connections.pop(connection_id, None)
                remaining = self._user_connections.get(user_id, set())
                remaining.discard(connection_id)

                last_seen: Optional[datetime] = None
                became_offline = not remaining
                if became_offline:
                    self._user_connections.pop(user_id, None)
                    last_seen = self.clock()
                    if self.presence_store is not None:
                        try:
                            await self.presence_store.mark_offline(user_id, last_seen)
                        except Exception:
                            logger.error(
                                f"[PRESENCE] Failed to persist offline state for {user_id}",
                                exc_info=True,
                            )
                self._update_gauges()

            logger.info(
                f"[PRESENCE] Unregistered connection {connection_id} for {user_id}",
                extra={
                    "user_id": user_id,
                    "connection_id": connection_id,
                    "became_offline": became_offline,
                },
            )
            return UnregistrationResult(connection_id, user_id, became_offline, last_seen)

    # Lookups

    def connections_for(self, user_id: str) -> Set[str]:
        return set(self._user_connections.get(user_id, ()))

    def user_for(self, connection_id: str) -> Optional[str]:
        return self._connection_users.get(connection_id)

    def is_online(self, user_id: str) -> bool:
        return bool(self._user_connections.get(user_id))

    def online_user_ids(self) -> List[str]:
        return sorted(self._user_connections)

    @property
    def connection_count(self) -> int:
        return len(self._connection_users)

    @property
    def user_count(self) -> int:
        return len(self._user_connections)

    # Emission

    async def send_to_user(self, user_id: str, event: Dict[str, Any]) -> int:
        """
        Write ``event`` to every live connection of ``user_id``.

        Returns:
            Number of connections the event was written to
        """
        targets = [
            self._connections[cid]
            for cid in self.connections_for(user_id)
            if cid in self._connections
        ]
        if not targets:
            return 0

        results = await asyncio.gather(
            *(self._safe_send(connection, event) for connection in targets)
        )
        return sum(1 for sent in results if sent)

    async def broadcast(self, event: Dict[str, Any], exclude_user: Optional[str] = None) -> int:
        """Write ``event`` to every connected user except ``exclude_user``."""
        sent = 0
        for user_id in self.online_user_ids():
            if user_id == exclude_user:
                continue
            sent += await self.send_to_user(user_id, event)
        return sent

    async def _safe_send(self, connection: Connection, event: Dict[str, Any]) -> bool:
        # The connection may have been unregistered after targets were resolved
        if connection.connection_id not in self._connections:
            return False
        try:
            await connection.send_json(event)
        except Exception as exc:
            logger.warning(
                f"[FANOUT] Send to connection {connection.connection_id} failed: {exc}",
                extra={"connection_id": connection.connection_id, "event_type": event.get("type")},
            )
            return False
        prometheus_metrics.record_event_emitted(str(event.get("type")))
        return True

    def _update_gauges(self) -> None:
        prometheus_metrics.set_connection_counts(self.connection_count, self.user_count)
