# Overview: In-process realtime hub; fans ledger events out to branch and user rooms.

"""
Realtime Notifier

WHY: Cashier and manager screens mirror ledger state (orders, stock, cash
registers, discount requests) without polling.

DELIVERY MODEL:
- At-most-once, best-effort. The ledger is the source of truth; a client
  that misses an event re-reads state.
- Sessions join rooms at connect time: "branch:<id>" for every authorized
  branch and "user:<id>" for the actor. Zero branches still connects.
- Nothing is queued for absent sessions, nothing is replayed.
- Each session has a bounded outbox. A full outbox drops the event for
  that session only. Delivery never raises into the caller.

The hub is an explicit handle created by create_app, stored in
app.extensions["realtime"] and passed into services that publish.
"""

from __future__ import annotations

import itertools
import json
import logging
import queue
import threading
from contextlib import contextmanager
from typing import Iterator

from flask import current_app

from .services import session_service
from .services.session_service import Identity


logger = logging.getLogger(__name__)

_CLOSE = object()


def branch_room(branch_id: int) -> str:
    return f"branch:{branch_id}"


def user_room(user_id: int) -> str:
    return f"user:{user_id}"


class RealtimeSession:
    """One connected client. Owns a bounded outbox drained by the transport."""

    def __init__(self, session_id: int, identity: Identity, outbox_size: int):
        self.id = session_id
        self.identity = identity
        self.rooms: set[str] = set()
        self.outbox: queue.Queue = queue.Queue(maxsize=outbox_size)
        self.closed = False

    def deliver(self, event: str, payload: dict) -> None:
        self.outbox.put_nowait({"event": event, "data": payload})

    def next_message(self, timeout: float | None = None):
        """Block for the next message; None on timeout, _CLOSE when disconnected."""
        try:
            return self.outbox.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[dict]:
        """Non-blocking: everything currently buffered."""
        messages = []
        while True:
            try:
                message = self.outbox.get_nowait()
            except queue.Empty:
                return messages
            if message is _CLOSE:
                return messages
            messages.append(message)

    def stream(self, keepalive_seconds: float = 15.0) -> Iterator[str]:
        """Server-Sent Events frames until the session is disconnected."""
        yield f"event: connected\ndata: {json.dumps({'rooms': sorted(self.rooms)})}\n\n"
        while not self.closed:
            message = self.next_message(timeout=keepalive_seconds)
            if message is None:
                yield ": keepalive\n\n"
                continue
            if message is _CLOSE:
                return
            yield f"event: {message['event']}\ndata: {json.dumps(message['data'], default=str)}\n\n"


class RealtimeNotifier:
    def __init__(
        self,
        *,
        secret_key: str | None = None,
        token_max_age: int | None = None,
        outbox_size: int = 256,
    ):
        self.secret_key = secret_key
        self.token_max_age = token_max_age
        self.outbox_size = outbox_size
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._sessions: dict[int, RealtimeSession] = {}
        self._rooms: dict[str, set[int]] = {}

    @classmethod
    def from_config(cls, config) -> "RealtimeNotifier":
        return cls(
            secret_key=config["SECRET_KEY"],
            token_max_age=config.get("REALTIME_TOKEN_MAX_AGE"),
            outbox_size=config.get("REALTIME_OUTBOX_SIZE", 256),
        )

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def connect(self, token: str | None) -> RealtimeSession | None:
        """Verify token and join rooms. None if the token is rejected."""
        identity = session_service.verify_token(
            token, max_age=self.token_max_age, secret_key=self.secret_key
        )
        if identity is None:
            logger.info("realtime connection rejected: invalid or expired token")
            return None
        return self.connect_identity(identity)

    def connect_identity(self, identity: Identity) -> RealtimeSession:
        session = RealtimeSession(next(self._ids), identity, self.outbox_size)
        rooms = {branch_room(b) for b in identity.branch_ids}
        rooms.add(user_room(identity.actor_id))
        with self._lock:
            self._sessions[session.id] = session
            for room in rooms:
                self._rooms.setdefault(room, set()).add(session.id)
            session.rooms = rooms
        logger.debug("realtime session %s joined %s", session.id, sorted(rooms))
        return session

    def disconnect(self, session: RealtimeSession) -> None:
        with self._lock:
            self._sessions.pop(session.id, None)
            for room in session.rooms:
                members = self._rooms.get(room)
                if members is None:
                    continue
                members.discard(session.id)
                if not members:
                    del self._rooms[room]
        session.closed = True
        try:
            session.outbox.put_nowait(_CLOSE)
        except queue.Full:
            pass

    def shutdown(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
        for session in sessions:
            self.disconnect(session)

    def members(self, room: str) -> set[int]:
        with self._lock:
            return set(self._rooms.get(room, ()))

    @property
    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def notify(self, branch_id: int, event: str, payload: dict) -> int:
        """Deliver to every session currently in the branch room."""
        return self._publish(branch_room(branch_id), event, payload)

    def notify_user(self, user_id: int, event: str, payload: dict) -> int:
        return self._publish(user_room(user_id), event, payload)

    def _publish(self, room: str, event: str, payload: dict) -> int:
        with self._lock:
            targets = [self._sessions[sid] for sid in self._rooms.get(room, ()) if sid in self._sessions]

        delivered = 0
        for session in targets:
            try:
                session.deliver(event, payload)
                delivered += 1
            except queue.Full:
                logger.warning(
                    "realtime outbox full; dropped %s for session %s in %s", event, session.id, room
                )
            except Exception:
                logger.exception("realtime delivery of %s to session %s failed", event, session.id)
        return delivered


def get_notifier() -> RealtimeNotifier | None:
    """The app's hub, or None outside an app that registered one."""
    return current_app.extensions.get("realtime")


@contextmanager
def publishing(after: str):
    """
    Guard a post-commit fan-out block. The mutation is already committed;
    building or sending the payload must not fail the caller.
    """
    try:
        yield
    except Exception:
        logger.exception("realtime fan-out after %s failed", after)
