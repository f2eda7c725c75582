"""
Session registry for active RTSP sessions.

This module owns every piece of per-session state:
- Session id allocation from a strictly increasing counter
- Negotiated transport parameters
- Streaming state transitions (idle -> playing -> stopped)

Every handling unit (TCP connections and the UDP loop) shares one registry,
so all counter and table mutations happen under a single lock.
"""

"""
Copyright 2025 Chris Bunting
File: sessions.py | Purpose: Thread-safe session table
@author Chris Bunting | @version 1.1.0

CHANGELOG:
2025-09-02 - Chris Bunting: Multi-client session table replaces the single session field
2025-09-01 - Chris Bunting: Initial implementation
"""

import random
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

SESSION_SEED_LIMIT = 99999999


class SessionNotFoundError(Exception):
    """Raised when a request references a session that is not active."""

    def __init__(self, session_id):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class StreamState(Enum):
    IDLE = "idle"
    PLAYING = "playing"
    STOPPED = "stopped"


@dataclass(frozen=True)
class TransportDescriptor:
    """Negotiated delivery parameters for one session."""
    multicast: bool
    client_ports: Optional[Tuple[int, int]]
    server_port: int

    @property
    def server_ports(self) -> Tuple[int, int]:
        return (self.server_port, self.server_port + 1)


@dataclass
class Session:
    session_id: int
    stream_index: int = 1
    transport: Optional[TransportDescriptor] = None
    state: StreamState = StreamState.IDLE


class SessionRegistry:
    """Thread-safe mapping of session id to Session.

    Ids come from a counter seeded once per process; each allocation
    increments it under the registry lock, so ids are unique and strictly
    increasing in issuance order no matter how many threads call allocate().
    """

    def __init__(self, seed: Optional[int] = None):
        if seed is None:
            seed = random.randrange(SESSION_SEED_LIMIT)
        self._counter = seed
        self._sessions: Dict[int, Session] = {}
        self._lock = threading.Lock()

    def allocate(self, stream_index: int = 1) -> Session:
        """Create a session with the next id."""
        with self._lock:
            self._counter += 1
            session = Session(session_id=self._counter, stream_index=stream_index)
            self._sessions[session.session_id] = session
            return session

    def bind_transport(self, session_id: int, transport: TransportDescriptor) -> Session:
        with self._lock:
            session = self._get(session_id)
            session.transport = transport
            return session

    def lookup(self, session_id: Optional[int]) -> Session:
        with self._lock:
            return self._get(session_id)

    def start(self, session_id: Optional[int]) -> Session:
        """Mark a session as playing."""
        with self._lock:
            session = self._get(session_id)
            session.state = StreamState.PLAYING
            return session

    def stop(self, session_id: Optional[int]) -> Session:
        """Mark a session as stopped and remove it from the table."""
        with self._lock:
            session = self._get(session_id)
            session.state = StreamState.STOPPED
            del self._sessions[session.session_id]
            return session

    def discard(self, session_id: int) -> None:
        """Drop a session without a state transition (failed SETUP)."""
        with self._lock:
            self._sessions.pop(session_id, None)

    def active_ids(self) -> List[int]:
        with self._lock:
            return sorted(self._sessions)

    def _get(self, session_id: Optional[int]) -> Session:
        # Caller holds the lock
        session = self._sessions.get(session_id) if session_id is not None else None
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id) -> bool:
        with self._lock:
            return session_id in self._sessions
