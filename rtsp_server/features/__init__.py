"""
Session, transport and streaming features
"""

from .sessions import SessionRegistry, Session, StreamState, SessionNotFoundError
from .transport import negotiate_transport, TransportError
from .stream_controller import (
    StreamController, StreamControllerError, StreamSource, SocatStreamController
)

__all__ = [
    "SessionRegistry",
    "Session",
    "StreamState",
    "SessionNotFoundError",
    "negotiate_transport",
    "TransportError",
    "StreamController",
    "StreamControllerError",
    "StreamSource",
    "SocatStreamController",
]
