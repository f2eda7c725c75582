"""
Handlers for the supported RTSP methods.

Each handler takes a parsed RTSPRequest and returns a (headers, body) pair:
an ordered list of header lines and an optional body string. Handlers talk
to the media relay only through the injected StreamController and keep
session state only in the SessionRegistry.
"""

import logging
from typing import List, Optional, Tuple

from .request_parser import RTSPRequest
from ..features.sessions import SessionNotFoundError, SessionRegistry
from ..features.stream_controller import StreamController, StreamControllerError
from ..features.transport import describe_transport, negotiate_transport

logger = logging.getLogger(__name__)

HandlerResult = Tuple[List[str], Optional[str]]

SUPPORTED_METHODS = (
    "OPTIONS", "DESCRIBE", "SETUP", "TEARDOWN", "PLAY",
    "PAUSE", "GET_PARAMETER", "SET_PARAMETER",
)
DEFAULT_RANGE = "npt=0.000-"
NOT_IMPLEMENTED_BODY = "Not Implemented"


class MethodHandlers:
    """One handler per RTSP method, sharing a controller and a registry."""

    def __init__(self, stream_controller: StreamController, registry: SessionRegistry):
        self.stream_controller = stream_controller
        self.registry = registry

    def options(self, request: RTSPRequest) -> HandlerResult:
        logger.info(f"Received OPTIONS request from {request.remote_host}")
        return [f"Public: {', '.join(SUPPORTED_METHODS)}"], None

    def describe(self, request: RTSPRequest) -> HandlerResult:
        logger.info(f"Received DESCRIBE request from {request.remote_host}")
        return [], self.stream_controller.description(request.is_multicast)

    def announce(self, request: RTSPRequest) -> HandlerResult:
        return [], None

    def setup(self, request: RTSPRequest) -> HandlerResult:
        """Allocate a session and negotiate its transport.

        Raises:
            TransportError: If the client's Transport header is unusable
            StreamControllerError: If no server port could be reserved
        """
        logger.info(f"Received SETUP request from {request.remote_host}")
        session = self.registry.allocate(request.stream_index)
        try:
            server_port = self.stream_controller.setup(
                session.session_id, request.transport_url, request.stream_index
            )
            transport = negotiate_transport(
                request.transport,
                request.remote_host,
                self.stream_controller.interface_address,
                server_port,
            )
            self.registry.bind_transport(
                session.session_id, describe_transport(request.transport, server_port)
            )
        except Exception:
            self.registry.discard(session.session_id)
            self._release(session.session_id)
            raise

        return [f"Transport: {transport}", f"Session: {session.session_id}"], None

    def play(self, request: RTSPRequest) -> HandlerResult:
        """Start streaming an existing session.

        Raises:
            SessionNotFoundError: If the Session header names no active session
        """
        logger.info(f"Received PLAY request from {request.remote_host}")
        session = self.registry.lookup(request.session_id)
        self.stream_controller.start_streaming(session.session_id)
        try:
            self.registry.start(session.session_id)
        except SessionNotFoundError:
            self._release(session.session_id)
            raise

        track_url = f"{request.url.rstrip('/')}/track{session.stream_index}"
        rtp_info = (f"url={track_url};seq={self.stream_controller.rtp_sequence};"
                    f"rtptime={self.stream_controller.rtp_timestamp}")
        return [
            f"Session: {session.session_id}",
            f"Range: {request.range or DEFAULT_RANGE}",
            f"RTP-Info: {rtp_info}",
        ], None

    def teardown(self, request: RTSPRequest) -> HandlerResult:
        """Stop streaming and forget the session.

        Raises:
            SessionNotFoundError: If the Session header names no active session
        """
        logger.info(f"Received TEARDOWN request from {request.remote_host}")
        session = self.registry.lookup(request.session_id)
        self.stream_controller.stop_streaming(session.session_id)
        self.registry.stop(session.session_id)
        return [], None

    def get_parameter(self, request: RTSPRequest) -> HandlerResult:
        logger.info(f"Received GET_PARAMETER request from {request.remote_host}")
        return [], None

    def set_parameter(self, request: RTSPRequest) -> HandlerResult:
        logger.info(f"Received SET_PARAMETER request from {request.remote_host}")
        return [], None

    def redirect(self, request: RTSPRequest) -> HandlerResult:
        logger.info(f"Received REDIRECT request from {request.remote_host}")
        return [], None

    def fallback(self, request: RTSPRequest) -> HandlerResult:
        logger.warning(f"Received request for {request.method} (not implemented) "
                       f"from {request.remote_host}")
        return [], NOT_IMPLEMENTED_BODY

    def _release(self, session_id: int) -> None:
        try:
            self.stream_controller.stop_streaming(session_id)
        except StreamControllerError as e:
            logger.warning(f"Failed to release session {session_id}: {e}")
