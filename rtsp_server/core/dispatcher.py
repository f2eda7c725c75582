"""
RTSP method dispatch.

This module implements the request pipeline shared by the TCP and UDP
listeners: parse the raw bytes, route the method through an explicit
dispatch table (unknown methods go to a fallback handler), turn domain
errors into status responses and serialize the result.
"""

import logging
import time
import uuid
from typing import Callable, Dict, Optional

from .config import ServerConfig
from .handlers import HandlerResult, MethodHandlers
from .request_parser import RTSPParser, RTSPParserError, RTSPRequest, recover_cseq
from .response import (
    ResponseBuilder,
    STATUS_BAD_REQUEST,
    STATUS_INTERNAL_ERROR,
    STATUS_OK,
    STATUS_SESSION_NOT_FOUND,
    STATUS_UNSUPPORTED_TRANSPORT,
)
from ..features import metrics
from ..features.sessions import SessionNotFoundError, SessionRegistry
from ..features.stream_controller import StreamController, StreamControllerError
from ..features.transport import TransportError

logger = logging.getLogger(__name__)
access_logger = logging.getLogger("rtsp_server.access")

Handler = Callable[[RTSPRequest], HandlerResult]
UNKNOWN_METHOD_LABEL = "UNKNOWN"


class MethodDispatcher:
    """Routes parsed requests to MethodHandlers and builds the responses.

    Args:
        stream_controller: Media relay collaborator
        registry: Session table (a fresh one is created if omitted)
        parser: Request tokenizer
        response_builder: Response serializer
    """

    def __init__(self, stream_controller: StreamController,
                 registry: Optional[SessionRegistry] = None,
                 parser: Optional[RTSPParser] = None,
                 response_builder: Optional[ResponseBuilder] = None):
        self.stream_controller = stream_controller
        self.registry = registry if registry is not None else SessionRegistry()
        self.parser = parser or RTSPParser()
        self.response_builder = response_builder or ResponseBuilder()
        self.handlers = MethodHandlers(stream_controller, self.registry)
        self.dispatch_table: Dict[str, Handler] = {
            "options": self.handlers.options,
            "describe": self.handlers.describe,
            "announce": self.handlers.announce,
            "setup": self.handlers.setup,
            "play": self.handlers.play,
            "teardown": self.handlers.teardown,
            "get_parameter": self.handlers.get_parameter,
            "set_parameter": self.handlers.set_parameter,
            "redirect": self.handlers.redirect,
        }

    @classmethod
    def from_config(cls, stream_controller: StreamController,
                    config: ServerConfig) -> "MethodDispatcher":
        """Build a dispatcher whose responses carry config.protocol_version."""
        return cls(stream_controller,
                   response_builder=ResponseBuilder(version=config.protocol_version))

    def resolve(self, method: str) -> Handler:
        """Return the handler for a method token, or the fallback."""
        return self.dispatch_table.get(method.lower(), self.handlers.fallback)

    def process_request(self, data: bytes, remote_host: str) -> bytes:
        """Run one raw request through the pipeline.

        Args:
            data: Raw request bytes
            remote_host: Address of the sender

        Returns:
            Encoded response, exactly one per request
        """
        started = time.monotonic()
        request_id = uuid.uuid4().hex

        try:
            request = self.parser.parse(data, remote_host)
        except RTSPParserError as e:
            logger.warning(f"Malformed request from {remote_host}: {e}")
            encoded = self.response_builder.build_error(
                STATUS_BAD_REQUEST, cseq=recover_cseq(data), body=str(e)
            ).encode("utf-8")
            self._finish("-", "-", "-", STATUS_BAD_REQUEST, encoded, started,
                         remote_host, request_id)
            return encoded

        status, headers, body = self._invoke(request)
        encoded = self.response_builder.build(request, headers, body, status).encode("utf-8")
        self._finish(request.method, self.metric_label(request.method), request.url,
                     status, encoded, started, remote_host, request_id)
        return encoded

    def _invoke(self, request: RTSPRequest):
        handler = self.resolve(request.method)
        try:
            headers, body = handler(request)
            return STATUS_OK, headers, body
        except SessionNotFoundError as e:
            logger.warning(f"{request.method} from {request.remote_host}: {e}")
            return STATUS_SESSION_NOT_FOUND, [], None
        except TransportError as e:
            logger.warning(f"{request.method} from {request.remote_host}: {e}")
            return STATUS_UNSUPPORTED_TRANSPORT, [], None
        except StreamControllerError as e:
            logger.error(f"Stream controller failed on {request.method}: {e}")
            return STATUS_INTERNAL_ERROR, [], None
        finally:
            metrics.ACTIVE_SESSIONS.set(len(self.registry))

    def metric_label(self, method: str) -> str:
        """Metrics label for a method token; unknown methods share one label."""
        key = method.lower()
        return key.upper() if key in self.dispatch_table else UNKNOWN_METHOD_LABEL

    def _finish(self, method: str, label: str, url: str, status: str, response: bytes,
                started: float, client: str, request_id: str) -> None:
        duration = time.monotonic() - started
        metrics.record_request(label, status, duration)
        access_logger.info(
            f"{method} {url} {status}",
            extra={
                "method": method,
                "url": url,
                "status": int(status.split(" ", 1)[0]),
                "length": len(response),
                "duration_s": round(duration, 6),
                "client": client,
                "request_id": request_id,
            },
        )
