"""
RTSP response assembly.

A response is a status line, CSeq, entity headers when a body is present,
a Date header, the handler's own headers and finally the body, all joined
with CRLF.
"""

from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from .request_parser import RTSPRequest

STATUS_OK = "200 OK"
STATUS_BAD_REQUEST = "400 Bad Request"
STATUS_SESSION_NOT_FOUND = "454 Session Not Found"
STATUS_UNSUPPORTED_TRANSPORT = "461 Unsupported Transport"
STATUS_INTERNAL_ERROR = "500 Internal Server Error"

DATE_FORMAT = "%a, %d %b %Y %H:%M:%S GMT"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ResponseBuilder:
    """Builds wire-format responses.

    Args:
        version: Protocol version for the status line
        clock: Callable returning the current UTC time
    """

    def __init__(self, version: str = "1.0",
                 clock: Callable[[], datetime] = utc_now):
        self.version = version
        self.clock = clock

    def build(self, request: RTSPRequest, headers: Optional[Sequence[str]] = None,
              body: Optional[str] = None, status: str = STATUS_OK) -> str:
        """Build the response to a parsed request."""
        lines = [self.status_line(status), f"CSeq: {request.cseq}"]

        if body is not None:
            lines.append(f"Content-Type: {request.accept}")
            lines.append(f"Content-Base: {request.url}/")
            lines.append(f"Content-Length: {len(body.encode('utf-8'))}")

        lines.append(self.date_header())
        lines.extend(headers or [])
        return self._join(lines, body)

    def build_error(self, status: str, cseq: Optional[str] = None,
                    body: Optional[str] = None) -> str:
        """Build a response when no request could be parsed."""
        lines = [self.status_line(status)]
        if cseq is not None:
            lines.append(f"CSeq: {cseq}")
        if body is not None:
            lines.append("Content-Type: text/plain")
            lines.append(f"Content-Length: {len(body.encode('utf-8'))}")
        lines.append(self.date_header())
        return self._join(lines, body)

    def status_line(self, status: str) -> str:
        return f"RTSP/{self.version} {status}"

    def date_header(self) -> str:
        return f"Date: {self.clock().strftime(DATE_FORMAT)}"

    @staticmethod
    def _join(lines: List[str], body: Optional[str]) -> str:
        # Blank line separates the header block from the (possibly empty) body
        return "\r\n".join(lines) + "\r\n\r\n" + (body or "")
