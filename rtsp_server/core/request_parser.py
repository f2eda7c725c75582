"""
RTSP request parser.

This module turns the raw bytes of a control request into an RTSPRequest:
- Request line split into method, target URL and protocol version
- Header lines collected into a mapping (case as received)
- Optional body, bounded by Content-Length
- Derived values used by the method handlers (CSeq, session id,
  stream index, multicast flag, client transport URL)

It also knows where one message ends inside a byte buffer so that a
connection can carry several requests back to back.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Optional

HEADER_TERMINATOR = b"\r\n\r\n"
SCHEME_MARKER = "://"
PROTOCOL_PREFIX = "RTSP/"

_CONTENT_LENGTH_RE = re.compile(rb"^content-length:\s*(\d+)\s*$", re.IGNORECASE | re.MULTILINE)
_CSEQ_RE = re.compile(rb"^cseq:\s*(\d+)", re.IGNORECASE | re.MULTILINE)
_STREAM_INDEX_RE = re.compile(r"(?:track|streamid=)(\d+)", re.IGNORECASE)
_PORT_PAIR_RE = r"(?:^|;){name}=(\d+)(?:-(\d+))?"
_PARAM_RE = r"(?:^|;){name}=([^;]+)"


class RTSPParserError(Exception):
    """Raised when a request cannot be tokenized."""
    pass


@dataclass
class RTSPRequest:
    """A parsed control request."""
    method: str
    url: str
    version: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""
    remote_host: str = "0.0.0.0"

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Case-insensitive header lookup."""
        if name in self.headers:
            return self.headers[name]
        lower = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lower:
                return value
        return default

    @property
    def cseq(self) -> str:
        return self.header("CSeq", "")

    @property
    def transport(self) -> str:
        return self.header("Transport", "")

    @property
    def accept(self) -> str:
        return self.header("Accept", "application/sdp")

    @property
    def range(self) -> Optional[str]:
        return self.header("Range")

    @property
    def session_id(self) -> Optional[int]:
        """Session id from a 'Session: <id>[;timeout=N]' header."""
        value = self.header("Session")
        if not value:
            return None
        token = value.split(";", 1)[0].strip()
        try:
            return int(token)
        except ValueError:
            return None

    @property
    def stream_index(self) -> int:
        match = _STREAM_INDEX_RE.search(self.url)
        return int(match.group(1)) if match else 1

    @property
    def is_multicast(self) -> bool:
        return "multicast" in self.url.lower() or "multicast" in self.transport.lower()

    @property
    def transport_url(self) -> str:
        """Destination the stream controller should relay to, as 'host:port'."""
        transport = self.transport
        if "unicast" in transport:
            host = self.remote_host
            port = _transport_param(transport, "client_port", _PORT_PAIR_RE)
        else:
            host = _transport_param(transport, "destination", _PARAM_RE) or self.remote_host
            port = _transport_param(transport, "port", _PORT_PAIR_RE)
        return f"{host}:{port}" if port else host


def _transport_param(transport: str, name: str, pattern: str) -> Optional[str]:
    match = re.search(pattern.format(name=re.escape(name)), transport)
    return match.group(1).strip() if match else None


def find_message_end(buffer: bytes) -> int:
    """Return the byte length of the first complete message in buffer.

    A message is complete once its header block is terminated and any
    Content-Length body has arrived. Returns -1 if more bytes are needed.
    """
    head_end = buffer.find(HEADER_TERMINATOR)
    if head_end < 0:
        return -1
    head_end += len(HEADER_TERMINATOR)

    match = _CONTENT_LENGTH_RE.search(buffer[:head_end])
    body_length = int(match.group(1)) if match else 0
    if len(buffer) < head_end + body_length:
        return -1
    return head_end + body_length


def recover_cseq(data: bytes) -> Optional[str]:
    """Best-effort CSeq extraction from bytes that failed to parse."""
    match = _CSEQ_RE.search(data)
    return match.group(1).decode("ascii") if match else None


class RTSPParser:
    """Tokenizes RTSP requests with validation.

    Constants:
        MAX_HEADERS: Maximum number of headers per request
        MAX_HEADER_SIZE: Maximum size per header value
    """
    MAX_HEADERS = 100
    MAX_HEADER_SIZE = 8192

    def parse(self, data: bytes, remote_host: str) -> RTSPRequest:
        """Parse one request.

        Args:
            data: Raw request bytes
            remote_host: Address of the client that sent them

        Returns:
            Parsed RTSPRequest

        Raises:
            RTSPParserError: If the request line or headers are malformed
        """
        text = data.decode("utf-8", errors="replace")
        head, _, body = text.partition("\r\n\r\n")
        lines = head.split("\r\n")

        # Skip blank lines between pipelined messages
        while lines and not lines[0].strip():
            lines.pop(0)
        if not lines:
            raise RTSPParserError("Empty request")

        method, url, version = self._parse_request_line(lines[0])

        headers: Dict[str, str] = {}
        for line in lines[1:]:
            if ":" not in line:
                continue
            if len(headers) >= self.MAX_HEADERS:
                raise RTSPParserError("Too many headers")
            name, value = line.split(":", 1)
            value = value.strip()
            if len(value) > self.MAX_HEADER_SIZE:
                raise RTSPParserError(f"Header too long: {name.strip()}")
            headers[name.strip()] = value

        return RTSPRequest(
            method=method,
            url=url,
            version=version,
            headers=headers,
            body=body,
            remote_host=remote_host,
        )

    def _parse_request_line(self, line: str):
        parts = line.split()
        if len(parts) != 3:
            raise RTSPParserError("Invalid request line")

        method, url, version = parts
        if SCHEME_MARKER not in url:
            raise RTSPParserError(f"Request target has no scheme: {url}")
        if not version.upper().startswith(PROTOCOL_PREFIX):
            raise RTSPParserError(f"Unsupported protocol: {version}")
        return method, url, version[len(PROTOCOL_PREFIX):]
