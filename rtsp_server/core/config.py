"""
Server configuration.

All tunables of the control server live in one dataclass so the listener,
the connection handler and the CLI agree on defaults and validation.
"""

from dataclasses import dataclass
from typing import Any

DEFAULT_RTSP_PORT = 554


@dataclass
class ServerConfig:
    """RTSP server configuration settings.

    Attributes:
        host: Interface address to bind the TCP and UDP sockets to
        port: Shared control port (0 lets the OS choose)
        read_chunk_size: Bytes requested per non-blocking TCP read
        read_retry_interval: Seconds to wait after a would-block read
        max_read_attempts: Would-block retries before a connection is abandoned
        max_request_size: Buffered request bytes before a connection is abandoned
        datagram_size: Receive buffer for UDP requests
        backlog: TCP listen backlog
        protocol_version: Version advertised in response status lines
    """
    host: str = "0.0.0.0"
    port: int = DEFAULT_RTSP_PORT
    read_chunk_size: int = 200
    read_retry_interval: float = 0.01
    max_read_attempts: int = 50
    max_request_size: int = 65536
    datagram_size: int = 4096
    backlog: int = 128
    protocol_version: str = "1.0"

    def __post_init__(self):
        if not isinstance(self.port, int) or isinstance(self.port, bool):
            raise ValueError("Port must be an integer")
        if self.port < 0 or self.port > 65535:
            raise ValueError("Port number must be between 0 and 65535")

        for name in ("read_chunk_size", "max_read_attempts", "max_request_size",
                     "datagram_size", "backlog"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValueError(f"{name} must be an integer")
            if value < 1:
                raise ValueError(f"{name} must be at least 1")

        if self.read_retry_interval < 0:
            raise ValueError("read_retry_interval must not be negative")
        if self.max_request_size < self.read_chunk_size:
            raise ValueError("max_request_size must be at least read_chunk_size")

    @property
    def read_timeout(self) -> float:
        """Approximate idle time before a connection is abandoned."""
        return self.read_retry_interval * self.max_read_attempts

    @classmethod
    def from_args(cls, args: Any) -> "ServerConfig":
        """Build a configuration from an argparse namespace."""
        return cls(
            host=args.host,
            port=args.port,
            read_chunk_size=args.read_chunk_size,
            read_retry_interval=args.read_retry_interval,
            max_read_attempts=args.max_read_attempts,
        )
