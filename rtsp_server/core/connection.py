"""
Per-connection request loop for RTSP over TCP.

A control connection carries any number of request/response cycles. Reads
are non-blocking and bounded: a read that would block is retried after a
short delay, and a connection that stays silent for too many attempts is
abandoned.
"""

import asyncio
import logging
import socket
from typing import Callable

from .config import ServerConfig
from .request_parser import find_message_end
from .server_utils import peer_host
from ..features import metrics

logger = logging.getLogger(__name__)

ProcessRequest = Callable[[bytes, str], bytes]


class ConnectionAbandoned(Exception):
    """Raised when a connection stops being worth waiting for."""
    pass


class ConnectionHandler:
    """Owns one accepted TCP socket until it is closed.

    Args:
        sock: Accepted client socket
        process_request: Dispatch pipeline, called as process_request(data, host)
        config: Server configuration (chunk size, retry interval, attempts)
    """

    def __init__(self, sock: socket.socket, process_request: ProcessRequest,
                 config: ServerConfig):
        self.sock = sock
        self.process_request = process_request
        self.config = config
        self.buffer = b""
        self.requests_handled = 0
        self._closed = False

        try:
            self.remote_host = peer_host(sock.getpeername())
        except OSError:
            self.remote_host = "0.0.0.0"

    async def handle_connection(self) -> None:
        """Serve requests in arrival order until EOF, error or abandonment."""
        loop = asyncio.get_running_loop()
        self.sock.setblocking(False)
        metrics.OPEN_CONNECTIONS.inc()

        try:
            while True:
                data = await self._next_message()
                if data is None:
                    break

                response = await loop.run_in_executor(
                    None, self.process_request, data, self.remote_host
                )
                await loop.sock_sendall(self.sock, response)
                self.requests_handled += 1

        except ConnectionAbandoned as e:
            logger.debug(f"Abandoning connection from {self.remote_host}: {e}")
        except (ConnectionError, OSError) as e:
            logger.info(f"Connection from {self.remote_host} failed: {e}")
        finally:
            metrics.OPEN_CONNECTIONS.dec()
            self.close()

    async def _next_message(self):
        """Return the next complete request, or None at end of stream."""
        while True:
            end = find_message_end(self.buffer)
            if end >= 0:
                data, self.buffer = self.buffer[:end], self.buffer[end:]
                return data

            if len(self.buffer) >= self.config.max_request_size:
                raise ConnectionAbandoned("request too large")

            chunk = await self.read_chunk()
            if not chunk:
                if self.buffer.strip():
                    logger.debug(f"Discarding {len(self.buffer)} incomplete bytes "
                                 f"from {self.remote_host}")
                return None
            self.buffer += chunk

    async def read_chunk(self) -> bytes:
        """Non-blocking read with bounded retries.

        Raises:
            ConnectionAbandoned: If the socket stays empty for
                max_read_attempts retries
        """
        attempts = 0
        while True:
            try:
                return self.sock.recv(self.config.read_chunk_size)
            except (BlockingIOError, InterruptedError):
                if attempts >= self.config.max_read_attempts:
                    raise ConnectionAbandoned(
                        f"no data after {attempts} retries"
                    ) from None
                attempts += 1
                await asyncio.sleep(self.config.read_retry_interval)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self.sock.close()
        except OSError as e:
            logger.debug(f"Error closing connection: {e}")
