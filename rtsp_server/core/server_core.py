"""
Core RTSP server implementation.

This module implements the listener side of the control server:
- One TCP socket and one UDP socket bound to the same host and port
- An accept loop that gives every connection its own handler task
- A datagram endpoint that answers each UDP request with one datagram
- Graceful shutdown handling
"""

import asyncio
import logging
import signal
import socket
import sys
from typing import Optional, Set, Tuple

from .config import ServerConfig
from .connection import ConnectionHandler
from .dispatcher import MethodDispatcher
from .server_utils import (
    ServerConfigError,
    configure_datagram_opts,
    configure_socket_opts,
    peer_host,
    setup_uvloop,
)

logger = logging.getLogger(__name__)


class DatagramHandler(asyncio.DatagramProtocol):
    """Answers RTSP requests received over UDP."""

    def __init__(self, server: "RTSPServer"):
        self.server = server
        self.transport: Optional[asyncio.DatagramTransport] = None

    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data: bytes, addr):
        data = data[:self.server.config.datagram_size]
        self.server.track(asyncio.ensure_future(self.respond(data, addr)))

    async def respond(self, data: bytes, addr) -> None:
        loop = asyncio.get_running_loop()
        try:
            response = await loop.run_in_executor(
                None, self.server.dispatcher.process_request, data, peer_host(addr)
            )
        except Exception:
            logger.exception(f"Error handling datagram from {peer_host(addr)}")
            return
        if self.transport is not None and not self.transport.is_closing():
            self.transport.sendto(response, addr)

    def error_received(self, exc):
        logger.warning(f"UDP socket error: {exc}")


class RTSPServer:
    """RTSP control server listening on TCP and UDP.

    Attributes:
        dispatcher: Request pipeline shared by both transports
        config: Server configuration
    """

    def __init__(self, dispatcher: MethodDispatcher, config: Optional[ServerConfig] = None):
        self.dispatcher = dispatcher
        self.config = config or ServerConfig()
        self._tcp_sock: Optional[socket.socket] = None
        self._udp_sock: Optional[socket.socket] = None
        self._udp_transport: Optional[asyncio.DatagramTransport] = None
        self._tasks: Set[asyncio.Future] = set()
        self._shutdown_event = asyncio.Event()

    @property
    def address(self) -> Tuple[str, int]:
        if self._tcp_sock is None:
            return (self.config.host, self.config.port)
        host, port = self._tcp_sock.getsockname()[:2]
        return (host, port)

    def bind(self) -> None:
        """Bind the TCP and UDP sockets.

        Raises:
            ServerConfigError: If either socket cannot be bound
        """
        if self._tcp_sock is not None:
            return

        tcp = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            configure_socket_opts(tcp)
            tcp.bind((self.config.host, self.config.port))
            tcp.listen(self.config.backlog)
            tcp.setblocking(False)
        except (OSError, ServerConfigError) as e:
            tcp.close()
            raise ServerConfigError(
                f"Failed to bind TCP {self.config.host}:{self.config.port}: {e}"
            ) from e

        # Port 0 resolves on the TCP bind; UDP shares the resolved number
        port = tcp.getsockname()[1]
        udp = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            configure_datagram_opts(udp)
            udp.bind((self.config.host, port))
            udp.setblocking(False)
        except (OSError, ServerConfigError) as e:
            udp.close()
            tcp.close()
            raise ServerConfigError(
                f"Failed to bind UDP {self.config.host}:{port}: {e}"
            ) from e

        self._tcp_sock = tcp
        self._udp_sock = udp
        logger.info(f"Listening on {self.config.host}:{port} (TCP and UDP)")

    async def serve(self) -> None:
        """Run the accept loop and the datagram endpoint until shutdown."""
        self.bind()
        loop = asyncio.get_running_loop()

        self._udp_transport, _ = await loop.create_datagram_endpoint(
            lambda: DatagramHandler(self), sock=self._udp_sock
        )
        accept_task = asyncio.ensure_future(self._accept_loop())

        try:
            await self._shutdown_event.wait()
        finally:
            accept_task.cancel()
            await asyncio.gather(accept_task, return_exceptions=True)
            await self._close()

    async def _accept_loop(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            try:
                client_sock, addr = await loop.sock_accept(self._tcp_sock)
            except OSError as e:
                logger.error(f"Error accepting connection: {e}")
                await asyncio.sleep(self.config.read_retry_interval)
                continue

            logger.debug(f"Accepted connection from {peer_host(addr)}")
            handler = ConnectionHandler(
                client_sock, self.dispatcher.process_request, self.config
            )
            self.track(asyncio.ensure_future(self._run_connection(handler)))

    async def _run_connection(self, handler: ConnectionHandler) -> None:
        try:
            await handler.handle_connection()
        except asyncio.CancelledError:
            handler.close()
            raise
        except Exception:
            logger.exception(f"Connection handler for {handler.remote_host} "
                             f"raised an unexpected exception")
            handler.close()

    def track(self, task: asyncio.Future) -> None:
        """Keep a reference to a task until it finishes."""
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def shutdown(self) -> None:
        """Ask serve() to stop."""
        self._shutdown_event.set()

    async def _close(self) -> None:
        logger.info("Initiating graceful shutdown...")
        if self._tasks:
            logger.info(f"Cancelling {len(self._tasks)} active handlers")
            for task in list(self._tasks):
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)

        if self._udp_transport is not None:
            self._udp_transport.close()
            self._udp_transport = None
        elif self._udp_sock is not None:
            self._udp_sock.close()
        self._udp_sock = None

        if self._tcp_sock is not None:
            self._tcp_sock.close()
            self._tcp_sock = None

        self.dispatcher.stream_controller.shutdown()
        logger.info("Server shutdown complete")

    def run(self) -> None:
        """Bind, install signal handlers and serve until interrupted."""
        self.bind()
        setup_uvloop()
        asyncio.run(self._run_with_signals())

    async def _run_with_signals(self) -> None:
        if sys.platform != "win32":
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, self.shutdown)
        await self.serve()
