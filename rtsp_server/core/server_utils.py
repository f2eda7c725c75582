"""
Utility functions for RTSP server configuration and operation.

This module provides core functionality for:
- Logging setup (plain text or structured JSON)
- Event loop setup and optimization with uvloop
- Socket configuration for the shared TCP/UDP control port

The utilities in this module focus on predictable startup behaviour:
anything that goes wrong here is fatal and raised as ServerConfigError.
"""

import sys
import socket
import asyncio
import logging
from typing import Optional

from pythonjsonlogger.json import JsonFormatter

# Try to import uvloop for better performance on Linux/macOS
try:
    import uvloop

    UVLOOP_AVAILABLE = True
except ImportError:
    UVLOOP_AVAILABLE = False

LOGGER_NAME = "rtsp_server"
PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

logger = logging.getLogger(__name__)


class ServerConfigError(Exception):
    """Custom exception for server configuration errors"""

    pass


def configure_logging(level=logging.INFO, log_file=None, json_format=False):
    """Configure logging for the RTSP server.

    Args:
        level: Logging level (default: INFO)
        log_file: Optional path to log file
        json_format: Emit one JSON object per record instead of plain text

    Returns:
        Configured logger instance
    """
    root = logging.getLogger(LOGGER_NAME)
    root.setLevel(level)

    if json_format:
        formatter = JsonFormatter(JSON_FORMAT)
    else:
        formatter = logging.Formatter(PLAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    # Reconfiguring replaces previous handlers instead of stacking them
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    return root


def setup_uvloop() -> None:
    """Configure uvloop for improved event loop performance.

    Attempts to set up uvloop as the event loop policy if:
    1. uvloop is installed
    2. Running on a compatible platform (not Windows)

    Raises:
        ServerConfigError: If uvloop setup fails
    """
    if UVLOOP_AVAILABLE and sys.platform != "win32":
        try:
            asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
            logger.info("Using uvloop event loop")
        except Exception as e:
            logger.error(f"Failed to setup uvloop: {e}")
            raise ServerConfigError("Failed to initialize event loop") from e
    else:
        logger.info("uvloop not available, using the default event loop")


def configure_socket_opts(sock: socket.socket) -> None:
    """Configure options for the TCP control socket.

    Args:
        sock: Socket instance to configure

    Raises:
        ServerConfigError: If critical socket options cannot be set

    Non-critical option failures are logged but don't prevent startup.
    """
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        # Control messages are tiny; don't let Nagle hold them back
        if hasattr(socket, "TCP_NODELAY"):
            try:
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            except OSError as e:
                logger.warning(f"Failed to set TCP_NODELAY: {e}")

        sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)

    except OSError as e:
        logger.error(f"Failed to configure socket options: {e}")
        raise ServerConfigError("Socket configuration failed") from e


def configure_datagram_opts(sock: socket.socket) -> None:
    """Configure options for the UDP control socket."""
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    except OSError as e:
        logger.error(f"Failed to configure datagram socket options: {e}")
        raise ServerConfigError("Socket configuration failed") from e


def peer_host(address: Optional[tuple]) -> str:
    """Return the host part of a socket address, or '0.0.0.0' if unknown."""
    if not address:
        return "0.0.0.0"
    return str(address[0])
