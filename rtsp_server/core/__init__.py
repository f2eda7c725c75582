"""
Core server components
"""

from .config import ServerConfig
from .request_parser import RTSPParser, RTSPRequest, RTSPParserError
from .response import ResponseBuilder
from .dispatcher import MethodDispatcher
from .connection import ConnectionHandler
from .server_core import RTSPServer

# Expose public interface
__all__ = [
    "ServerConfig",
    "RTSPParser",
    "RTSPRequest",
    "RTSPParserError",
    "ResponseBuilder",
    "MethodDispatcher",
    "ConnectionHandler",
    "RTSPServer",
]
