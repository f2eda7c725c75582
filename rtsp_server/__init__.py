from .core import (
    RTSPServer, ServerConfig, MethodDispatcher, RTSPParser, RTSPRequest, ResponseBuilder
)
from .features import (
    SessionRegistry, StreamController, SocatStreamController, StreamSource,
    negotiate_transport
)

__version__ = '1.0.0'

__all__ = [
    # Core components
    'RTSPServer',
    'ServerConfig',
    'MethodDispatcher',
    'RTSPParser',
    'RTSPRequest',
    'ResponseBuilder',

    # Features
    'SessionRegistry',
    'StreamController',
    'SocatStreamController',
    'StreamSource',
    'negotiate_transport',
]
