"""
Transport header negotiation.

The server answers a SETUP by echoing the client's Transport header with
the delivery addresses and the server port pair filled in. Everything here
is a pure function of its arguments.
"""

"""
Copyright 2025 Chris Bunting
File: transport.py | Purpose: Transport header negotiation
@author Chris Bunting | @version 1.0.0

CHANGELOG:
2025-09-01 - Chris Bunting: Initial implementation
"""

import re
from typing import Optional, Tuple

from .sessions import TransportDescriptor

UNICAST_MARKER = "unicast"
UNICAST_PORT_SPECIFIER = "client_port"
MULTICAST_PORT_SPECIFIER = "port"


class TransportError(Exception):
    """Raised when a Transport header cannot be negotiated."""
    pass


def port_specifier(transport_spec: str) -> str:
    """Return the port parameter name the client used."""
    if UNICAST_MARKER in transport_spec:
        return UNICAST_PORT_SPECIFIER
    return MULTICAST_PORT_SPECIFIER


def negotiate_transport(transport_spec: str, remote_host: str,
                        interface_address: str, server_port: int) -> str:
    """Build the Transport header value for a SETUP response.

    Args:
        transport_spec: Transport header sent by the client
        remote_host: Address of the client
        interface_address: Address the server streams from
        server_port: First port of the server's allocated pair

    Returns:
        The client's spec with destination/source inserted before the port
        parameter and server_port=<port>-<port+1> appended after it.

    Raises:
        TransportError: If the spec has no port parameter
    """
    if not transport_spec:
        raise TransportError("Missing Transport header")

    specifier = port_specifier(transport_spec)
    prefix, found, ports = transport_spec.partition(specifier)
    if not found:
        raise TransportError(f"Transport has no {specifier} parameter: {transport_spec}")

    prefix += f"destination={remote_host};source={interface_address};"
    ports = f"{specifier}{ports};server_port={server_port}-{server_port + 1}"
    return prefix + ports


def parse_client_ports(transport_spec: str) -> Optional[Tuple[int, int]]:
    """Return the client's (rtp, rtcp) port pair, if it sent one."""
    specifier = port_specifier(transport_spec)
    match = re.search(rf"(?:^|;){specifier}=(\d+)(?:-(\d+))?", transport_spec)
    if not match:
        return None
    rtp = int(match.group(1))
    rtcp = int(match.group(2)) if match.group(2) else rtp + 1
    return (rtp, rtcp)


def describe_transport(transport_spec: str, server_port: int) -> TransportDescriptor:
    return TransportDescriptor(
        multicast=UNICAST_MARKER not in transport_spec,
        client_ports=parse_client_ports(transport_spec),
        server_port=server_port,
    )
