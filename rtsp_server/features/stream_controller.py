"""
Stream controller: the boundary between control plane and media relay.

The RTSP core never touches media. It asks a StreamController to describe
the available streams, to reserve a server port for a client, and to start
or stop relaying. SocatStreamController implements that contract by running
one socat relay per track, forwarding an existing multicast RTP source to
the client's negotiated destination.
"""

"""
Copyright 2025 Chris Bunting
File: stream_controller.py | Purpose: Stream controller contract and socat relay
@author Chris Bunting | @version 1.0.1

CHANGELOG:
2025-09-06 - Chris Bunting: Reap relays spawned after their session was torn down
2025-09-03 - Chris Bunting: Controller is injected instead of a process-wide singleton
2025-09-01 - Chris Bunting: Initial implementation
"""

import logging
import random
import shutil
import subprocess
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

RTP_CLOCK_RATE = 90000
MP2T_PAYLOAD_TYPE = 33


class StreamControllerError(Exception):
    """Raised when the media relay cannot fulfil a request."""
    pass


class StreamController(ABC):
    """Contract the RTSP core relies on to drive media delivery."""

    @property
    @abstractmethod
    def interface_address(self) -> str:
        """Address the server streams from."""

    @abstractmethod
    def description(self, is_multicast: bool = False) -> str:
        """Session description (SDP) for the available streams."""

    @abstractmethod
    def setup(self, session_id: int, transport_url: str, stream_index: int = 1) -> int:
        """Reserve a server port pair for a client; return the first port."""

    @abstractmethod
    def start_streaming(self, session_id: int) -> None:
        pass

    @abstractmethod
    def stop_streaming(self, session_id: int) -> None:
        pass

    @property
    @abstractmethod
    def rtp_sequence(self) -> int:
        pass

    @property
    @abstractmethod
    def rtp_timestamp(self) -> int:
        pass

    def shutdown(self) -> None:
        """Release every relay. Default: nothing to release."""


@dataclass(frozen=True)
class StreamSource:
    """A multicast RTP source feeding one track."""
    address: str
    port: int

    @classmethod
    def parse(cls, value: str) -> "StreamSource":
        """Parse 'ADDRESS:PORT'."""
        address, sep, port = value.rpartition(":")
        if not sep or not address:
            raise ValueError(f"Stream source must be ADDRESS:PORT, got {value!r}")
        try:
            return cls(address, int(port))
        except ValueError:
            raise ValueError(f"Invalid port in stream source {value!r}") from None


@dataclass
class _TrackRelay:
    transport_url: str
    server_port: int
    process: Optional[subprocess.Popen] = None
    starting: bool = False


class SocatStreamController(StreamController):
    """Relays multicast sources to clients with socat child processes.

    Args:
        interface_address: Address advertised as the stream source
        sources: One StreamSource per track (track1 is sources[0])
        socat_path: socat executable
        buffer_size: socat -b value
        port_range: Half-open range server port pairs are drawn from
        payload_type: RTP payload type advertised in the SDP
        multicast_ttl: TTL advertised for multicast descriptions
        clock: Monotonic time source, injectable for tests
    """

    def __init__(self, interface_address: str, sources: Sequence[StreamSource], *,
                 socat_path: str = "socat",
                 buffer_size: int = 1500,
                 port_range: Tuple[int, int] = (50000, 60000),
                 payload_type: int = MP2T_PAYLOAD_TYPE,
                 multicast_ttl: int = 16,
                 session_name: str = "RTSP stream",
                 clock: Callable[[], float] = time.monotonic):
        if not sources:
            raise ValueError("At least one stream source is required")
        low, high = port_range
        if low < 1024 or high > 65535 or high - low < 2:
            raise ValueError("port_range must lie within 1024-65535 and hold a port pair")

        self._interface_address = interface_address
        self.sources: List[StreamSource] = list(sources)
        self.socat_path = socat_path
        self.buffer_size = buffer_size
        self.port_range = port_range
        self.payload_type = payload_type
        self.multicast_ttl = multicast_ttl
        self.session_name = session_name
        self._clock = clock

        self._relays: Dict[int, Dict[int, _TrackRelay]] = {}
        self._ports_in_use = set()
        self._lock = threading.Lock()

        self._sequence_base = random.randrange(1 << 16)
        self._timestamp_base = random.randrange(1 << 32)
        self._started_at = clock()
        self._version = int(time.time())

    @property
    def interface_address(self) -> str:
        return self._interface_address

    @property
    def rtp_sequence(self) -> int:
        return self._sequence_base

    @property
    def rtp_timestamp(self) -> int:
        elapsed = self._clock() - self._started_at
        return (self._timestamp_base + int(elapsed * RTP_CLOCK_RATE)) % (1 << 32)

    def description(self, is_multicast: bool = False) -> str:
        lines = [
            "v=0",
            f"o=- {self._version} {self._version} IN IP4 {self.interface_address}",
            f"s={self.session_name}",
        ]
        if is_multicast:
            lines.append(f"c=IN IP4 {self.sources[0].address}/{self.multicast_ttl}")
        else:
            lines.append(f"c=IN IP4 {self.interface_address}")
        lines += ["t=0 0", "a=control:*"]

        for index, source in enumerate(self.sources, start=1):
            port = source.port if is_multicast else 0
            lines += [
                f"m=video {port} RTP/AVP {self.payload_type}",
                f"a=rtpmap:{self.payload_type} MP2T/{RTP_CLOCK_RATE}",
                f"a=control:track{index}",
            ]
        return "\r\n".join(lines) + "\r\n"

    def setup(self, session_id: int, transport_url: str, stream_index: int = 1) -> int:
        self._source(stream_index)
        with self._lock:
            server_port = self._allocate_port()
            tracks = self._relays.setdefault(session_id, {})
            previous = tracks.get(stream_index)
            if previous is not None:
                self._ports_in_use.discard(previous.server_port)
            tracks[stream_index] = _TrackRelay(transport_url, server_port)

        if previous is not None and previous.process is not None:
            self._terminate(previous.process)
        logger.debug(f"Session {session_id} track{stream_index} -> {transport_url} "
                     f"from port {server_port}")
        return server_port

    def start_streaming(self, session_id: int) -> None:
        with self._lock:
            tracks = self._relays.get(session_id)
            if tracks is None:
                raise StreamControllerError(f"Session {session_id} was never set up")
            pending = [(i, t) for i, t in tracks.items()
                       if t.process is None and not t.starting]
            for _, relay in pending:
                relay.starting = True

        for index, relay in pending:
            command = self.relay_command(index, relay)
            try:
                process = subprocess.Popen(
                    command,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )
            except OSError as e:
                with self._lock:
                    relay.starting = False
                raise StreamControllerError(f"Failed to start relay: {e}") from e

            with self._lock:
                relay.starting = False
                # A teardown may have removed the relay while socat was spawning
                current = self._relays.get(session_id, {}).get(index) is relay
                if current:
                    relay.process = process

            if not current:
                logger.info(f"Session {session_id} was torn down during start, "
                            f"stopping relay pid={process.pid}")
                self._terminate(process)
                continue
            logger.info(f"Started relay for session {session_id} track{index} "
                        f"(pid={process.pid})")

    def stop_streaming(self, session_id: int) -> None:
        with self._lock:
            tracks = self._relays.pop(session_id, {})
            for relay in tracks.values():
                self._ports_in_use.discard(relay.server_port)

        for index, relay in tracks.items():
            if relay.process is None:
                continue
            self._terminate(relay.process)
            logger.info(f"Stopped relay for session {session_id} track{index}")

    def shutdown(self) -> None:
        with self._lock:
            session_ids = list(self._relays)
        for session_id in session_ids:
            self.stop_streaming(session_id)

    @staticmethod
    def _terminate(process: subprocess.Popen) -> None:
        process.terminate()
        try:
            process.wait(timeout=2)
        except subprocess.TimeoutExpired:
            logger.warning(f"Relay pid={process.pid} ignored SIGTERM, killing")
            process.kill()
            process.wait()

    def relay_command(self, stream_index: int, relay: _TrackRelay) -> List[str]:
        source = self._source(stream_index)
        receive = (f"UDP4-RECV:{source.port},reuseaddr,"
                   f"ip-add-membership={source.address}:{self.interface_address}")
        send = f"UDP4-SENDTO:{relay.transport_url},sourceport={relay.server_port}"
        return [self.socat_path, "-b", str(self.buffer_size), receive, send]

    def check_available(self) -> None:
        """Fail early when the socat executable cannot be found."""
        if shutil.which(self.socat_path) is None:
            raise StreamControllerError(f"socat executable not found: {self.socat_path}")

    def _source(self, stream_index: int) -> StreamSource:
        if not 1 <= stream_index <= len(self.sources):
            raise StreamControllerError(f"No source for track{stream_index}")
        return self.sources[stream_index - 1]

    def _allocate_port(self) -> int:
        # Caller holds the lock
        low, high = self.port_range
        first_even = low + (low % 2)
        candidates = range(first_even, high - 1, 2)
        free = [port for port in candidates if port not in self._ports_in_use]
        if not free:
            raise StreamControllerError("No free server ports")
        port = random.choice(free)
        self._ports_in_use.add(port)
        return port
