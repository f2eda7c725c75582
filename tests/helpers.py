"""
Shared test doubles for the RTSP server tests
"""
from rtsp_server.features.stream_controller import StreamController, StreamControllerError

SDP = "v=0\r\ns=Test stream\r\nm=video 0 RTP/AVP 33\r\na=control:track1\r\n"


class FakeStreamController(StreamController):
    """Records calls instead of relaying media."""

    def __init__(self, interface_address="10.0.0.1", server_port=6000):
        self._interface_address = interface_address
        self.server_port = server_port
        self.setup_calls = []
        self.started = []
        self.stopped = []
        self.fail_on = set()
        self.shut_down = False

    @property
    def interface_address(self):
        return self._interface_address

    @property
    def rtp_sequence(self):
        return 1234

    @property
    def rtp_timestamp(self):
        return 5678

    def description(self, is_multicast=False):
        if "describe" in self.fail_on:
            raise StreamControllerError("description unavailable")
        return SDP

    def setup(self, session_id, transport_url, stream_index=1):
        if "setup" in self.fail_on:
            raise StreamControllerError("no free ports")
        self.setup_calls.append((session_id, transport_url, stream_index))
        return self.server_port

    def start_streaming(self, session_id):
        if "play" in self.fail_on:
            raise StreamControllerError("relay failed")
        self.started.append(session_id)

    def stop_streaming(self, session_id):
        self.stopped.append(session_id)

    def shutdown(self):
        self.shut_down = True


def rtsp_request(method, url="rtsp://10.0.0.1:554/stream", cseq=1, headers=None, body=""):
    """Build raw request bytes."""
    lines = [f"{method} {url} RTSP/1.0", f"CSeq: {cseq}"]
    for name, value in (headers or {}).items():
        lines.append(f"{name}: {value}")
    if body:
        lines.append(f"Content-Length: {len(body.encode('utf-8'))}")
    return ("\r\n".join(lines) + "\r\n\r\n" + body).encode("utf-8")


def parse_response(data):
    """Split a raw response into (status line, header dict, body)."""
    text = data.decode("utf-8") if isinstance(data, bytes) else data
    head, _, body = text.partition("\r\n\r\n")
    lines = head.split("\r\n")
    headers = {}
    for line in lines[1:]:
        name, _, value = line.partition(":")
        headers[name.strip()] = value.strip()
    return lines[0], headers, body
