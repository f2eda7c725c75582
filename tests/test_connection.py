"""
Tests for the per-connection request loop
"""
import asyncio
import socket
from unittest.mock import MagicMock

import pytest

from rtsp_server.core.config import ServerConfig
from rtsp_server.core.connection import ConnectionAbandoned, ConnectionHandler
from rtsp_server.core.dispatcher import MethodDispatcher
from tests.helpers import FakeStreamController, parse_response, rtsp_request


def fast_config(**overrides):
    values = dict(read_retry_interval=0.001, max_read_attempts=200)
    values.update(overrides)
    return ServerConfig(**values)


async def read_responses(sock, count, timeout=2.0):
    """Read until count complete responses (no bodies) have arrived."""
    loop = asyncio.get_running_loop()
    data = b""
    while data.count(b"\r\n\r\n") < count:
        chunk = await asyncio.wait_for(loop.sock_recv(sock, 4096), timeout)
        if not chunk:
            break
        data += chunk
    return [part + b"\r\n\r\n" for part in data.split(b"\r\n\r\n")[:count]]


@pytest.fixture
def socket_pair():
    server_side, client_side = socket.socketpair()
    client_side.setblocking(False)
    yield server_side, client_side
    server_side.close()
    client_side.close()


@pytest.fixture
def dispatcher():
    return MethodDispatcher(FakeStreamController())


@pytest.mark.asyncio
async def test_sequential_requests_answered_in_order(socket_pair, dispatcher):
    server_side, client_side = socket_pair
    handler = ConnectionHandler(server_side, dispatcher.process_request, fast_config())
    task = asyncio.ensure_future(handler.handle_connection())

    loop = asyncio.get_running_loop()
    await loop.sock_sendall(client_side, rtsp_request("OPTIONS", cseq=1) + rtsp_request("GET_PARAMETER", cseq=2))
    first, second = await read_responses(client_side, 2)

    assert parse_response(first)[1]["CSeq"] == "1"
    assert "Public" in parse_response(first)[1]
    assert parse_response(second)[1]["CSeq"] == "2"

    client_side.shutdown(socket.SHUT_WR)
    await asyncio.wait_for(task, 2)
    assert handler.requests_handled == 2
    assert server_side.fileno() == -1


@pytest.mark.asyncio
async def test_concurrent_connections_do_not_interleave(dispatcher):
    loop = asyncio.get_running_loop()
    pairs = [socket.socketpair() for _ in range(2)]
    for _, client_side in pairs:
        client_side.setblocking(False)
    handlers = [ConnectionHandler(server_side, dispatcher.process_request, fast_config())
                for server_side, _ in pairs]
    tasks = [asyncio.ensure_future(h.handle_connection()) for h in handlers]

    try:
        (_, first), (_, second) = pairs
        await loop.sock_sendall(first, rtsp_request("OPTIONS", cseq=11))
        await loop.sock_sendall(second, rtsp_request("OPTIONS", cseq=21))
        await loop.sock_sendall(first, rtsp_request("GET_PARAMETER", cseq=12))
        await loop.sock_sendall(second, rtsp_request("GET_PARAMETER", cseq=22))

        first_responses = await read_responses(first, 2)
        second_responses = await read_responses(second, 2)
        assert [parse_response(r)[1]["CSeq"] for r in first_responses] == ["11", "12"]
        assert [parse_response(r)[1]["CSeq"] for r in second_responses] == ["21", "22"]

        for _, client_side in pairs:
            client_side.shutdown(socket.SHUT_WR)
        await asyncio.wait_for(asyncio.gather(*tasks), 2)
        assert [h.requests_handled for h in handlers] == [2, 2]
    finally:
        for server_side, client_side in pairs:
            server_side.close()
            client_side.close()


@pytest.mark.asyncio
async def test_request_split_across_reads(socket_pair, dispatcher):
    server_side, client_side = socket_pair
    handler = ConnectionHandler(server_side, dispatcher.process_request,
                                fast_config(read_chunk_size=16))
    task = asyncio.ensure_future(handler.handle_connection())

    loop = asyncio.get_running_loop()
    data = rtsp_request("OPTIONS", cseq=5)
    await loop.sock_sendall(client_side, data[:10])
    await asyncio.sleep(0.01)
    await loop.sock_sendall(client_side, data[10:])

    (response,) = await read_responses(client_side, 1)
    assert parse_response(response)[1]["CSeq"] == "5"

    client_side.shutdown(socket.SHUT_WR)
    await asyncio.wait_for(task, 2)
    assert handler.requests_handled == 1


@pytest.mark.asyncio
async def test_idle_connection_abandoned(socket_pair, dispatcher):
    server_side, _ = socket_pair
    handler = ConnectionHandler(server_side, dispatcher.process_request,
                                fast_config(max_read_attempts=3))
    await asyncio.wait_for(handler.handle_connection(), 1)
    assert handler.requests_handled == 0
    assert server_side.fileno() == -1


@pytest.mark.asyncio
async def test_end_of_stream(socket_pair, dispatcher):
    server_side, client_side = socket_pair
    client_side.close()
    handler = ConnectionHandler(server_side, dispatcher.process_request, fast_config())
    await asyncio.wait_for(handler.handle_connection(), 1)
    assert handler.requests_handled == 0
    assert server_side.fileno() == -1


@pytest.mark.asyncio
async def test_oversized_request_abandoned(socket_pair, dispatcher):
    server_side, client_side = socket_pair
    config = fast_config(read_chunk_size=16, max_request_size=64)
    handler = ConnectionHandler(server_side, dispatcher.process_request, config)
    task = asyncio.ensure_future(handler.handle_connection())

    await asyncio.get_running_loop().sock_sendall(client_side, b"X" * 200)
    await asyncio.wait_for(task, 1)
    assert handler.requests_handled == 0
    assert server_side.fileno() == -1


@pytest.mark.asyncio
async def test_read_chunk_retries_would_block():
    sock = MagicMock()
    sock.getpeername.return_value = ("192.168.1.5", 40000)
    sock.recv.side_effect = [BlockingIOError(), BlockingIOError(), b"data"]

    handler = ConnectionHandler(sock, MagicMock(), fast_config(max_read_attempts=5))
    assert handler.remote_host == "192.168.1.5"
    assert await handler.read_chunk() == b"data"
    assert sock.recv.call_count == 3
    sock.recv.assert_called_with(200)


@pytest.mark.asyncio
async def test_read_chunk_gives_up():
    sock = MagicMock()
    sock.getpeername.return_value = ("192.168.1.5", 40000)
    sock.recv.side_effect = BlockingIOError()

    handler = ConnectionHandler(sock, MagicMock(), fast_config(max_read_attempts=4))
    with pytest.raises(ConnectionAbandoned):
        await handler.read_chunk()
    assert sock.recv.call_count == 5


@pytest.mark.asyncio
async def test_socket_error_closes_once():
    sock = MagicMock()
    sock.getpeername.side_effect = OSError("not connected")
    sock.recv.side_effect = ConnectionResetError()

    handler = ConnectionHandler(sock, MagicMock(), fast_config())
    assert handler.remote_host == "0.0.0.0"
    await handler.handle_connection()
    handler.close()
    sock.close.assert_called_once_with()
