"""Tests for mailbus.server request handling."""

import json

import pytest
import websockets

from mailbus.address import canonicalize
from mailbus.server import Server, encode_answer
from mailbus.state import MessageStore
from mailbus.types import (
    Answer,
    FailureReason,
    Request,
    RequestType,
    ResponseStatus,
)


async def _handle(server: Server, request: dict) -> dict:
    frame = await server.handle_text(json.dumps(request))
    assert len(frame.encode("utf-8")) % 256 == 0
    return json.loads(frame)


# -----------------------------------------------------------------------------
# encode_answer
# -----------------------------------------------------------------------------


def test_encode_recv_answer_humanizes_sender():
    """RECV answers carry text content, the presentable sender and the unread count."""
    answer = Answer(
        type=RequestType.RECV,
        status=ResponseStatus.SUCCESS,
        message="Message received.",
        number_of_unread_messages=2,
        content="héllo".encode("utf-8"),
        sender=canonicalize("alice"),
    )
    data = encode_answer(answer)
    assert data["content"] == "héllo"
    assert data["sender"] == "alice"
    assert data["number_of_unread_messages"] == 2
    assert data["reason"] == ""


def test_encode_failed_recv_has_zero_count():
    """A failed RECV still reports 0 unread messages, never a missing field."""
    answer = Answer(
        type=RequestType.RECV,
        status=ResponseStatus.FAILURE,
        message="No messages.",
        reason=FailureReason.NO_MESSAGES,
    )
    data = encode_answer(answer)
    assert data["number_of_unread_messages"] == 0
    assert data["content"] is None
    assert data["sender"] is None
    assert data["reason"] == "no messages"


def test_encode_recv_answer_decodes_strictly():
    """Stored content that is not UTF-8 is an error, never silently replaced."""
    answer = Answer(
        type=RequestType.RECV,
        status=ResponseStatus.SUCCESS,
        message="Message received.",
        content=b"\xff\xfe",
        sender=canonicalize("alice"),
    )
    with pytest.raises(UnicodeDecodeError):
        encode_answer(answer)


def test_encode_send_answer_is_minimal():
    """SEND answers only carry type, status, message and reason."""
    answer = Answer(
        type=RequestType.SEND, status=ResponseStatus.SUCCESS, message="Message sent."
    )
    assert set(encode_answer(answer)) == {"type", "status", "message", "reason"}


# -----------------------------------------------------------------------------
# handle_text / dispatch
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_handle_text_round_trip():
    """send then recv through handle_text returns the message to its target."""
    server = Server()
    await server.initialize(4, 10000, 20, False)
    sent = await _handle(
        server,
        Request(
            type=RequestType.SEND, sender="a", target="b", content="hi person 2"
        ).model_dump(),
    )
    got = await _handle(server, {"type": "recv", "sender": "b"})
    assert sent["status"] == "success"
    assert got["content"] == "hi person 2"
    assert got["sender"] == "a"


@pytest.mark.asyncio
async def test_handle_text_reports_corruption():
    """A corrupted mailbox is reported as its own error kind."""
    server = Server()
    await server.initialize(4, 1, 20, False)
    await _handle(server, {"type": "send", "sender": "a", "target": "b", "content": "x"})
    async with server.engine.backend.transaction() as storage:
        await MessageStore(storage).remove(1)

    data = await _handle(server, {"type": "recv", "sender": "b"})
    assert data["type"] == "error"
    assert data["kind"] == "corrupted_queue"


@pytest.mark.asyncio
async def test_handle_text_uninitialized_kind():
    """Engine errors keep their kind on the wire."""
    server = Server()
    data = await _handle(server, {"type": "size", "sender": "a"})
    assert data == {
        "type": "error",
        "kind": "not_initialized",
        "error": "mailbox has not been initialized",
    }


@pytest.mark.asyncio
async def test_handle_text_bad_address():
    """Addresses that cannot be canonicalized are reported, not dispatched."""
    server = Server()
    await server.initialize(4, 1, 20, False)
    data = await _handle(server, {"type": "block", "sender": "a", "address": ""})
    assert data["kind"] == "invalid_address"


@pytest.mark.asyncio
async def test_custom_block_size():
    """block_size controls the padding bucket."""
    server = Server(block_size=64)
    frame = await server.handle_text(json.dumps({"type": "ping"}))
    assert len(frame) == 64


# -----------------------------------------------------------------------------
# Frames that cannot be decoded
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_handle_text_rejects_lone_surrogate():
    """Content that cannot be encoded as UTF-8 is an invalid request."""
    server = Server()
    await server.initialize(4, 1, 20, False)
    # json.dumps escapes the surrogate, json.loads restores it
    data = await _handle(
        server, {"type": "send", "sender": "a", "target": "b", "content": "\ud800"}
    )
    assert data["type"] == "error"
    assert data["kind"] == "invalid_request"
    size = await _handle(server, {"type": "size", "sender": "b"})
    assert size["number_of_unread_messages"] == 0


@pytest.mark.asyncio
async def test_handle_text_rejects_deep_nesting():
    """JSON nested past the decoder's recursion limit is an invalid request."""
    server = Server()
    frame = await server.handle_text("[" * 100000 + "]" * 100000)
    assert len(frame) % 256 == 0
    data = json.loads(frame)
    assert data["type"] == "error"
    assert data["kind"] == "invalid_request"


@pytest.mark.asyncio
async def test_undecodable_frames_keep_connection_open():
    """A surrogate frame and a deeply nested frame get errors on a live socket."""
    server = Server(host="127.0.0.1", port=0)
    await server.initialize(4, 1, 20, False)
    await server.start()
    try:
        async with websockets.connect(f"ws://127.0.0.1:{server.port}") as ws:
            await ws.send(
                json.dumps(
                    {"type": "send", "sender": "a", "target": "b", "content": "\ud800"}
                )
            )
            surrogate = json.loads(await ws.recv())
            await ws.send("[" * 100000 + "]" * 100000)
            nested = json.loads(await ws.recv())
            await ws.send(json.dumps({"type": "ping"}))
            pong = json.loads(await ws.recv())
    finally:
        await server.stop()

    assert surrogate["kind"] == "invalid_request"
    assert nested["kind"] == "invalid_request"
    assert pong == {"type": "ping", "response": "pong"}
