"""
Mailbox server: WebSocket front end for the mailbox engine.

Every text frame a client sends is one JSON request, e.g.
  { "type": "send", "sender": "alice", "target": "bob", "content": "hi" }
and is answered with exactly one JSON response, padded with spaces to a
multiple of block_size bytes so that the response size only reveals its
bucket. Operations are applied one at a time, in arrival order.
"""

import asyncio
import json
import logging
import ssl
from typing import Optional

from websockets.asyncio.server import ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from mailbus.address import canonicalize, humanize
from mailbus.engine import MailboxEngine
from mailbus.errors import CorruptedQueue, MailboxError
from mailbus.storage import MemoryBackend, StorageBackend
from mailbus.types import (
    BLOCK_SIZE,
    Answer,
    Request,
    RequestType,
    pad_response,
)

logger = logging.getLogger(__name__)


def encode_answer(answer: Answer) -> dict:
    """Dump an engine answer for sending over the wire."""
    if answer.type == RequestType.PING:
        return {"type": answer.type.value, "response": answer.message}
    result = {
        "type": answer.type.value,
        "status": answer.status.value,
        "message": answer.message,
        "reason": answer.reason.value if answer.reason else "",
    }
    if answer.type == RequestType.RECV:
        result["number_of_unread_messages"] = answer.number_of_unread_messages
        result["content"] = (
            answer.content.decode("utf-8")
            if answer.content is not None
            else None
        )
        result["sender"] = humanize(answer.sender) if answer.sender else None
    elif answer.type == RequestType.SIZE:
        result["number_of_unread_messages"] = answer.number_of_unread_messages
        result["max_messages"] = answer.max_messages
    return result


def encode_error(kind: str, error: str) -> dict:
    return {"type": "error", "kind": kind, "error": error}


class Server:
    """
    WebSocket mailbox server.

    - Clients connect and send one JSON request per text frame.
    - Each request is decoded, its addresses canonicalized, and dispatched to
      the MailboxEngine under a lock.
    - The answer (or an error object) is sent back on the same connection.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 0,
        *,
        backend: Optional[StorageBackend] = None,
        block_size: int = BLOCK_SIZE,
        ssl_context: Optional[ssl.SSLContext] = None,
    ) -> None:
        self.host = host
        self.port = port
        self._ssl_context = ssl_context
        self._block_size = block_size
        self._engine = MailboxEngine(backend if backend is not None else MemoryBackend())
        # engine operations must not interleave
        self._lock = asyncio.Lock()
        self._server = None

    @property
    def engine(self) -> MailboxEngine:
        """MailboxEngine used by this server (for tests or initialization)."""
        return self._engine

    async def initialize(
        self,
        max_messages: int,
        seq_start: int,
        max_message_size: int,
        discard: bool = False,
    ) -> None:
        """Initialize the engine's configuration (once per store)."""
        async with self._lock:
            await self._engine.initialize(
                max_messages, seq_start, max_message_size, discard
            )

    async def dispatch(self, request: Request) -> Answer:
        """Apply one decoded request to the engine."""
        if request.type == RequestType.PING:
            return await self._engine.ping()
        sender = canonicalize(request.sender)
        async with self._lock:
            if request.type == RequestType.SEND:
                target = canonicalize(request.target)
                return await self._engine.send(
                    sender, target, request.content.encode("utf-8")
                )
            if request.type == RequestType.RECV:
                return await self._engine.receive(sender)
            if request.type == RequestType.SIZE:
                return await self._engine.size(sender)
            address = canonicalize(request.address)
            if request.type == RequestType.BLOCK:
                return await self._engine.block(sender, address)
            return await self._engine.unblock(sender, address)

    async def handle_text(self, message: str) -> str:
        """Decode one request frame and return the padded response frame."""
        try:
            request = Request.deserialize(message)
        except (json.JSONDecodeError, ValueError, KeyError, RecursionError) as e:
            logger.warning("mailbox server: invalid request %s", e)
            response = encode_error("invalid_request", str(e))
        else:
            try:
                answer = await self.dispatch(request)
                response = encode_answer(answer)
                logger.debug(
                    "mailbox server: %s -> %s", request.type.value, answer.status.value
                )
            except CorruptedQueue as e:
                logger.error("mailbox server: %s failed: %s", request.type.value, e)
                response = encode_error(e.kind, str(e))
            except MailboxError as e:
                logger.warning("mailbox server: %s failed: %s", request.type.value, e)
                response = encode_error(e.kind, str(e))
        return pad_response(
            json.dumps(response, ensure_ascii=False), self._block_size
        )

    async def _handle(self, ws: ServerConnection) -> None:
        try:
            async for message in ws:
                if not isinstance(message, str):
                    logger.warning("mailbox server: binary frame, drop")
                    await ws.send(
                        pad_response(
                            json.dumps(
                                encode_error("invalid_request", "binary frames are not supported")
                            ),
                            self._block_size,
                        )
                    )
                    continue
                await ws.send(await self.handle_text(message))
        except ConnectionClosed:
            pass
        finally:
            logger.debug("ws disconnected")

    async def start(self) -> "Server":
        """Start the WebSocket server. Use stop() to shut down. Pass ssl_context for WSS."""
        kwargs = {"ping_interval": 20, "ping_timeout": 20}
        if self._ssl_context is not None:
            kwargs["ssl"] = self._ssl_context
        self._server = await serve(
            self._handle,
            self.host,
            self.port,
            **kwargs,
        )
        # Resolve actual port if port=0
        if self.port == 0 and self._server.sockets:
            self.port = self._server.sockets[0].getsockname()[1]
        logger.info("mailbox server listening on %s:%s", self.host, self.port)
        return self

    async def run_forever(self) -> None:
        """Run the server until it is closed. Call after start()."""
        if self._server is None:
            raise RuntimeError("Server not started; call start() first")
        await self._server.serve_forever()

    async def stop(self) -> None:
        """Stop the WebSocket server."""
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        logger.info("mailbox server stopped")
