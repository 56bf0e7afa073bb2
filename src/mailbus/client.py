"""
Mailbox client: talk to a mailbus server over one WebSocket.

Usage:
    client = Client("ws://localhost:8765")
    await client.connect()
    await client.send("Hello", sender="alice", target="bob")
    reply = await client.recv("bob")
    print(reply.content, reply.sender, reply.number_of_unread_messages)
    await client.close()
"""

import asyncio
import json
import logging
import ssl
from typing import Any, Optional

import websockets

from mailbus.errors import RequestError
from mailbus.types import Reply, Request, RequestType

logger = logging.getLogger(__name__)

WS = Any


class Client:
    """
    Client for the mailbox server.

    Each call sends one request and waits for its response; calls made
    concurrently on the same client are queued behind each other.
    Rejections (too long, blocked, full, no messages) come back as a Reply
    with status FAILURE; error responses raise RequestError.
    """

    def __init__(
        self,
        url: str,
        *,
        retry_interval: float = 5.0,
        ssl_context: Optional[ssl.SSLContext] = None,
    ) -> None:
        self.url = url
        self.retry_interval = retry_interval
        self._ssl_context = ssl_context
        self._ws: Optional[WS] = None
        self._closed = False
        self._lock = asyncio.Lock()

    async def connect(self) -> "Client":
        """Connect to the mailbox server; retries until success or close()."""
        while not self._closed:
            try:
                # Only pass ssl for wss:// or when caller provides ssl_context
                use_ssl = (
                    self._ssl_context
                    if self._ssl_context is not None
                    else (True if self.url.startswith("wss") else None)
                )
                kwargs = {"ping_interval": 20, "ping_timeout": 20}
                if use_ssl is not None:
                    kwargs["ssl"] = use_ssl
                self._ws = await websockets.connect(self.url, **kwargs)
                logger.info("mailbox client connected to %s", self.url)
                return self
            except (OSError, ConnectionError) as e:
                logger.warning(
                    "mailbox client connect failed (will retry in %.1fs): %s",
                    self.retry_interval,
                    e,
                )
                await asyncio.sleep(self.retry_interval)
        return self

    async def request(self, request: Request) -> Reply:
        """Send one request and return the decoded reply."""
        if not self.is_connected():
            raise RuntimeError("Client not connected")
        async with self._lock:
            try:
                await self._ws.send(request.serialize())
                raw = await self._ws.recv()
            except Exception:  # pylint: disable=broad-exception-caught
                self._closed = True
                self._ws = None
                raise
        # responses are padded with trailing spaces; json ignores them
        data = json.loads(raw)
        if data.get("type") == "error":
            raise RequestError(data.get("kind", "error"), data.get("error", ""))
        return Reply.model_validate(data)

    async def send(self, content: str, *, sender: str, target: str) -> Reply:
        """Put content into target's mailbox, as sender."""
        return await self.request(
            Request(type=RequestType.SEND, sender=sender, target=target, content=content)
        )

    async def recv(self, sender: str) -> Reply:
        """Take the oldest message out of sender's own mailbox."""
        return await self.request(Request(type=RequestType.RECV, sender=sender))

    async def size(self, sender: str) -> Reply:
        """Unread count of sender's mailbox and the server's capacity."""
        return await self.request(Request(type=RequestType.SIZE, sender=sender))

    async def block(self, sender: str, address: str) -> Reply:
        """Stop accepting messages from address into sender's mailbox."""
        return await self.request(
            Request(type=RequestType.BLOCK, sender=sender, address=address)
        )

    async def unblock(self, sender: str, address: str) -> Reply:
        """Accept messages from address into sender's mailbox again."""
        return await self.request(
            Request(type=RequestType.UNBLOCK, sender=sender, address=address)
        )

    async def ping(self) -> str:
        reply = await self.request(Request(type=RequestType.PING))
        return reply.message

    def is_connected(self) -> bool:
        """Check if the connection is still open."""
        return not self._closed and self._ws is not None

    async def close(self) -> None:
        """Close the WebSocket."""
        self._closed = True
        if self._ws:
            try:
                await self._ws.close()
            except Exception:  # pylint: disable=broad-exception-caught
                pass
            self._ws = None

    async def __aenter__(self) -> "Client":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
