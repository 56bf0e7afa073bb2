"""
Stored state of the mailbox engine.

Layout inside the key-value store:

  config          singleton Config
  seq             singleton next message id (decimal text)
  mes/<id:16 BE>  one Message per undelivered message
  box/<identity>  one Mailbox per recipient that was ever touched

Each accessor wraps the Storage handle of the current transaction.
"""

from typing import Optional

from mailbus.errors import NotInitialized, SequenceExhausted
from mailbus.storage import PrefixedStorage, Storage
from mailbus.types import (
    MAX_U128,
    NO_MESSAGE,
    Config,
    Identity,
    Mailbox,
    Message,
    MessageId,
    encode_message_id,
)

CONFIG_KEY = b"config"
SEQ_KEY = b"seq"
MESSAGE_PREFIX = b"mes"
MAILBOX_PREFIX = b"box"


async def load_config(storage: Storage) -> Config:
    """Return the stored Config. Raises NotInitialized if there is none."""
    raw = await storage.get(CONFIG_KEY)
    if raw is None:
        raise NotInitialized("mailbox has not been initialized")
    return Config.deserialize(raw)


async def may_load_config(storage: Storage) -> Optional[Config]:
    raw = await storage.get(CONFIG_KEY)
    return None if raw is None else Config.deserialize(raw)


async def save_config(storage: Storage, config: Config) -> None:
    await storage.set(CONFIG_KEY, config.serialize())


class Sequence:
    """
    The global message id allocator.

    One counter for all mailboxes. peek() returns the id the next admitted
    message will get; advance() consumes it. Ids are never handed out twice.
    """

    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    async def peek(self) -> MessageId:
        raw = await self._storage.get(SEQ_KEY)
        if raw is None:
            raise NotInitialized("message id sequence has not been initialized")
        value = int(raw.decode("ascii"))
        if value >= MAX_U128:
            # value itself is usable, but value + 1 would not fit
            raise SequenceExhausted(f"message id sequence exhausted at {value}")
        return value

    async def set(self, value: MessageId) -> None:
        if not NO_MESSAGE < value <= MAX_U128:
            raise SequenceExhausted(f"message id {value} out of range")
        await self._storage.set(SEQ_KEY, str(value).encode("ascii"))

    async def advance(self) -> MessageId:
        """Consume the current id and return it."""
        current = await self.peek()
        await self.set(current + 1)
        return current


class MessageStore:
    """Message records keyed by message id."""

    def __init__(self, storage: Storage) -> None:
        self._storage = PrefixedStorage(MESSAGE_PREFIX, storage)

    async def get(self, message_id: MessageId) -> Optional[Message]:
        if message_id == NO_MESSAGE:
            return None
        raw = await self._storage.get(encode_message_id(message_id))
        return None if raw is None else Message.deserialize(raw)

    async def set(self, message_id: MessageId, message: Message) -> None:
        if message_id == NO_MESSAGE:
            raise ValueError("message id 0 is reserved")
        await self._storage.set(encode_message_id(message_id), message.serialize())

    async def remove(self, message_id: MessageId) -> None:
        await self._storage.remove(encode_message_id(message_id))


class MailboxStore:
    """Mailboxes keyed by owner identity. Unknown owners read as empty."""

    def __init__(self, storage: Storage) -> None:
        self._storage = PrefixedStorage(MAILBOX_PREFIX, storage)

    async def get(self, owner: Identity) -> Mailbox:
        raw = await self._storage.get(owner)
        if raw is None:
            return Mailbox()
        return Mailbox.deserialize(raw)

    async def set(self, owner: Identity, mailbox: Mailbox) -> None:
        await self._storage.set(owner, mailbox.serialize())
