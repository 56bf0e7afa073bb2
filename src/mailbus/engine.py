"""
Mailbox engine: bounded FIFO mailboxes over a key-value store.

Every recipient owns a mailbox whose messages form a doubly linked list of
stored records (prev/next are message ids, 0 ends the chain). Sends append
at the rear, receives pop the front. When a mailbox is full the configured
policy either rejects the send (discard=True) or evicts the oldest message
(discard=False).

Each public operation runs in one storage transaction. Rejections return a
failure Answer and write nothing; corruption raises CorruptedQueue, which
rolls the whole transaction back.
"""

import logging
from typing import Dict, Optional, Set, Tuple

from mailbus.errors import AlreadyInitialized, CorruptedQueue, InvalidConfig
from mailbus.state import (
    MailboxStore,
    MessageStore,
    Sequence,
    load_config,
    may_load_config,
    save_config,
)
from mailbus.storage import StorageBackend
from mailbus.types import (
    MAX_U16,
    MAX_U32,
    MAX_U128,
    NO_MESSAGE,
    Answer,
    Config,
    FailureReason,
    Identity,
    Mailbox,
    Message,
    MessageId,
    RequestType,
    ResponseStatus,
)

logger = logging.getLogger(__name__)


def _bounded(value, high: int) -> Optional[int]:
    """Return value if it is an int in [1, high], else None."""
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    if value < 1 or value > high:
        return None
    return value


def validate_config(
    max_messages: int,
    seq_start: int,
    max_message_size: int,
    discard: bool,
) -> Tuple[Config, MessageId]:
    """
    Validate raw initialization values.

    Returns (config, first message id). Raises InvalidConfig naming the first
    field that does not fit: max_messages must fit u32, seq_start u128,
    max_message_size u16, and all must be at least 1.
    """
    checked_max_messages = _bounded(max_messages, MAX_U32)
    if checked_max_messages is None:
        raise InvalidConfig("max_messages")
    checked_seq_start = _bounded(seq_start, MAX_U128)
    if checked_seq_start is None:
        raise InvalidConfig("seq_start")
    checked_max_message_size = _bounded(max_message_size, MAX_U16)
    if checked_max_message_size is None:
        raise InvalidConfig("max_message_size")
    config = Config(
        max_messages=checked_max_messages,
        max_message_size=checked_max_message_size,
        discard=bool(discard),
    )
    return config, checked_seq_start


class _Chain:
    """
    The message records touched by one operation, keyed by id.

    Link rewrites happen on the cached nodes; flush() writes them back once
    the operation has passed every check.
    """

    def __init__(self, messages: MessageStore) -> None:
        self._messages = messages
        self._nodes: Dict[MessageId, Message] = {}
        self._dirty: Set[MessageId] = set()
        self._removed: Set[MessageId] = set()

    async def node(self, message_id: MessageId) -> Message:
        if message_id == NO_MESSAGE or message_id in self._removed:
            raise CorruptedQueue(f"Corrupted message queue: no message {message_id}.")
        if message_id not in self._nodes:
            message = await self._messages.get(message_id)
            if message is None:
                raise CorruptedQueue(
                    f"Corrupted message queue: message {message_id} is missing."
                )
            self._nodes[message_id] = message
        return self._nodes[message_id]

    async def pop_front(self, mailbox: Mailbox) -> Message:
        """Unlink the front message of a non-empty mailbox and return it."""
        front_id = mailbox.front
        front = await self.node(front_id)
        if front.prev != NO_MESSAGE:
            raise CorruptedQueue(
                f"Corrupted message queue: front message {front_id} has a predecessor."
            )
        if front.next == NO_MESSAGE:
            # last message: the chain must end here and the count must agree
            if mailbox.rear != front_id or mailbox.length != 1:
                raise CorruptedQueue(
                    f"Corrupted message queue: chain ends at {front_id} "
                    f"but length is {mailbox.length}."
                )
            mailbox.rear = NO_MESSAGE
        else:
            successor = await self.node(front.next)
            if successor.prev != front_id:
                raise CorruptedQueue(
                    f"Corrupted message queue: message {front.next} does not "
                    f"link back to {front_id}."
                )
            successor.prev = NO_MESSAGE
            self._dirty.add(front.next)
        mailbox.front = front.next
        mailbox.length -= 1
        self._removed.add(front_id)
        self._dirty.discard(front_id)
        return front

    async def push_rear(
        self, mailbox: Mailbox, message_id: MessageId, message: Message
    ) -> None:
        """Append message at the rear of mailbox under message_id."""
        message.prev = mailbox.rear
        message.next = NO_MESSAGE
        if mailbox.rear == NO_MESSAGE:
            if mailbox.front != NO_MESSAGE or mailbox.length != 0:
                raise CorruptedQueue(
                    f"Corrupted message queue: no rear but length is {mailbox.length}."
                )
            mailbox.front = message_id
        else:
            rear = await self.node(mailbox.rear)
            if rear.next != NO_MESSAGE:
                raise CorruptedQueue(
                    f"Corrupted message queue: rear message {mailbox.rear} has a successor."
                )
            rear.next = message_id
            self._dirty.add(mailbox.rear)
        self._nodes[message_id] = message
        self._dirty.add(message_id)
        mailbox.rear = message_id
        mailbox.length += 1

    async def flush(self) -> None:
        for message_id in sorted(self._removed):
            await self._messages.remove(message_id)
        for message_id in sorted(self._dirty):
            await self._messages.set(message_id, self._nodes[message_id])


def _failure(
    req_type: RequestType, reason: FailureReason, message: str
) -> Answer:
    return Answer(
        type=req_type,
        status=ResponseStatus.FAILURE,
        message=message,
        reason=reason,
    )


class MailboxEngine:
    """
    Bounded per-recipient mailboxes on top of a StorageBackend.

    Callers must not run two operations on the same backend at once; the
    server serializes them.
    """

    def __init__(self, backend: StorageBackend) -> None:
        self._backend = backend

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    async def initialize(
        self,
        max_messages: int,
        seq_start: int,
        max_message_size: int,
        discard: bool = False,
    ) -> Config:
        """
        Validate and persist the configuration and the first message id.

        Raises InvalidConfig (nothing persisted) or AlreadyInitialized.
        """
        config, first_id = validate_config(
            max_messages, seq_start, max_message_size, discard
        )
        async with self._backend.transaction() as storage:
            if await may_load_config(storage) is not None:
                raise AlreadyInitialized("mailbox is already initialized")
            await save_config(storage, config)
            await Sequence(storage).set(first_id)
        logger.info(
            "mailbox initialized: max_messages=%d max_message_size=%d discard=%s seq_start=%d",
            config.max_messages,
            config.max_message_size,
            config.discard,
            first_id,
        )
        return config

    async def config(self) -> Config:
        """Return the persisted configuration."""
        async with self._backend.transaction() as storage:
            return await load_config(storage)

    async def send(
        self, sender: Identity, recipient: Identity, content: bytes
    ) -> Answer:
        """Enqueue content from sender into recipient's mailbox."""
        async with self._backend.transaction() as storage:
            config = await load_config(storage)
            if len(content) > config.max_message_size:
                return _failure(
                    RequestType.SEND, FailureReason.TOO_LONG, "Message is too long."
                )

            mailboxes = MailboxStore(storage)
            mailbox = await mailboxes.get(recipient)
            if sender in mailbox.blocked:
                return _failure(
                    RequestType.SEND,
                    FailureReason.BLOCKED,
                    "Message could not be sent: sender is blocked.",
                )

            if mailbox.length > config.max_messages:
                raise CorruptedQueue(
                    f"Corrupted message queue: length {mailbox.length} exceeds "
                    f"capacity {config.max_messages}."
                )
            chain = _Chain(MessageStore(storage))
            if mailbox.length == config.max_messages:
                if config.discard:
                    return _failure(
                        RequestType.SEND,
                        FailureReason.FULL,
                        "Message could not be sent: mailbox is full.",
                    )
                evicted_id = mailbox.front
                await chain.pop_front(mailbox)
                logger.debug("mailbox full, evicted message %d", evicted_id)

            message_id = await Sequence(storage).advance()
            await chain.push_rear(
                mailbox, message_id, Message(content=bytes(content), sender=sender)
            )

            await chain.flush()
            await mailboxes.set(recipient, mailbox)
        logger.debug("message %d queued (%d in mailbox)", message_id, mailbox.length)
        return Answer(
            type=RequestType.SEND,
            status=ResponseStatus.SUCCESS,
            message="Message sent.",
        )

    async def receive(self, owner: Identity) -> Answer:
        """Dequeue the oldest message in owner's mailbox."""
        async with self._backend.transaction() as storage:
            mailboxes = MailboxStore(storage)
            mailbox = await mailboxes.get(owner)
            if mailbox.length == 0:
                return _failure(
                    RequestType.RECV, FailureReason.NO_MESSAGES, "No messages."
                )

            chain = _Chain(MessageStore(storage))
            message = await chain.pop_front(mailbox)
            await chain.flush()
            await mailboxes.set(owner, mailbox)
        logger.debug("message received (%d left in mailbox)", mailbox.length)
        return Answer(
            type=RequestType.RECV,
            status=ResponseStatus.SUCCESS,
            message="Message received.",
            number_of_unread_messages=mailbox.length,
            content=message.content,
            sender=message.sender,
        )

    async def size(self, owner: Identity) -> Answer:
        """Report the unread count of owner's mailbox and the capacity."""
        async with self._backend.transaction() as storage:
            config = await load_config(storage)
            mailbox = await MailboxStore(storage).get(owner)
        return Answer(
            type=RequestType.SIZE,
            status=ResponseStatus.SUCCESS,
            message=f"Maximum number of messages allowed: {config.max_messages}",
            number_of_unread_messages=mailbox.length,
            max_messages=config.max_messages,
        )

    async def block(self, owner: Identity, target: Identity) -> Answer:
        """Refuse further sends from target into owner's mailbox."""
        async with self._backend.transaction() as storage:
            mailboxes = MailboxStore(storage)
            mailbox = await mailboxes.get(owner)
            if target not in mailbox.blocked:
                mailbox.blocked.add(target)
                await mailboxes.set(owner, mailbox)
        return Answer(
            type=RequestType.BLOCK,
            status=ResponseStatus.SUCCESS,
            message="Address blocked.",
        )

    async def unblock(self, owner: Identity, target: Identity) -> Answer:
        """Accept sends from target into owner's mailbox again."""
        async with self._backend.transaction() as storage:
            mailboxes = MailboxStore(storage)
            mailbox = await mailboxes.get(owner)
            if target in mailbox.blocked:
                mailbox.blocked.discard(target)
                await mailboxes.set(owner, mailbox)
        return Answer(
            type=RequestType.UNBLOCK,
            status=ResponseStatus.SUCCESS,
            message="Address unblocked.",
        )

    async def ping(self) -> Answer:
        return Answer(
            type=RequestType.PING, status=ResponseStatus.SUCCESS, message="pong"
        )
