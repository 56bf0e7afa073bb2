"""Tests for mailbus.storage and the record stores in mailbus.state."""

import pytest

from mailbus.errors import NotInitialized, SequenceExhausted
from mailbus.state import (
    CONFIG_KEY,
    MailboxStore,
    MessageStore,
    Sequence,
    load_config,
    save_config,
)
from mailbus.storage import MemoryBackend, PrefixedStorage
from mailbus.types import MAX_U128, Config, Mailbox, Message

# -----------------------------------------------------------------------------
# MemoryBackend transactions
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_memory_transaction_commits_on_success():
    """Writes made inside a transaction are visible after it exits."""
    backend = MemoryBackend()
    async with backend.transaction() as storage:
        await storage.set(b"k1", b"v1")
        await storage.set(b"k2", b"v2")
        await storage.remove(b"k2")
    assert backend.snapshot() == {b"k1": b"v1"}


@pytest.mark.asyncio
async def test_memory_transaction_rolls_back_on_error():
    """An exception inside the block discards every write of the transaction."""
    backend = MemoryBackend()
    async with backend.transaction() as storage:
        await storage.set(b"keep", b"1")

    with pytest.raises(RuntimeError):
        async with backend.transaction() as storage:
            await storage.set(b"keep", b"2")
            await storage.set(b"new", b"x")
            await storage.remove(b"keep")
            raise RuntimeError("abort")
    assert backend.snapshot() == {b"keep": b"1"}


@pytest.mark.asyncio
async def test_memory_transaction_reads_own_writes():
    """Reads inside a transaction see its pending writes and removals."""
    backend = MemoryBackend()
    async with backend.transaction() as storage:
        await storage.set(b"k", b"old")
    async with backend.transaction() as storage:
        await storage.set(b"k", b"new")
        assert await storage.get(b"k") == b"new"
        await storage.remove(b"k")
        assert await storage.get(b"k") is None
        # not committed yet
        assert backend.snapshot() == {b"k": b"old"}
    assert backend.snapshot() == {}


@pytest.mark.asyncio
async def test_prefixed_storage_namespaces_do_not_collide():
    """The same key under two namespaces maps to two different stored keys."""
    backend = MemoryBackend()
    async with backend.transaction() as storage:
        await PrefixedStorage(b"ab", storage).set(b"c", b"1")
        await PrefixedStorage(b"a", storage).set(b"bc", b"2")
        assert await PrefixedStorage(b"ab", storage).get(b"c") == b"1"
        assert await PrefixedStorage(b"a", storage).get(b"bc") == b"2"
    assert len(backend) == 2


# -----------------------------------------------------------------------------
# Record stores
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_config_load_and_missing():
    """load_config raises NotInitialized until a config is saved."""
    backend = MemoryBackend()
    async with backend.transaction() as storage:
        with pytest.raises(NotInitialized):
            await load_config(storage)
        config = Config(max_messages=3, max_message_size=10, discard=True)
        await save_config(storage, config)
        assert await load_config(storage) == config
    assert CONFIG_KEY in backend.snapshot()


@pytest.mark.asyncio
async def test_message_store_get_set_remove():
    """MessageStore upserts, reads and deletes records by id."""
    backend = MemoryBackend()
    async with backend.transaction() as storage:
        messages = MessageStore(storage)
        assert await messages.get(5) is None
        message = Message(content=b"\x00hi\xff", sender=b"s" * 64, prev=4, next=0)
        await messages.set(5, message)
        assert await messages.get(5) == message
        await messages.remove(5)
        assert await messages.get(5) is None
        assert await messages.get(0) is None
        with pytest.raises(ValueError):
            await messages.set(0, message)


@pytest.mark.asyncio
async def test_mailbox_store_defaults_to_empty():
    """Unknown owners read as an empty mailbox and nothing is written."""
    backend = MemoryBackend()
    async with backend.transaction() as storage:
        mailbox = await MailboxStore(storage).get(b"nobody")
    assert mailbox == Mailbox()
    assert len(backend) == 0


@pytest.mark.asyncio
async def test_mailbox_store_keeps_blocked_set():
    """Blocked identities survive a store round trip as a set."""
    backend = MemoryBackend()
    owner = b"o" * 64
    async with backend.transaction() as storage:
        mailboxes = MailboxStore(storage)
        await mailboxes.set(
            owner, Mailbox(front=3, rear=9, length=4, blocked={b"x" * 64, b"y" * 64})
        )
        loaded = await mailboxes.get(owner)
    assert loaded.blocked == {b"x" * 64, b"y" * 64}
    assert (loaded.front, loaded.rear, loaded.length) == (3, 9, 4)


@pytest.mark.asyncio
async def test_sequence_advance():
    """advance() hands out the current id once and moves on by one."""
    backend = MemoryBackend()
    async with backend.transaction() as storage:
        sequence = Sequence(storage)
        with pytest.raises(NotInitialized):
            await sequence.peek()
        await sequence.set(41)
        assert await sequence.advance() == 41
        assert await sequence.peek() == 42


@pytest.mark.asyncio
async def test_sequence_exhaustion():
    """The last 128-bit value cannot be handed out because its successor does not fit."""
    backend = MemoryBackend()
    async with backend.transaction() as storage:
        sequence = Sequence(storage)
        await sequence.set(MAX_U128 - 1)
        assert await sequence.advance() == MAX_U128 - 1
        with pytest.raises(SequenceExhausted):
            await sequence.peek()
        with pytest.raises(SequenceExhausted):
            await sequence.set(0)
