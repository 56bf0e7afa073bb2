"""
mailbus - Bounded per-recipient mailboxes over a key-value store
"""

__version__ = "0.1.0"

from mailbus.client import Client
from mailbus.engine import MailboxEngine, validate_config
from mailbus.errors import (
    AlreadyInitialized,
    CorruptedQueue,
    InvalidAddress,
    InvalidConfig,
    MailboxError,
    NotInitialized,
    RequestError,
    SequenceExhausted,
)
from mailbus.server import Server
from mailbus.storage import MemoryBackend, StorageBackend
from mailbus.types import (
    Answer,
    Config,
    FailureReason,
    Identity,
    Reply,
    ResponseStatus,
)

__all__ = [
    "AlreadyInitialized",
    "Answer",
    "Client",
    "Config",
    "CorruptedQueue",
    "FailureReason",
    "Identity",
    "InvalidAddress",
    "InvalidConfig",
    "MailboxEngine",
    "MailboxError",
    "MemoryBackend",
    "NotInitialized",
    "Reply",
    "RequestError",
    "ResponseStatus",
    "SequenceExhausted",
    "Server",
    "StorageBackend",
    "__version__",
    "validate_config",
]
