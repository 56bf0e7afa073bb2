"""
Errors raised by the mailbox engine and its collaborators.

Business-rule rejections (message too long, sender blocked, mailbox full,
no messages) are not errors: they come back as failure answers. Everything
here aborts the operation that raised it.
"""


class MailboxError(Exception):
    """Base class for mailbus errors."""

    kind = "mailbox_error"


class InvalidConfig(MailboxError):
    """A configuration value is out of range. `field` names the culprit."""

    kind = "invalid_config"

    def __init__(self, field: str) -> None:
        super().__init__(f"Invalid {field}.")
        self.field = field


class AlreadyInitialized(MailboxError):
    """initialize() was called on a store that already holds a config."""

    kind = "already_initialized"


class NotInitialized(MailboxError):
    """An operation ran before initialize()."""

    kind = "not_initialized"


class CorruptedQueue(MailboxError):
    """
    Mailbox bookkeeping disagrees with the stored message records.

    Never recovered from: the whole operation is rolled back.
    """

    kind = "corrupted_queue"


class SequenceExhausted(MailboxError):
    """The 128-bit message id space is used up."""

    kind = "sequence_exhausted"


class InvalidAddress(MailboxError):
    """An address could not be canonicalized (or an identity humanized)."""

    kind = "invalid_address"


class RequestError(MailboxError):
    """The server answered a client request with an error object."""

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind
