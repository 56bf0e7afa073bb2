"""
Types for mailbus: stored records, wire requests and answers.
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Optional, Set
import base64
import json

# ─── Stored record keys ─────────────────────────────────────────────────────
#
# Message ids are stored as 16 byte big-endian integers:
#
#  16 bytes
# +----------------------------------+
# | message id (u128, big-endian)    |
# +----------------------------------+
#
# Mailboxes are keyed by the raw identity bytes of their owner.

MESSAGE_ID_BYTES = 16

# Identifier 0 is the "no link" sentinel and never names a real message.
NO_MESSAGE = 0

MAX_U16 = 2**16 - 1
MAX_U32 = 2**32 - 1
MAX_U128 = 2**128 - 1

# Encoded responses are padded to a multiple of this many bytes.
BLOCK_SIZE = 256

Identity = bytes
MessageId = int


def encode_message_id(message_id: MessageId) -> bytes:
    """Encode a message id as a store key: 16 bytes, big-endian."""
    return message_id.to_bytes(MESSAGE_ID_BYTES, "big")


def pad_response(data: str, block_size: int = BLOCK_SIZE) -> str:
    """Right-pad *data* with spaces so its UTF-8 length is a multiple of block_size."""
    if block_size <= 0:
        return data
    size = len(data.encode("utf-8"))
    missing = -size % block_size
    return data + " " * missing


@dataclass(frozen=True)
class Config:
    """
    Mailbox configuration, written once by initialize().

    - max_messages: capacity of every mailbox.
    - max_message_size: maximum content size in bytes.
    - discard: True rejects sends to a full mailbox,
      False evicts the oldest message to make room.
    """

    max_messages: int
    max_message_size: int
    discard: bool

    def model_dump(self) -> dict:
        return {
            "max_messages": self.max_messages,
            "max_message_size": self.max_message_size,
            "discard": self.discard,
        }

    def serialize(self) -> bytes:
        return json.dumps(self.model_dump()).encode("utf-8")

    @classmethod
    def deserialize(cls, raw: bytes) -> "Config":
        data = json.loads(raw)
        return cls(
            max_messages=int(data["max_messages"]),
            max_message_size=int(data["max_message_size"]),
            discard=bool(data["discard"]),
        )


@dataclass
class Message:
    """
    One queued message.

    prev/next are ids of the neighbouring messages in the recipient's
    mailbox; NO_MESSAGE (0) at either end of the chain.
    """

    content: bytes
    sender: Identity
    prev: MessageId = NO_MESSAGE
    next: MessageId = NO_MESSAGE

    def model_dump(self) -> dict:
        return {
            "content": base64.b64encode(self.content).decode("ascii"),
            "from": self.sender.hex(),
            "prev": self.prev,
            "next": self.next,
        }

    def serialize(self) -> bytes:
        return json.dumps(self.model_dump()).encode("utf-8")

    @classmethod
    def deserialize(cls, raw: bytes) -> "Message":
        data = json.loads(raw)
        return cls(
            content=base64.b64decode(data["content"]),
            sender=bytes.fromhex(data["from"]),
            prev=int(data["prev"]),
            next=int(data["next"]),
        )


@dataclass
class Mailbox:
    """
    Queue metadata for one recipient plus the senders it has blocked.

    front/rear are message ids (NO_MESSAGE when empty).
    """

    front: MessageId = NO_MESSAGE
    rear: MessageId = NO_MESSAGE
    length: int = 0
    blocked: Set[Identity] = field(default_factory=set)

    def model_dump(self) -> dict:
        return {
            "front": self.front,
            "rear": self.rear,
            "length": self.length,
            # sorted so equal mailboxes serialize to equal bytes
            "blocked": sorted(b.hex() for b in self.blocked),
        }

    def serialize(self) -> bytes:
        return json.dumps(self.model_dump()).encode("utf-8")

    @classmethod
    def deserialize(cls, raw: bytes) -> "Mailbox":
        data = json.loads(raw)
        return cls(
            front=int(data["front"]),
            rear=int(data["rear"]),
            length=int(data["length"]),
            blocked={bytes.fromhex(b) for b in data.get("blocked", [])},
        )


class RequestType(StrEnum):
    """
    Operations a client can request:
    - SEND: enqueue content into the target's mailbox.
    - RECV: dequeue the oldest message of the sender's own mailbox.
    - SIZE: report the sender's unread count and the capacity.
    - BLOCK / UNBLOCK: toggle an address in the sender's blocked set.
    - PING: diagnostic, answers "pong".
    """

    SEND = "send"
    RECV = "recv"
    SIZE = "size"
    BLOCK = "block"
    UNBLOCK = "unblock"
    PING = "ping"


class ResponseStatus(StrEnum):
    """Success or failure of an operation."""

    SUCCESS = "success"
    FAILURE = "failure"


class FailureReason(StrEnum):
    """Why an operation was rejected. Rejections never change state."""

    TOO_LONG = "too long"
    BLOCKED = "blocked"
    FULL = "full"
    NO_MESSAGES = "no messages"


def _text(data: dict, key: str, default: Optional[str] = None) -> str:
    """Return data[key] as a string that encodes to UTF-8. Raises ValueError/KeyError."""
    value = data[key] if default is None else data.get(key, default)
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    try:
        value.encode("utf-8")
    except UnicodeEncodeError as e:
        raise ValueError(f"{key} is not valid UTF-8: {e.reason}") from e
    return value


@dataclass
class Request:
    """A decoded client request. Addresses are in their presentable form."""

    type: RequestType
    sender: str = ""
    target: str = ""  # recipient of SEND
    address: str = ""  # subject of BLOCK / UNBLOCK
    content: str = ""

    def model_dump(self) -> dict:
        """Dump the request for sending over the wire."""
        result: dict = {"type": self.type.value}
        if self.type == RequestType.PING:
            return result
        result["sender"] = self.sender
        if self.type == RequestType.SEND:
            result["target"] = self.target
            result["content"] = self.content
        elif self.type in (RequestType.BLOCK, RequestType.UNBLOCK):
            result["address"] = self.address
        return result

    def serialize(self) -> str:
        return json.dumps(self.model_dump(), ensure_ascii=False)

    @classmethod
    def model_validate(cls, data: dict) -> "Request":
        """Validate a request received from the wire. Raises ValueError/KeyError."""
        if not isinstance(data, dict):
            raise ValueError("request must be a JSON object")
        req_type = RequestType(data["type"])
        if req_type == RequestType.PING:
            return cls(type=req_type)
        req = cls(type=req_type, sender=_text(data, "sender"))
        if req_type == RequestType.SEND:
            req.target = _text(data, "target")
            req.content = _text(data, "content", "")
        elif req_type in (RequestType.BLOCK, RequestType.UNBLOCK):
            req.address = _text(data, "address")
        return req

    @classmethod
    def deserialize(cls, data: str) -> "Request":
        return cls.model_validate(json.loads(data))


@dataclass
class Answer:
    """
    Result of one engine operation.

    number_of_unread_messages is always a plain int (0 when there is
    nothing to report). content/sender are set only by a successful RECV,
    max_messages only by SIZE.
    """

    type: RequestType
    status: ResponseStatus
    message: str
    reason: Optional[FailureReason] = None
    number_of_unread_messages: int = 0
    max_messages: Optional[int] = None
    content: Optional[bytes] = None
    sender: Optional[Identity] = None

    @property
    def ok(self) -> bool:
        return self.status == ResponseStatus.SUCCESS


@dataclass
class Reply:
    """A response as received by a client. Addresses are presentable strings."""

    type: RequestType
    status: ResponseStatus = ResponseStatus.SUCCESS
    message: str = ""
    reason: Optional[FailureReason] = None
    number_of_unread_messages: int = 0
    max_messages: Optional[int] = None
    content: Optional[str] = None
    sender: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == ResponseStatus.SUCCESS

    @classmethod
    def model_validate(cls, data: dict) -> "Reply":
        """Validate a non-error response received from the wire."""
        req_type = RequestType(data["type"])
        if req_type == RequestType.PING:
            return cls(type=req_type, message=data.get("response", ""))
        return cls(
            type=req_type,
            status=ResponseStatus(data["status"]),
            message=data.get("message", ""),
            reason=FailureReason(data["reason"]) if data.get("reason") else None,
            number_of_unread_messages=int(data.get("number_of_unread_messages") or 0),
            max_messages=data.get("max_messages"),
            content=data.get("content"),
            sender=data.get("sender"),
        )
