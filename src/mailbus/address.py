"""
Address canonicalization.

Clients name mailboxes by a printable address. The store keys mailboxes by a
fixed-width identity:

  64 bytes
+----------------------------------------------+
| UTF-8 address, right padded with NUL         |
+----------------------------------------------+

canonicalize() and humanize() are inverse to each other for every valid
address.
"""

from mailbus.errors import InvalidAddress
from mailbus.types import Identity

IDENTITY_BYTES = 64


def canonicalize(address: str) -> Identity:
    """Map a presentable address to its fixed-width identity."""
    if not isinstance(address, str) or not address:
        raise InvalidAddress("address must be a non-empty string")
    if any(c.isspace() or not c.isprintable() for c in address):
        raise InvalidAddress(f"address {address!r} contains invalid characters")
    raw = address.encode("utf-8")
    if len(raw) > IDENTITY_BYTES:
        raise InvalidAddress(
            f"address is {len(raw)} bytes, at most {IDENTITY_BYTES} allowed"
        )
    return raw.ljust(IDENTITY_BYTES, b"\x00")


def humanize(identity: Identity) -> str:
    """Map an identity back to the address it was canonicalized from."""
    if len(identity) != IDENTITY_BYTES:
        raise InvalidAddress(
            f"identity must be {IDENTITY_BYTES} bytes, got {len(identity)}"
        )
    raw = identity.rstrip(b"\x00")
    if not raw:
        raise InvalidAddress("identity is empty")
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise InvalidAddress(f"identity is not valid UTF-8: {e}") from e
