"""Peer wire protocol messages, their wire encoding, and piece bitfields."""

from __future__ import annotations

import struct
from collections.abc import Iterator
from dataclasses import dataclass
from enum import IntEnum
from typing import Union

PROTOCOL = b"BitTorrent protocol"
HANDSHAKE_LEN = 68


class MessageId(IntEnum):
    """Identifiers of length-prefixed peer messages."""

    CHOKE = 0
    UNCHOKE = 1
    INTERESTED = 2
    UNINTERESTED = 3
    HAVE = 4
    BITFIELD = 5
    REQUEST = 6
    PIECE = 7
    CANCEL = 8
    PORT = 9
    EXTENSION = 20


class Bitfield:
    """A fixed-length set of bits, most significant bit of each byte first."""

    __slots__ = ("_len", "_data")

    def __init__(self, length: int = 0) -> None:
        if length < 0:
            raise ValueError("bitfield length must not be negative")
        self._len = length
        self._data = bytearray((length + 7) // 8)

    @classmethod
    def from_bytes(cls, data: bytes, length: int) -> Bitfield:
        """Build a bitfield of ``length`` bits from its packed bytes."""
        needed = (length + 7) // 8
        if len(data) < needed:
            raise ValueError(f"{len(data)} bytes cannot hold {length} bits")
        bf = cls(length)
        bf._data[:] = data[:needed]
        return bf

    def to_bytes(self) -> bytes:
        """The packed bytes of the bitfield."""
        return bytes(self._data)

    def _check(self, idx: int) -> None:
        if not 0 <= idx < self._len:
            raise IndexError(f"bit {idx} out of range for bitfield of {self._len} bits")

    def has_bit(self, idx: int) -> bool:
        """Whether bit ``idx`` is set."""
        self._check(idx)
        return bool(self._data[idx >> 3] & (0x80 >> (idx & 7)))

    def set_bit(self, idx: int) -> None:
        """Set bit ``idx``."""
        self._check(idx)
        self._data[idx >> 3] |= 0x80 >> (idx & 7)

    def unset_bit(self, idx: int) -> None:
        """Clear bit ``idx``."""
        self._check(idx)
        self._data[idx >> 3] &= ~(0x80 >> (idx & 7)) & 0xFF

    def count(self) -> int:
        """Number of set bits."""
        return sum(byte.bit_count() for byte in self._data)

    def complete(self) -> bool:
        """Whether every bit is set."""
        return self.count() == self._len

    def cap(self, length: int) -> bool:
        """Shrink to ``length`` bits if the stored bytes fit exactly and no bit beyond is set."""
        if (length + 7) // 8 != len(self._data):
            return False
        if any(self._bit_raw(i) for i in range(length, len(self._data) * 8)):
            return False
        self._len = length
        return True

    def _bit_raw(self, idx: int) -> bool:
        return bool(self._data[idx >> 3] & (0x80 >> (idx & 7)))

    def __len__(self) -> int:
        return self._len

    def __iter__(self) -> Iterator[int]:
        return (i for i in range(self._len) if self._bit_raw(i))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Bitfield):
            return NotImplemented
        return self._len == other._len and self._data == other._data

    def __repr__(self) -> str:
        return f"Bitfield(len={self._len}, set={self.count()})"


@dataclass(frozen=True)
class KeepAlive:
    """Keep-alive message with an empty body."""


@dataclass(frozen=True)
class Choke:
    """The sender chokes the receiver."""


@dataclass(frozen=True)
class Unchoke:
    """The sender unchokes the receiver."""


@dataclass(frozen=True)
class Interested:
    """The sender wants pieces from the receiver."""


@dataclass(frozen=True)
class Uninterested:
    """The sender no longer wants pieces from the receiver."""


@dataclass(frozen=True)
class Have:
    """The sender has completed piece ``index``."""

    index: int


@dataclass
class BitfieldMessage:
    """The set of pieces the sender has."""

    pieces: Bitfield


@dataclass(frozen=True)
class Request:
    """Request for a block of a piece."""

    index: int
    begin: int
    length: int


@dataclass(frozen=True)
class Piece:
    """A block of piece data."""

    index: int
    begin: int
    length: int
    data: bytes


@dataclass(frozen=True)
class Cancel:
    """Withdrawal of an earlier request."""

    index: int
    begin: int
    length: int


@dataclass(frozen=True)
class Port:
    """The port of the sender's DHT node."""

    port: int


@dataclass(frozen=True)
class Handshake:
    """The opening message of a peer connection."""

    rsv: bytes
    hash: bytes
    id: bytes

    def __post_init__(self) -> None:
        for name, size in (("rsv", 8), ("hash", 20), ("id", 20)):
            if len(getattr(self, name)) != size:
                raise ValueError(f"handshake {name} must be {size} bytes")


@dataclass(frozen=True)
class Extension:
    """An extension protocol message."""

    id: int
    payload: bytes


Message = Union[
    KeepAlive,
    Choke,
    Unchoke,
    Interested,
    Uninterested,
    Have,
    BitfieldMessage,
    Request,
    Piece,
    Cancel,
    Port,
    Handshake,
    Extension,
]


def _frame(msg_id: MessageId, body: bytes = b"") -> bytes:
    return struct.pack(">IB", len(body) + 1, msg_id) + body


def encode_message(msg: Message) -> bytes:
    """Encode a message into its wire form."""
    match msg:
        case KeepAlive():
            return bytes(4)
        case Choke():
            return _frame(MessageId.CHOKE)
        case Unchoke():
            return _frame(MessageId.UNCHOKE)
        case Interested():
            return _frame(MessageId.INTERESTED)
        case Uninterested():
            return _frame(MessageId.UNINTERESTED)
        case Have(index):
            return _frame(MessageId.HAVE, struct.pack(">I", index))
        case BitfieldMessage(pieces):
            return _frame(MessageId.BITFIELD, pieces.to_bytes())
        case Request(index, begin, length):
            return _frame(MessageId.REQUEST, struct.pack(">III", index, begin, length))
        case Cancel(index, begin, length):
            return _frame(MessageId.CANCEL, struct.pack(">III", index, begin, length))
        case Piece(index, begin, length, data):
            if len(data) < length:
                raise ValueError("piece data is shorter than its length")
            header = struct.pack(">IBII", 9 + length, MessageId.PIECE, index, begin)
            return header + bytes(data[:length])
        case Port(port):
            return _frame(MessageId.PORT, struct.pack(">H", port))
        case Handshake(rsv, info_hash, peer_id):
            return bytes([len(PROTOCOL)]) + PROTOCOL + rsv + info_hash + peer_id
        case Extension(ext_id, payload):
            return _frame(MessageId.EXTENSION, bytes([ext_id]) + bytes(payload))
    raise TypeError(f"not a peer message: {msg!r}")


def is_special(msg: Message) -> bool:
    """Whether the message does not fit a fixed 17-byte frame."""
    return isinstance(msg, (Handshake, BitfieldMessage, Extension))