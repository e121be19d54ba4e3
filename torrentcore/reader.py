"""Incremental decoding of peer wire messages from a non-blocking connection."""

from __future__ import annotations

import struct
from enum import Enum, auto
from typing import Any

from torrentcore.messages import (
    HANDSHAKE_LEN,
    PROTOCOL,
    Bitfield,
    BitfieldMessage,
    Cancel,
    Choke,
    Extension,
    Handshake,
    Have,
    Interested,
    KeepAlive,
    Message,
    MessageId,
    Piece,
    Port,
    Request,
    Unchoke,
    Uninterested,
)

BUF_SIZE = 16_384
MAX_EXT_MSG_BYTES = 100 * 1000 * 1000

_SIMPLE = {
    MessageId.CHOKE: Choke,
    MessageId.UNCHOKE: Unchoke,
    MessageId.INTERESTED: Interested,
    MessageId.UNINTERESTED: Uninterested,
}

_FIXED_BODY = {
    MessageId.HAVE: 4,
    MessageId.REQUEST: 12,
    MessageId.CANCEL: 12,
    MessageId.PORT: 2,
}


class ProtocolError(OSError):
    """Raised when a peer sends malformed data or the connection ends."""


class _Stage(Enum):
    HANDSHAKE = auto()
    LENGTH = auto()
    ID = auto()
    BODY = auto()


def _read(conn: Any, size: int) -> bytes | None:
    """Read up to ``size`` bytes; ``None`` means the connection would block."""
    read = getattr(conn, "recv", None) or conn.read
    try:
        return read(size)
    except (BlockingIOError, InterruptedError):
        return None


class Reader:
    """Decodes messages from a connection, keeping partial data between calls."""

    def __init__(self) -> None:
        self._length = 0
        self._msg_id = MessageId.CHOKE
        self._reset(_Stage.HANDSHAKE, HANDSHAKE_LEN)

    def _reset(self, stage: _Stage, need: int) -> None:
        self._stage = stage
        self._need = need
        self._buf = bytearray()

    def expect_messages(self) -> None:
        """Expect length-prefixed messages next instead of a handshake."""
        self._reset(_Stage.LENGTH, 4)

    def readable(self, conn: Any) -> Message | None:
        """Read from ``conn`` until a message is complete or it would block.

        Returns the message, or ``None`` if more data is needed.
        """
        while True:
            if not self._fill(conn):
                return None
            msg = self._advance()
            if msg is not None:
                self.expect_messages()
                return msg

    def _fill(self, conn: Any) -> bool:
        while len(self._buf) < self._need:
            chunk = _read(conn, self._need - len(self._buf))
            if chunk is None:
                return False
            if not chunk:
                raise ProtocolError("EOF")
            self._buf += chunk
        return True

    def _advance(self) -> Message | None:
        data = bytes(self._buf)
        if self._stage is _Stage.HANDSHAKE:
            if data[1:20] != PROTOCOL:
                raise ProtocolError("Handshake was not for 'BitTorrent protocol'")
            return Handshake(rsv=data[20:28], hash=data[28:48], id=data[48:68])
        if self._stage is _Stage.LENGTH:
            (length,) = struct.unpack(">I", data)
            if length == 0:
                return KeepAlive()
            self._length = length
            self._reset(_Stage.ID, 1)
            return None
        if self._stage is _Stage.ID:
            return self._start_body(data[0])
        return self._parse_body(data)

    def _start_body(self, raw_id: int) -> Message | None:
        try:
            msg_id = MessageId(raw_id)
        except ValueError:
            raise ProtocolError("Invalid ID used!") from None
        if msg_id in _SIMPLE:
            return _SIMPLE[msg_id]()

        length = self._length
        if msg_id in _FIXED_BODY:
            need = _FIXED_BODY[msg_id]
        elif msg_id is MessageId.BITFIELD:
            if length > BUF_SIZE:
                raise ProtocolError(f"Invalid bitfield length {length}")
            need = length - 1
        elif msg_id is MessageId.PIECE:
            if length < 9:
                raise ProtocolError(f"Invalid pieces length {length}")
            if length - 9 > BUF_SIZE:
                raise ProtocolError(f"Invalid pieces length {length - 9}")
            need = length - 1
        else:
            if length < 2:
                raise ProtocolError("Ext message missing its id")
            if length - 2 > MAX_EXT_MSG_BYTES:
                raise ProtocolError("Ext message too large")
            need = length - 1

        self._msg_id = msg_id
        self._reset(_Stage.BODY, need)
        return None

    def _parse_body(self, data: bytes) -> Message:
        msg_id = self._msg_id
        if msg_id is MessageId.HAVE:
            return Have(struct.unpack(">I", data)[0])
        if msg_id is MessageId.BITFIELD:
            return BitfieldMessage(Bitfield.from_bytes(data, len(data) * 8))
        if msg_id is MessageId.REQUEST:
            return Request(*struct.unpack(">III", data))
        if msg_id is MessageId.CANCEL:
            return Cancel(*struct.unpack(">III", data))
        if msg_id is MessageId.PIECE:
            index, begin = struct.unpack_from(">II", data)
            block = data[8:]
            return Piece(index=index, begin=begin, length=len(block), data=block)
        if msg_id is MessageId.PORT:
            return Port(struct.unpack(">H", data)[0])
        return Extension(id=data[0], payload=data[1:])