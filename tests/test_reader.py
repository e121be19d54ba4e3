import io

import pytest

from torrentcore.messages import (
    BitfieldMessage,
    Cancel,
    Choke,
    Extension,
    Handshake,
    Have,
    Interested,
    KeepAlive,
    Piece,
    Port,
    Request,
    Unchoke,
    Uninterested,
    encode_message,
)
from torrentcore.reader import ProtocolError, Reader

PEER_ID = b"-TC0001-abcdefghijkl"


class Cursor:
    """Non-blocking source that reports would-block once drained."""

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    def read(self, size: int):
        if self._pos >= len(self._data):
            return None
        chunk = self._data[self._pos:self._pos + size]
        self._pos += len(chunk)
        return chunk


class BlockingSocket:
    def recv(self, size: int) -> bytes:
        raise BlockingIOError


def read_one(data: bytes):
    r = Reader()
    r.expect_messages()
    return r.readable(Cursor(data))


@pytest.mark.parametrize(
    ("data", "expected"),
    [
        ([0, 0, 0, 0], KeepAlive()),
        ([0, 0, 0, 1, 0], Choke()),
        ([0, 0, 0, 1, 1], Unchoke()),
        ([0, 0, 0, 1, 2], Interested()),
        ([0, 0, 0, 1, 3], Uninterested()),
        ([0, 0, 0, 5, 4, 0, 0, 0, 1], Have(1)),
        ([0, 0, 0, 3, 9, 0x1A, 0xE1], Port(6881)),
    ],
)
def test_read_simple(data, expected):
    assert read_one(bytes(data)) == expected


def test_read_bitfield():
    msg = read_one(bytes([0, 0, 0, 5, 5, 0xFF, 0xFF, 0xFF, 0xFF]))
    assert isinstance(msg, BitfieldMessage)
    assert len(msg.pieces) == 32
    assert all(msg.pieces.has_bit(i) for i in range(32))


def test_read_request():
    msg = read_one(bytes([0, 0, 0, 13, 6, 0, 0, 0, 1, 0, 0, 0, 1, 0, 0, 0, 1]))
    assert msg == Request(index=1, begin=1, length=1)


def test_read_cancel():
    msg = read_one(bytes([0, 0, 0, 13, 8, 0, 0, 0, 1, 0, 0, 0, 1, 0, 0, 0, 1]))
    assert msg == Cancel(index=1, begin=1, length=1)


def test_read_piece_partial():
    prefix = bytes([0, 0, 0x40, 0x09, 7, 0, 0, 0, 1, 0, 0, 0, 1])
    v = prefix + b"\x01" * 16_384 + prefix + b"\x01" * 16_384
    r = Reader()
    r.expect_messages()
    assert r.readable(Cursor(v[0:10])) is None
    assert r.readable(Cursor(v[10:100])) is None
    rest = Cursor(v[100:])
    msg = r.readable(rest)
    assert isinstance(msg, Piece)
    assert (msg.index, msg.begin, msg.length) == (1, 1, 16_384)
    assert msg.data == b"\x01" * 16_384
    second = r.readable(rest)
    assert second == msg


def test_read_handshake():
    m = Handshake(rsv=bytes(8), hash=bytes(20), id=PEER_ID)
    r = Reader()
    assert r.readable(Cursor(encode_message(m))) == m


def test_read_extension():
    payload = b"d1:md11:ut_metadatai3eee"
    msg = read_one(encode_message(Extension(0, payload)))
    assert msg == Extension(0, payload)


def test_sequence_after_handshake():
    hs = Handshake(rsv=bytes(8), hash=b"\x11" * 20, id=PEER_ID)
    src = Cursor(encode_message(hs) + encode_message(Have(7)) + encode_message(Unchoke()))
    r = Reader()
    assert r.readable(src) == hs
    assert r.readable(src) == Have(7)
    assert r.readable(src) == Unchoke()
    assert r.readable(src) is None


def test_bad_handshake():
    data = bytes([19]) + b"NotTorrent protocol" + bytes(48)
    with pytest.raises(ProtocolError):
        Reader().readable(Cursor(data))


def test_invalid_id():
    with pytest.raises(ProtocolError, match="Invalid ID"):
        read_one(bytes([0, 0, 0, 1, 10]))


def test_eof():
    r = Reader()
    r.expect_messages()
    with pytest.raises(ProtocolError, match="EOF"):
        r.readable(io.BytesIO(b"\x00\x00"))


def test_bitfield_too_long():
    with pytest.raises(ProtocolError, match="bitfield"):
        read_one((16_386).to_bytes(4, "big") + b"\x05")


def test_piece_too_long():
    with pytest.raises(ProtocolError, match="pieces"):
        read_one((16_384 + 10).to_bytes(4, "big") + b"\x07")


def test_extension_too_large():
    with pytest.raises(ProtocolError, match="too large"):
        read_one((100 * 1000 * 1000 + 3).to_bytes(4, "big") + b"\x14")


def test_blocking_socket_returns_none():
    r = Reader()
    assert r.readable(BlockingSocket()) is None