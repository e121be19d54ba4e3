import pytest

from torrentcore.messages import (
    Bitfield,
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
    encode_message,
    is_special,
)

PEER_ID = b"-TC0001-abcdefghijkl"


def test_bitfield_set_and_unset():
    bf = Bitfield(10)
    bf.set_bit(3)
    bf.set_bit(9)
    assert bf.has_bit(3)
    assert bf.has_bit(9)
    assert not bf.has_bit(4)
    bf.unset_bit(3)
    assert not bf.has_bit(3)
    assert bf.count() == 1
    assert list(bf) == [9]


def test_bitfield_complete():
    bf = Bitfield(5)
    assert not bf.complete()
    for i in range(5):
        bf.set_bit(i)
    assert bf.complete()
    assert bf.count() == len(bf)


def test_bitfield_out_of_range():
    bf = Bitfield(4)
    with pytest.raises(IndexError):
        bf.set_bit(4)
    with pytest.raises(IndexError):
        bf.has_bit(-1)


def test_bitfield_msb_first():
    bf = Bitfield.from_bytes(b"\x80", 8)
    assert bf.has_bit(0)
    assert list(bf) == [0]


def test_bitfield_bytes_round_trip():
    bf = Bitfield(20)
    for i in (0, 7, 8, 19):
        bf.set_bit(i)
    again = Bitfield.from_bytes(bf.to_bytes(), 20)
    assert again == bf
    assert list(again) == [0, 7, 8, 19]


def test_bitfield_from_short_bytes():
    with pytest.raises(ValueError):
        Bitfield.from_bytes(b"\x00", 9)


def test_bitfield_cap():
    bf = Bitfield.from_bytes(b"\xff", 8)
    assert not bf.cap(5)
    assert len(bf) == 8
    bf2 = Bitfield.from_bytes(b"\xf8", 8)
    assert bf2.cap(5)
    assert len(bf2) == 5
    assert bf2.complete()
    assert not Bitfield.from_bytes(b"\x00\x00", 16).cap(5)


def test_encode_simple_messages():
    assert encode_message(KeepAlive()) == bytes([0, 0, 0, 0])
    assert encode_message(Choke()) == bytes([0, 0, 0, 1, 0])
    assert encode_message(Unchoke()) == bytes([0, 0, 0, 1, 1])
    assert encode_message(Interested()) == bytes([0, 0, 0, 1, 2])


def test_encode_have():
    assert encode_message(Have(1)) == bytes([0, 0, 0, 5, 4, 0, 0, 0, 1])


def test_encode_bitfield():
    bf = Bitfield(32)
    for i in range(32):
        bf.set_bit(i)
    assert encode_message(BitfieldMessage(bf)) == bytes([0, 0, 0, 5, 5, 0xFF, 0xFF, 0xFF, 0xFF])


def test_encode_request_and_cancel():
    assert encode_message(Request(1, 1, 1)) == bytes(
        [0, 0, 0, 13, 6, 0, 0, 0, 1, 0, 0, 0, 1, 0, 0, 0, 1]
    )
    assert encode_message(Cancel(1, 1, 1)) == bytes(
        [0, 0, 0, 13, 8, 0, 0, 0, 1, 0, 0, 0, 1, 0, 0, 0, 1]
    )


def test_encode_piece():
    data = b"\x01" * 16_384
    wire = encode_message(Piece(1, 1, 16_384, data))
    assert wire[:13] == bytes([0, 0, 0x40, 0x09, 7, 0, 0, 0, 1, 0, 0, 0, 1])
    assert wire[13:] == data


def test_encode_piece_short_data():
    with pytest.raises(ValueError):
        encode_message(Piece(0, 0, 10, b"abc"))


def test_encode_port():
    assert encode_message(Port(6881)) == bytes([0, 0, 0, 3, 9, 0x1A, 0xE1])


def test_encode_handshake():
    wire = encode_message(Handshake(bytes(8), bytes(20), PEER_ID))
    assert len(wire) == 68
    assert wire[0] == 19
    assert wire[1:20] == b"BitTorrent protocol"
    assert wire[48:] == PEER_ID


def test_handshake_rejects_bad_lengths():
    with pytest.raises(ValueError):
        Handshake(bytes(7), bytes(20), PEER_ID)


def test_encode_extension_frame_length():
    payload = b"d1:md11:ut_metadatai3eee"
    wire = encode_message(Extension(0, payload))
    assert int.from_bytes(wire[:4], "big") == len(wire) - 4
    assert wire[4] == 20
    assert wire[6:] == payload


def test_is_special():
    assert is_special(Handshake(bytes(8), bytes(20), PEER_ID))
    assert is_special(Extension(1, b""))
    assert is_special(BitfieldMessage(Bitfield(8)))
    assert not is_special(Have(3))
    assert not is_special(Piece(0, 0, 1, b"x"))