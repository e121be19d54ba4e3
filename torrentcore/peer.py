"""State of a single connected peer and its handling of wire messages."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from torrentcore.info import Info
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
    Message,
    Piece,
    Port,
    Request,
    Unchoke,
    Uninterested,
)
from torrentcore.writer import Writer

INIT_MAX_QUEUE = 5
MAX_QUEUE_CAP = 600
# Reserved-bytes position and mask announcing DHT support.
DHT_EXT = (7, 0x01)


class PeerProtocolError(Exception):
    """Raised when a peer does not conform to the BitTorrent protocol."""


@dataclass
class ExtIDs:
    """Extension message ids the remote peer announced."""

    ut_meta: int | None = None
    ut_pex: int | None = None


@dataclass
class PeerStatus:
    """Choke and interest state of one side of a connection."""

    choked: bool = True
    interested: bool = False


def _bdecode(data: bytes, pos: int = 0) -> tuple[Any, int]:
    """Decode one bencoded value starting at ``pos``; return it and the end offset."""
    if pos >= len(data):
        raise ValueError("unexpected end of data")
    lead = data[pos:pos + 1]
    if lead == b"i":
        end = data.index(b"e", pos)
        return int(data[pos + 1:end]), end + 1
    if lead == b"l":
        pos += 1
        items = []
        while data[pos:pos + 1] != b"e":
            item, pos = _bdecode(data, pos)
            items.append(item)
        return items, pos + 1
    if lead == b"d":
        pos += 1
        result = {}
        while data[pos:pos + 1] != b"e":
            key, pos = _bdecode(data, pos)
            if not isinstance(key, bytes):
                raise ValueError("dictionary keys must be strings")
            result[key], pos = _bdecode(data, pos)
        return result, pos + 1
    if lead.isdigit():
        colon = data.index(b":", pos)
        size = int(data[pos:colon])
        start = colon + 1
        if start + size > len(data):
            raise ValueError("string runs past end of data")
        return data[start:start + size], start + size
    raise ValueError(f"invalid bencode at offset {pos}")


def _decode_all(data: bytes) -> Any:
    value, end = _bdecode(data)
    if end != len(data):
        raise ValueError("trailing data after bencoded value")
    return value


class Peer:
    """A connected peer: what it has, what it wants and what is in flight.

    Outgoing messages are written to ``conn`` through ``writer``.
    """

    def __init__(
        self,
        id: int,
        addr: tuple[str, int],
        info_hash: bytes,
        num_pieces: int,
        conn: Any,
        *,
        cid: bytes | None = None,
        rsv: bytes | None = None,
        rank: int = 0,
        dht_port: int | None = None,
        on_add_node: Callable[[tuple[str, int]], None] | None = None,
        on_availability: Callable[[float], None] | None = None,
    ) -> None:
        self.id = id
        self.addr = addr
        self.info_hash = info_hash
        self.conn = conn
        self.writer = Writer()
        self.pieces = Bitfield(num_pieces)
        self.piece_count = 0
        self.piece_cache: list[int] = []
        self.remote_status = PeerStatus()
        self.local_status = PeerStatus()
        self.queued = 0
        self.max_queue = INIT_MAX_QUEUE
        self.pieces_updated = False
        self.downloaded = 0
        self.uploaded = 0
        self.bytes_downloaded = 0
        self.bytes_uploaded = 0
        self.cid = cid
        self.rsv = rsv
        self.ext_ids = ExtIDs()
        self.rank = rank
        self.dht_port = dht_port
        self._on_add_node = on_add_node
        self._on_availability = on_availability

    def __repr__(self) -> str:
        return (
            f"Peer(addr={self.addr!r}, local_status={self.local_status!r}, "
            f"remote_status={self.remote_status!r})"
        )

    @property
    def availability(self) -> float:
        """Fraction of the torrent's pieces this peer has."""
        if len(self.pieces) == 0:
            return 0.0
        return self.piece_count / len(self.pieces)

    def ready(self) -> bool:
        """Whether the peer's handshake has been received."""
        return self.cid is not None

    def magnet_complete(self, info: Info) -> None:
        """Resize the piece set once a magnet's metadata is known."""
        if len(self.pieces) == 0:
            self.pieces = Bitfield(info.pieces())
        elif not self.pieces.cap(info.pieces()):
            raise PeerProtocolError("Invalid pieces size")

    def queue_reqs(self) -> int | None:
        """How many more requests may be queued, or ``None`` if none may be."""
        if self.remote_status.choked or self.queued > max(self.max_queue - 16, 0):
            return None
        return max(self.max_queue - self.queued, 0)

    def tick(self, avg_dl: int | None) -> bool:
        """Adjust the request pipeline from the average download rate.

        ``avg_dl`` is in bytes per second, or ``None`` if the peer is idle.
        Returns whether the peer is active.
        """
        if avg_dl is None:
            return False
        rate = (avg_dl // 1024) & 0xFFFF
        target = rate + 2 if rate < 20 else rate // 5 + 18
        self.max_queue = min(max(target, self.max_queue - 15, 0), self.max_queue + 50)
        self.max_queue = min(self.max_queue, MAX_QUEUE_CAP)
        if self.pieces_updated:
            self.pieces_updated = False
            self._notify_availability()
        return True

    def handle_msg(self, msg: Message) -> None:
        """Update peer state from a received message."""
        match msg:
            case Handshake(rsv=rsv, id=cid):
                idx, mask = DHT_EXT
                if rsv[idx] & mask and self.dht_port is not None:
                    self.send_message(Port(self.dht_port))
                self.rsv = rsv
                self.cid = cid
            case Piece(length=length):
                if self.queued == 0:
                    raise PeerProtocolError("Peer sent a piece that was not requested")
                self.bytes_downloaded += length
                self.downloaded += 1
                self.queued -= 1
            case Request():
                if self.local_status.choked:
                    raise PeerProtocolError("Peer requested while choked!")
            case Choke():
                self.remote_status.choked = True
            case Unchoke():
                self.remote_status.choked = False
            case Interested():
                self.remote_status.interested = True
            case Uninterested():
                self.remote_status.interested = False
            case Have(index):
                if index >= len(self.pieces):
                    raise PeerProtocolError("Invalid piece provided in HAVE!")
                if self.pieces.has_bit(index):
                    raise PeerProtocolError("Duplicate piece provided in HAVE!")
                self.pieces.set_bit(index)
                self.piece_count += 1
                self.pieces_updated = True
            case BitfieldMessage(pieces):
                if len(self.pieces) > 0 and not pieces.cap(len(self.pieces)):
                    raise PeerProtocolError("Invalid pieces size")
                msg.pieces, self.pieces = self.pieces, pieces
                self.piece_count = self.pieces.count()
                self._notify_availability()
            case KeepAlive():
                self.send_message(KeepAlive())
            case Cancel(index=index, begin=begin):
                self.writer.cancel(index, begin)
            case Port(port):
                if self._on_add_node is not None:
                    self._on_add_node((self.addr[0], port))
            case Extension(id=ext_id, payload=payload):
                if ext_id == 0:
                    self._ext_handshake(payload)

    def _ext_handshake(self, payload: bytes) -> None:
        try:
            decoded = _decode_all(bytes(payload))
        except ValueError as exc:
            raise PeerProtocolError("Invalid bencode in ext handshake") from exc
        if not isinstance(decoded, dict):
            raise PeerProtocolError("Invalid bencode type in ext handshake")
        ids = decoded.get(b"m")
        if not isinstance(ids, dict):
            raise PeerProtocolError("Invalid metadata in in ext handshake")

        def ext_id(key: bytes) -> int | None:
            value = ids.get(key)
            return value & 0xFF if isinstance(value, int) else None

        self.ext_ids.ut_meta = ext_id(b"ut_metadata")
        self.ext_ids.ut_pex = ext_id(b"ut_pex")

    def request_piece(self, idx: int, offset: int, length: int) -> None:
        """Request a block and count it as queued."""
        self.queued += 1
        self.send_message(Request(idx, offset, length))

    def choke(self) -> None:
        """Choke the peer if it is not already choked."""
        if not self.local_status.choked:
            self.local_status.choked = True
            self.send_message(Choke())

    def unchoke(self) -> None:
        """Unchoke the peer if it is choked."""
        if self.local_status.choked:
            self.local_status.choked = False
            self.send_message(Unchoke())

    def interested(self) -> None:
        """Declare interest if not already declared."""
        if not self.local_status.interested:
            self.local_status.interested = True
            self.send_message(Interested())

    def send_message(self, msg: Message) -> None:
        """Send a message to the peer, counting uploaded pieces."""
        if isinstance(msg, Piece):
            self.uploaded += 1
            self.bytes_uploaded += msg.length
        self.writer.write_message(msg, self.conn)

    def flush(self) -> tuple[int, int]:
        """Return and reset the uploaded and downloaded piece counts."""
        counts = (self.uploaded, self.downloaded)
        self.uploaded = 0
        self.downloaded = 0
        return counts

    def _notify_availability(self) -> None:
        if self.cid is not None and self._on_availability is not None:
            self._on_availability(self.availability)