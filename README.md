# torrentcore

Building blocks for a BitTorrent client. The package reads torrent metainfo and
magnet links and works out where pieces and blocks fall across a torrent's
files. It also encodes and decodes peer wire messages and keeps the protocol
state of a single connected peer.

The package has no dependencies outside the standard library.

## Modules

### `torrentcore.info`

- `Info.from_bencode(data)` builds an `Info` from an already decoded torrent
  file, which is a dict holding an `info` dict. Keys may be `str` or `bytes`.
  The info hash is the SHA-1 of the re-encoded info dictionary. The trackers in
  each `announce-list` tier are shuffled.
- `Info.from_magnet(link)` builds an incomplete `Info` from a `magnet:` link.
  It reads the `xt=urn:btih:` hash in hex or base32, the `dn` name and the
  `tr` trackers.
- `complete()` tells whether piece hashes are known. `pieces()` gives the
  number of pieces.
- `piece_len_of(idx)` and `block_len(idx, offset)` give lengths. The last piece
  and its last block may be short. Blocks are 16384 bytes.
- `block_disk_locs(index, begin, priorities)`, `piece_disk_locs(index)` and
  `locations(index, begin, length, priorities)` yield `Location` values
  (`file`, `file_len`, `offset`, `start`, `end`, `allocate`), one for each file
  that a span touches.
- `to_bencode()` returns the info dictionary. `to_torrent_bencode()` returns it
  wrapped with the announce URL. Both are plain Python dicts, not encoded bytes.
- `generate_piece_idx(pieces, piece_len, files)` maps each piece to the file
  index and offset where the piece starts.
- Invalid metadata raises `InfoError`, a `ValueError`.

### `torrentcore.messages`

- Message dataclasses: `Handshake`, `KeepAlive`, `Choke`, `Unchoke`,
  `Interested`, `Uninterested`, `Have`, `BitfieldMessage`, `Request`, `Piece`,
  `Cancel`, `Port`, `Extension`.
- `encode_message(msg)` gives the wire bytes of a message. `is_special(msg)`
  tells whether a message is a handshake, bitfield or extension message.
- `Bitfield` is a fixed-length set of bits, most significant bit first. Its
  methods are `has_bit`, `set_bit`, `unset_bit`, `count`, `complete`, `cap`,
  `to_bytes` and `Bitfield.from_bytes`. It also supports `len()` and iterating
  over set indices.

### `torrentcore.reader`

`Reader.readable(conn)` reads from `conn`, which is a socket with `recv` or any
object with `read`. It returns a complete message, or `None` if the read would
block before the message is finished. Partial data is kept between calls. The
reader expects a handshake first. Call `expect_messages()` to skip it.
Malformed input, unknown ids, oversized frames and EOF raise `ProtocolError`,
an `OSError`.

### `torrentcore.writer`

`Writer.write_message(msg, conn)` writes at once when the writer is idle and
queues the message otherwise. `conn` has `send` or `write`. Partial writes
resume through `writable(conn)`. `cancel(index, begin)` drops queued `Piece`
messages for a block. An EOF while writing raises `ProtocolError`.

### `torrentcore.peer`

`Peer` holds one connection's state. That covers the remote piece set, the
choke and interest state of each side (`PeerStatus`), extension ids (`ExtIDs`)
and request pipelining.

- `handle_msg(msg)` updates the state from a received message. It answers
  keep-alives, drops cancelled pieces from the writer and reads the extension
  handshake.
- `request_piece`, `choke`, `unchoke`, `interested` and `send_message` write
  through the peer's `Writer` to its connection.
- `queue_reqs()` says how many more requests may be queued.
  `tick(avg_dl)` adjusts the pipeline depth from a download rate.
  `flush()` returns and resets the uploaded and downloaded piece counts.
- `ready()` tells whether the handshake has arrived. `magnet_complete(info)`
  resizes the piece set once magnet metadata is known.
- Protocol violations raise `PeerProtocolError`.

## Example

```python
from torrentcore.info import Info

info = Info.from_magnet(
    "magnet:?xt=urn:btih:0123456789abcdef0123456789abcdef01234567&dn=example"
)
print(info.name, info.complete())  # example False
```

## What it does not do

This is a library, not a client. It opens no sockets and reads or writes no
files on disk. It has no tracker or DHT support and no piece picking or
choking. It does not manage torrent sessions. It has no public bencode decoder
for whole `.torrent` files: `Info.from_bencode` takes already decoded data. It
provides no command-line program.

## Tests

```
pip install -e .[test]
pytest
```