"""Torrent metainfo: parsing, serialisation and piece/file geometry."""

from __future__ import annotations

import base64
import binascii
import hashlib
import random
import re
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any
from urllib.parse import parse_qsl, urlsplit

BLOCK_SIZE = 16_384

_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*$")


class InfoError(ValueError):
    """Raised when torrent metadata or a magnet link is invalid."""


@dataclass
class File:
    """A single file of a torrent."""

    path: PurePosixPath
    length: int


@dataclass(frozen=True)
class Location:
    """A span of a block or piece that lies within one file."""

    file: int
    file_len: int
    offset: int
    start: int
    end: int
    allocate: bool = False


def _encode(value: Any) -> bytes:
    """Bencode a value built from ints, bytes, str, lists and dicts."""
    if isinstance(value, bool):
        raise TypeError("booleans cannot be bencoded")
    if isinstance(value, int):
        return b"i%de" % value
    if isinstance(value, str):
        value = value.encode("utf-8")
    if isinstance(value, (bytes, bytearray)):
        return b"%d:" % len(value) + bytes(value)
    if isinstance(value, (list, tuple)):
        return b"l" + b"".join(_encode(v) for v in value) + b"e"
    if isinstance(value, dict):
        items = sorted(
            ((k.encode("utf-8") if isinstance(k, str) else bytes(k), v) for k, v in value.items()),
            key=lambda kv: kv[0],
        )
        return b"d" + b"".join(_encode(k) + _encode(v) for k, v in items) + b"e"
    raise TypeError(f"cannot bencode value of type {type(value).__name__}")


def _as_dict(value: Any) -> dict[str, Any] | None:
    if not isinstance(value, dict):
        return None
    result = {}
    for key, item in value.items():
        if isinstance(key, (bytes, bytearray)):
            try:
                key = bytes(key).decode("utf-8")
            except UnicodeDecodeError:
                return None
        result[key] = item
    return result


def _as_list(value: Any) -> list[Any] | None:
    return list(value) if isinstance(value, list) else None


def _as_int(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def _as_bytes(value: Any) -> bytes | None:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    return None


def _as_str(value: Any) -> str | None:
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        try:
            return bytes(value).decode("utf-8")
        except UnicodeDecodeError:
            return None
    return None


def _parse_url(text: str) -> str | None:
    try:
        parts = urlsplit(text)
    except ValueError:
        return None
    if not parts.scheme or not _SCHEME_RE.match(parts.scheme):
        return None
    if " " in text or not (parts.netloc or parts.path):
        return None
    return text


def _decode_hash(text: str) -> bytes | None:
    try:
        raw = bytes.fromhex(text)
    except ValueError:
        raw = None
    if raw is not None and len(raw) == 20 and len(text) == 40:
        return raw
    try:
        raw = base64.b32decode(text, casefold=True)
    except (binascii.Error, ValueError):
        return None
    return raw if len(raw) == 20 else None


def _file_from_bencode(data: Any) -> File:
    d = _as_dict(data)
    if d is None:
        raise InfoError("File must be a dictionary type!")
    name, path, length = d.get("name"), d.get("path"), d.get("length")
    if length is None or (name is None) == (path is None):
        raise InfoError("File dict must contain length and name or path")
    size = _as_int(length)
    if size is None:
        raise InfoError("File length must be a valid int")
    if name is not None:
        text = _as_str(name)
        if text is None:
            raise InfoError("Path must be a valid string.")
        return File(PurePosixPath(text), size)
    parts = _as_list(path)
    if parts is None:
        raise InfoError("File path should be a list")
    names = []
    for part in parts:
        text = _as_str(part)
        if text is None:
            raise InfoError("File path parts should be strings")
        names.append(text)
    return File(PurePosixPath(*names), size)


def _parse_files(info: dict[str, Any]) -> list[File]:
    files = _as_list(info.pop("files", None))
    if files is None:
        return [_file_from_bencode(info)]
    name = _as_str(info.pop("name", None))
    if name is None:
        raise InfoError("Multifile mode must have a name field")
    root = PurePosixPath(name)
    result = []
    for entry in files:
        f = _file_from_bencode(entry)
        result.append(File(root / f.path, f.length))
    return result


def generate_piece_idx(pieces: int, piece_len: int, files: Sequence[File]) -> list[tuple[int, int]]:
    """Map every piece index to the (file index, file offset) where it starts."""
    result = []
    file = 0
    offset = 0
    for _ in range(pieces):
        result.append((file, offset))
        offset += piece_len
        while file < len(files) and offset >= files[file].length:
            offset -= files[file].length
            file += 1
    return result


@dataclass
class Info:
    """Metadata describing a torrent."""

    name: str = ""
    hash: bytes = bytes(20)
    piece_len: int = 0
    total_len: int = 0
    hashes: list[bytes] = field(default_factory=list)
    files: list[File] = field(default_factory=list)
    announce: str | None = None
    creator: str | None = None
    comment: str | None = None
    private: bool = False
    be_name: bytes | None = None
    piece_idx: list[tuple[int, int]] = field(default_factory=list)
    url_list: list[list[str]] = field(default_factory=list)

    @classmethod
    def from_magnet(cls, data: str) -> Info:
        """Build incomplete metadata from a magnet link."""
        try:
            parts = urlsplit(data)
        except ValueError as exc:
            raise InfoError("Failed to parse magnet URL!") from exc
        if not parts.scheme or not _SCHEME_RE.match(parts.scheme):
            raise InfoError("Failed to parse magnet URL!")
        if parts.scheme.lower() != "magnet":
            raise InfoError("magnet URL must use magnet URL scheme")
        pairs = parse_qsl(parts.query, keep_blank_values=True)

        info_hash = next(
            (_decode_hash(v[9:]) for k, v in pairs if k == "xt" and v.startswith("urn:btih:")),
            None,
        )
        if info_hash is None:
            raise InfoError("No hash found in magnet")

        trackers = [u for k, v in pairs if k == "tr" and (u := _parse_url(v)) is not None]
        random.shuffle(trackers)
        name = next((v for k, v in pairs if k == "dn"), "")
        return cls(name=name, hash=info_hash, url_list=[trackers])

    @classmethod
    def from_bencode(cls, data: Any) -> Info:
        """Build metadata from a decoded torrent file."""
        top = _as_dict(data)
        info = _as_dict(top.get("info")) if top is not None else None
        if top is None or info is None:
            raise InfoError("invalid info field")
        info_hash = hashlib.sha1(_encode(info)).digest()
        info = dict(info)

        announce = None
        announce_text = _as_str(top.get("announce"))
        if announce_text is not None:
            announce = _parse_url(announce_text)
        comment = _as_str(top.get("comment"))
        creator = _as_str(top.get("created by"))

        piece_len = _as_int(info.pop("piece length", None))
        if piece_len is None:
            raise InfoError("Info must specify piece length")

        pieces = _as_bytes(info.pop("pieces", None))
        if pieces is None or len(pieces) % 20:
            raise InfoError("Info must provide valid hashes")
        hashes = [pieces[i:i + 20] for i in range(0, len(pieces), 20)]

        private = False
        if "private" in info:
            flag = _as_int(info.pop("private"))
            if flag not in (0, 1):
                raise InfoError("private key must be an integer equal to 0 or 1 if present!")
            private = flag == 1

        be_name = None
        if "name" in info:
            be_name = _as_bytes(info["name"])
            if be_name is None:
                raise InfoError("name field must be a bitstring!")

        files = _parse_files(info)
        if not files or files[0].path.is_absolute() or not files[0].path.parts:
            raise InfoError("Torrent must contain a relative file path")
        name = files[0].path.parts[0]

        url_list = []
        for tier in _as_list(top.get("announce-list")) or []:
            urls = [
                u
                for item in (_as_list(tier) or [])
                if (text := _as_str(item)) is not None and (u := _parse_url(text)) is not None
            ]
            random.shuffle(urls)
            url_list.append(urls)

        return cls(
            name=name,
            hash=info_hash,
            piece_len=piece_len,
            total_len=sum(f.length for f in files),
            hashes=hashes,
            files=files,
            announce=announce,
            creator=creator,
            comment=comment,
            private=private,
            be_name=be_name,
            piece_idx=generate_piece_idx(len(hashes), piece_len, files),
            url_list=url_list,
        )

    def complete(self) -> bool:
        """Whether the piece hashes are known."""
        return bool(self.hashes)

    def to_bencode(self) -> dict[str, Any]:
        """Return the info dictionary of this torrent."""
        info: dict[str, Any] = {}
        if self.be_name is not None:
            info["name"] = self.be_name
        if self.private:
            info["private"] = 1
        info["piece length"] = self.piece_len
        info["pieces"] = b"".join(self.hashes)
        if len(self.files) == 1:
            info["length"] = self.files[0].length
        else:
            info["files"] = [
                {"length": f.length, "path": str(f.path).encode("utf-8")} for f in self.files
            ]
        return info

    def to_torrent_bencode(self) -> dict[str, Any]:
        """Return a torrent file dictionary holding the announce URL and info."""
        torrent: dict[str, Any] = {}
        if self.announce is not None:
            torrent["announce"] = self.announce.encode("utf-8")
        torrent["info"] = self.to_bencode()
        return torrent

    def pieces(self) -> int:
        """Number of pieces."""
        return len(self.hashes)

    def piece_len_of(self, idx: int) -> int:
        """Length of the piece at ``idx``; the last piece may be shorter."""
        if not self.complete():
            return 0
        if idx != max(self.pieces() - 1, 0):
            return self.piece_len
        return self.total_len - self.piece_len * (self.pieces() - 1)

    def block_len(self, idx: int, offset: int) -> int:
        """Length of the block at ``offset`` within piece ``idx``."""
        if idx != self.pieces() - 1:
            return BLOCK_SIZE
        last_piece_len = self.piece_len_of(idx)
        last_block_len = last_piece_len - offset
        if offset < last_piece_len and last_block_len <= BLOCK_SIZE:
            return last_block_len
        return BLOCK_SIZE

    def block_disk_locs(
        self, index: int, begin: int, priorities: Sequence[int] | None = None
    ) -> Iterator[Location]:
        """File locations covered by the block at ``index``/``begin``."""
        return self.locations(index, begin, self.block_len(index, begin), priorities)

    def piece_disk_locs(self, index: int) -> Iterator[Location]:
        """File locations covered by the piece at ``index``."""
        return self.locations(index, 0, self.piece_len_of(index))

    def locations(
        self,
        index: int,
        begin: int,
        length: int,
        priorities: Sequence[int] | None = None,
    ) -> Iterator[Location]:
        """File locations covered by ``length`` bytes at ``begin`` in piece ``index``."""
        file, offset = self.piece_idx[index]
        offset += begin
        try:
            while self.files[file].length < offset:
                offset -= self.files[file].length
                file += 1
        except IndexError as exc:
            raise InfoError("location lies past the last file") from exc
        return self._walk(file, offset, length, priorities)

    def _walk(
        self, file: int, offset: int, length: int, priorities: Sequence[int] | None
    ) -> Iterator[Location]:
        data_start = 0
        while True:
            if file >= len(self.files):
                raise InfoError("location lies past the last file")
            file_len = self.files[file].length
            amount = min(file_len - offset, length)
            yield Location(
                file=file,
                file_len=file_len,
                offset=offset,
                start=data_start,
                end=data_start + amount,
                allocate=priorities is not None and priorities[file] != 0,
            )
            if amount == length:
                return
            offset = 0
            file += 1
            length -= amount
            data_start += amount