"""Buffered, non-blocking writing of peer wire messages."""

from __future__ import annotations

import errno
from collections import deque
from typing import Any

from torrentcore.messages import Message, Piece, encode_message
from torrentcore.reader import ProtocolError


class _WouldBlock(Exception):
    """The connection accepted nothing and would block."""


class Writer:
    """Writes messages to a connection, queueing them while it is busy.

    ``write_queue`` holds messages waiting to be written; a peer may filter
    it to drop cancelled pieces.
    """

    def __init__(self) -> None:
        self.write_queue: deque[Message] = deque()
        self.blocks_written = 0
        self._ready = True
        self._pending: memoryview | None = None
        self._pending_piece = False
        self._idx = 0

    def writable(self, conn: Any) -> None:
        """Mark the connection writable and write as much as it accepts."""
        self._ready = True
        self._flush(conn)

    def write_message(self, msg: Message, conn: Any) -> None:
        """Write ``msg`` now if idle, otherwise queue it."""
        if self._pending is None:
            self._setup(msg)
        else:
            self.write_queue.append(msg)
        if self._ready:
            self._flush(conn)

    def cancel(self, index: int, begin: int) -> None:
        """Drop queued pieces for the block at ``index``/``begin``."""
        self.write_queue = deque(
            m
            for m in self.write_queue
            if not (isinstance(m, Piece) and m.index == index and m.begin == begin)
        )

    def _setup(self, msg: Message) -> None:
        self._pending = memoryview(encode_message(msg))
        self._pending_piece = isinstance(msg, Piece)
        self._idx = 0

    def _flush(self, conn: Any) -> None:
        if self._pending is None:
            return
        while True:
            try:
                done = self._write_once(conn)
            except (_WouldBlock, BlockingIOError, BrokenPipeError, InterruptedError):
                return
            except ProtocolError:
                raise
            except OSError as exc:
                if exc.errno == errno.ENOTCONN:
                    return
                raise
            if done:
                if self.write_queue:
                    self._setup(self.write_queue.pop())
                else:
                    self._pending = None
                    return

    def _write_once(self, conn: Any) -> bool:
        assert self._pending is not None
        send = getattr(conn, "send", None) or conn.write
        amount = send(self._pending[self._idx:])
        if amount is None:
            raise _WouldBlock
        if amount == 0:
            raise ProtocolError("EOF")
        self._idx += amount
        if self._idx == len(self._pending):
            if self._pending_piece:
                self.blocks_written += 1
            return True
        self._ready = False
        return False