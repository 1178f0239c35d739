import socket
import threading
import logging
from typing import Iterator, Optional

from fleetlink.core.errors import ChannelClosed


class LineChannel:
    """
    Newline-delimited text channel over a connected TCP socket.

    Reads are blocking and unbounded unless a read timeout is given. Writes are
    serialized by a per-channel lock so two threads (e.g. an ACK and a STATUS
    emitted back to back) can never interleave partial lines.
    """

    def __init__(self, sock: socket.socket, name: str = None, read_timeout: Optional[float] = None):
        self._sock = sock
        self._sock.settimeout(read_timeout)
        self._write_lock = threading.Lock()
        self._closed = threading.Event()
        try:
            peer = sock.getpeername()
            self.peer = f"{peer[0]}:{peer[1]}"
        except OSError:
            self.peer = "?"
        self.name = name or self.peer
        self._reader = sock.makefile("r", encoding="utf-8", errors="replace", newline="\n")

    @classmethod
    def connect(cls, host: str, port: int, name: str = None, timeout: float = 5.0) -> "LineChannel":
        sock = socket.create_connection((host, port), timeout=timeout)
        return cls(sock, name=name)

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def send(self, text: str):
        if self._closed.is_set():
            raise ChannelClosed(f"{self.name}: channel closed")
        data = (text if text.endswith("\n") else text + "\n").encode("utf-8")
        try:
            with self._write_lock:
                self._sock.sendall(data)
        except OSError as e:
            raise ChannelClosed(f"{self.name}: send failed: {e}") from e

    def lines(self) -> Iterator[str]:
        """Yield received lines (without terminator) until end-of-stream.

        Raises ChannelClosed if the socket fails mid-read."""
        while not self._closed.is_set():
            try:
                line = self._reader.readline()
            except (OSError, ValueError) as e:
                # ValueError: reader closed underneath us by close()
                raise ChannelClosed(f"{self.name}: read failed: {e}") from e
            if not line:
                return
            line = line.rstrip("\r\n")
            if line:
                yield line

    def close(self):
        if self._closed.is_set():
            return
        self._closed.set()
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        for closer in (self._reader.close, self._sock.close):
            try:
                closer()
            except OSError as e:
                logging.debug(f"[channel:{self.name}] close error: {e}")
