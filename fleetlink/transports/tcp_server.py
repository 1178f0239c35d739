import socket
import threading
import logging
from typing import Callable, Optional, Tuple

from fleetlink.transports.line_channel import LineChannel


class TcpListener:
    """
    TCP accept loop handing every connection to its own worker thread.

    `on_connection(channel)` runs on that thread and owns the channel for its
    lifetime; the listener only closes the channels it handed out on stop().
    """

    def __init__(self, name: str, host: str, port: int,
                 on_connection: Callable[[LineChannel], None],
                 read_timeout: Optional[float] = None):
        self.name = name
        self.host = host
        self.port = int(port)
        self.on_connection = on_connection
        self.read_timeout = read_timeout
        self._sock: Optional[socket.socket] = None
        self._run = False
        self._threads = []
        self._channels = set()
        self._lock = threading.Lock()
        self._bound = threading.Event()

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (host, port); valid once start() has returned."""
        self._bound.wait(timeout=5.0)
        return self._sock.getsockname()[:2]

    def start(self):
        self._run = True
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((self.host, self.port))
        sock.listen()
        # short accept timeout so stop() is noticed
        sock.settimeout(0.5)
        self._sock = sock
        self._bound.set()
        logging.info(f"[tcp:{self.name}] listening on {self.host}:{self.address[1]}")
        t = threading.Thread(target=self._accept_loop, name=f"{self.name}-accept", daemon=False)
        t.start()
        self._threads.append(t)

    def stop(self):
        self._run = False
        with self._lock:
            channels = list(self._channels)
        for ch in channels:
            ch.close()
        # Join the accept loop; it closes the listening socket on exit
        for thr in self._threads:
            thr.join(timeout=2.0)

    def _accept_loop(self):
        try:
            while self._run:
                try:
                    conn, addr = self._sock.accept()
                except socket.timeout:
                    continue
                except OSError as e:
                    if self._run:
                        logging.warning(f"[tcp:{self.name}] accept failed: {e}")
                    break
                channel = LineChannel(conn, read_timeout=self.read_timeout)
                logging.info(f"[tcp:{self.name}] connection from {channel.peer}")
                with self._lock:
                    self._channels.add(channel)
                t = threading.Thread(target=self._serve, args=(channel,),
                                     name=f"{self.name}-{channel.peer}", daemon=True)
                t.start()
        finally:
            try:
                self._sock.close()
            except OSError:
                pass

    def _serve(self, channel: LineChannel):
        try:
            self.on_connection(channel)
        except Exception as e:
            # a crashed worker stops serving only this connection
            logging.exception(f"[tcp:{self.name}] worker for {channel.peer} crashed: {e}")
        finally:
            channel.close()
            with self._lock:
                self._channels.discard(channel)
