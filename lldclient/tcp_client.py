"""TCP transport for the low-latency data server."""

import socket
import threading
from typing import Callable, Optional

from .common import DEFAULT_PORT, RECV_BUFFER_SIZE, _resolve_port, log
from .framing import ConnectionClosedError, FrameReader, FramingError
from .models import Frame

class LowLatencyTCPClient:
    """
    Owns the stream socket, the reader thread and the send lock.
    Complete frames are handed to `frame_cb` on the reader thread in
    arrival order.
    """

    def __init__(self, host: str, port=DEFAULT_PORT,
                 recv_buffer_size: int = RECV_BUFFER_SIZE):
        self.host        = host
        self.port        = _resolve_port(port)
        self.recv_buffer_size = recv_buffer_size
        self._sock       = None
        self._send_lock  = threading.Lock()
        self._exiting    = False
        self._recv_thread = None
        self._frame_cb   = None
        self.reader      = None

    @property
    def connected(self) -> bool:
        return self._sock is not None and self._recv_thread is not None \
            and self._recv_thread.is_alive()

    def connect(self, frame_cb: Callable[[Frame], None]):
        log.info(f"Connecting to {self.host}:{self.port}")
        self._frame_cb = frame_cb
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            self._sock.connect((self.host, self.port))
        except OSError:
            self._sock.close()
            self._sock = None
            raise
        self._sock.settimeout(None)
        self._exiting = False
        self.reader = FrameReader(self._sock, self.recv_buffer_size)
        self._recv_thread = threading.Thread(target=self._recv_loop,
                                             name="lldclient-reader", daemon=True)
        self._recv_thread.start()
        log.info("TCP connected")

    def disconnect(self, timeout: Optional[float] = None):
        """Mark the exit, force the blocking read to return, then join the reader."""
        self._exiting = True
        if self._sock:
            self._shutdown_socket()
        if self._recv_thread and self._recv_thread is not threading.current_thread():
            self._recv_thread.join(timeout)
        log.info("TCP disconnected")

    def send_packet(self, packet: bytes):
        """Write one complete packet; concurrent senders never interleave."""
        if self._sock is None:
            raise RuntimeError("Not connected")
        with self._send_lock:
            self._sock.sendall(packet)

    def _shutdown_socket(self):
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            log.debug(f"Socket shutdown: {e}")
        self._sock.close()

    def _recv_loop(self):
        try:
            for frame in self.reader:
                self._frame_cb(frame)
                if self._exiting:
                    break
        except FramingError as e:
            log.error(f"Protocol error, closing connection: {e}")
        except ConnectionClosedError as e:
            if not self._exiting:
                log.warning(f"TCP connection closed by server: {e}")
        except OSError as e:
            if not self._exiting:
                log.error(f"TCP recv error: {e}")

        if not self._exiting:
            self._shutdown_socket()
