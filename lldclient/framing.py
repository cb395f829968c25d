"""Stream framing for the low-latency data protocol."""

import struct
from typing import Iterator

import numpy as np

from .common import (
    HEADER_SIZE,
    METADATA_ID,
    RECV_BUFFER_SIZE,
    SAMPLE_DTYPE,
    _is_legal_id,
)
from .models import Frame, PacketHeader

_HEADER = struct.Struct(">II")

class FramingError(RuntimeError):
    """The byte stream can no longer be split into messages."""

class ConnectionClosedError(ConnectionError):
    """The transport returned a zero length read."""

def decode_header(data) -> PacketHeader:
    if len(data) < HEADER_SIZE:
        raise FramingError(f"Short header: {len(data)} bytes")
    packet_id, length = _HEADER.unpack_from(data, 0)
    return PacketHeader(id=packet_id, length=length)

def encode_header(packet_id: int, payload_len: int) -> bytes:
    return _HEADER.pack(packet_id, HEADER_SIZE + payload_len)

def encode_packet(packet_id: int, payload: bytes) -> bytes:
    """Header and payload as one buffer so a single send carries both."""
    return encode_header(packet_id, len(payload)) + payload

def encode_control_packet(payload: bytes) -> bytes:
    return encode_packet(METADATA_ID, payload)

def decode_samples(payload, dtype: str = SAMPLE_DTYPE) -> np.ndarray:
    """
    View a data payload as float32 samples.
    A trailing partial sample is ignored.
    """
    n_samples = len(payload) // 4
    if n_samples == 0:
        empty = np.empty(0, dtype=dtype)
        empty.flags.writeable = False
        return empty
    return np.frombuffer(payload, dtype=dtype, count=n_samples)

class FrameReader:
    """
    Reassembles protocol messages from a stream byte source.

    `source` is anything with a socket style ``recv_into(buffer, nbytes)``.
    Iterating yields one Frame per message in arrival order and never a
    partial message. Iteration ends by raising:
      - FramingError on buffer overflow, an illegal id or a short length
      - ConnectionClosedError on a zero length read
      - whatever OSError the source raises
    """

    def __init__(self, source, buffer_size: int = RECV_BUFFER_SIZE):
        self._source = source
        self._buf    = bytearray(buffer_size)
        self._view   = memoryview(self._buf)
        self.frame_count = 0
        self.last_header = None

    def __iter__(self) -> Iterator[Frame]:
        return self.frames()

    def frames(self) -> Iterator[Frame]:
        offset  = 0
        to_read = HEADER_SIZE

        while True:
            if offset + to_read > len(self._buf):
                detail = f"Invalid amount to read {to_read} to offset {offset}"
                if self.last_header is not None:
                    detail += (f" (last id=0x{self.last_header.id:x}"
                               f" length={self.last_header.length})")
                raise FramingError(detail)

            n_read = self._source.recv_into(self._view[offset:offset + to_read], to_read)
            if n_read <= 0:
                raise ConnectionClosedError("Connection closed by server")
            offset += n_read

            if offset < HEADER_SIZE:
                to_read = HEADER_SIZE - offset
                continue

            header = decode_header(self._view)
            self.last_header = header
            if header.length < HEADER_SIZE:
                raise FramingError(f"Bad length {header.length} for id 0x{header.id:x}")

            if offset < header.length:
                if not _is_legal_id(header.id):
                    raise FramingError(f"Bad id 0x{header.id:x}")
                to_read = header.length - offset
                continue

            self.frame_count += 1
            yield Frame(header=header, payload=bytes(self._view[HEADER_SIZE:header.length]))

            offset  = 0
            to_read = HEADER_SIZE
