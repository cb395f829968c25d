import struct

import numpy as np
import orjson
import pytest

from lldclient.common import HEADER_SIZE, METADATA_ID
from lldclient.framing import ConnectionClosedError, FrameReader, decode_header
from lldclient.client import LowLatencyDataClient


def control_packet(message: dict) -> bytes:
    payload = orjson.dumps(message)
    return struct.pack(">II", METADATA_ID, HEADER_SIZE + len(payload)) + payload


def data_packet(channel_id: int, samples, dtype: str = ">f4") -> bytes:
    payload = np.asarray(samples, dtype=dtype).tobytes()
    return struct.pack(">II", channel_id, HEADER_SIZE + len(payload)) + payload


def split_packets(stream: bytes) -> list[tuple[int, bytes]]:
    """Split a stream of whole packets back into (id, payload) pairs."""
    out = []
    offset = 0
    while offset < len(stream):
        header = decode_header(stream[offset:offset + HEADER_SIZE])
        out.append((header.id, stream[offset + HEADER_SIZE:offset + header.length]))
        offset += header.length
    return out


class ChunkedSource:
    """
    Socket stand-in for FrameReader: serves `data` in pieces no larger than
    `chunk` (or following `cuts`), never more than the reader asked for,
    then reports end of stream with a zero length read.
    """

    def __init__(self, data: bytes, chunk: int = None, cuts=None):
        self.data = data
        self.pos = 0
        self.chunk = chunk
        self.cuts = sorted(set(cuts or []))

    def recv_into(self, buf, nbytes):
        if self.pos >= len(self.data):
            return 0
        limit = min(nbytes, len(self.data) - self.pos)
        if self.chunk:
            limit = min(limit, self.chunk)
        for cut in self.cuts:
            if cut > self.pos:
                limit = min(limit, cut - self.pos)
                break
        buf[:limit] = self.data[self.pos:self.pos + limit]
        self.pos += limit
        return limit


class FakeTransport:
    """Records every packet the engine sends."""

    def __init__(self):
        self.sent = []
        self.connected = False
        self.frame_cb = None

    def connect(self, frame_cb):
        self.frame_cb = frame_cb
        self.connected = True

    def disconnect(self, timeout=None):
        self.connected = False

    def send_packet(self, packet: bytes):
        self.sent.append(packet)

    def messages(self) -> list[dict]:
        out = []
        for packet in self.sent:
            for packet_id, payload in split_packets(packet):
                assert packet_id == METADATA_ID
                out.append(orjson.loads(payload))
        return out


@pytest.fixture
def events():
    return []


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def client(transport, events):
    return LowLatencyDataClient("127.0.0.1", event_handler=events.append, transport=transport)


def feed(client, *packets: bytes):
    """Push raw packets through a FrameReader into the client."""
    reader = FrameReader(ChunkedSource(b"".join(packets)))
    try:
        for frame in reader:
            client.process_frame(frame)
    except ConnectionClosedError:
        pass


AVAILABLE = {
    "available": {
        "temp": {"sample_period": 0.001, "data_type": "float", "scale": 2.0, "offset": 1.0},
        "press": {"sample_period": 0.01, "data_type": "int16", "scale": 1.0, "offset": 0.0},
    }
}
