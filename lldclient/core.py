"""Public low-latency data client API and CLI test receiver."""

import logging
import threading
import time

from .common import (
    DEFAULT_PORT,
    HEADER_SIZE,
    METADATA_ID,
    MAX_DATA_CHANNEL_ID,
    RECV_BUFFER_SIZE,
    SAMPLE_DTYPE,
    NOT_FOUND,
    log,
)
from .models import (
    AcquireEvent,
    AvailableChannelEvent,
    ChannelDataEvent,
    ChannelFirstSampleTimestampEvent,
    ChannelInfo,
    ChannelSubscribedEvent,
    ChannelUnsubscribedEvent,
    Event,
    EventType,
    Frame,
    PacketHeader,
    SubscribedEntry,
    UnavailableChannelEvent,
)
from .framing import FrameReader, FramingError, ConnectionClosedError, decode_samples, encode_packet
from .codec import ControlMessageError, decode_control, encode_control
from .registry import ChannelRegistry
from .tcp_client import LowLatencyTCPClient
from .client import LowLatencyDataClient

__all__ = [
    "DEFAULT_PORT",
    "HEADER_SIZE",
    "METADATA_ID",
    "MAX_DATA_CHANNEL_ID",
    "RECV_BUFFER_SIZE",
    "SAMPLE_DTYPE",
    "NOT_FOUND",
    "AcquireEvent",
    "AvailableChannelEvent",
    "ChannelDataEvent",
    "ChannelFirstSampleTimestampEvent",
    "ChannelInfo",
    "ChannelSubscribedEvent",
    "ChannelUnsubscribedEvent",
    "Event",
    "EventType",
    "Frame",
    "PacketHeader",
    "SubscribedEntry",
    "UnavailableChannelEvent",
    "FrameReader",
    "FramingError",
    "ConnectionClosedError",
    "decode_samples",
    "encode_packet",
    "ControlMessageError",
    "decode_control",
    "encode_control",
    "ChannelRegistry",
    "LowLatencyTCPClient",
    "LowLatencyDataClient",
]


class SampleCounter:
    """Event sink for the test receiver: totals samples per channel id."""

    def __init__(self, wanted: list[str]):
        self.wanted        = wanted      # empty = every channel
        self.total_samples = {}          # channel id -> sample count
        self.names         = {}          # channel id -> name
        self.newly_available = []
        self._lock         = threading.Lock()

    def __call__(self, event):
        if isinstance(event, ChannelDataEvent):
            with self._lock:
                self.total_samples[event.id] = self.total_samples.get(event.id, 0) + event.n_samples
        elif isinstance(event, AvailableChannelEvent):
            ch = event.channel
            log.info(f"Available: {ch.name} type={ch.data_type} "
                     f"rate={ch.sample_rate:.1f} Hz scale={ch.scale} offset={ch.offset}")
            if not self.wanted or ch.name in self.wanted:
                with self._lock:
                    self.newly_available.append(ch.name)
        elif isinstance(event, UnavailableChannelEvent):
            log.info(f"Unavailable: {event.name}")
        elif isinstance(event, ChannelSubscribedEvent):
            with self._lock:
                self.names[event.id] = event.name
                self.total_samples[event.id] = 0
            log.info(f"Subscribed: {event.name} id={event.id}")
        elif isinstance(event, ChannelUnsubscribedEvent):
            log.info(f"Unsubscribed: id={event.id}")
        elif isinstance(event, ChannelFirstSampleTimestampEvent):
            log.info(f"First sample timestamp: {event.name} id={event.id} ts={event.timestamp:.6f}")
        elif isinstance(event, AcquireEvent):
            if not event.state:
                with self._lock:
                    for cid in self.total_samples:
                        self.total_samples[cid] = 0
            log.info(f"Acquisition {'on' if event.state else 'off'}")

    def take_newly_available(self) -> list[str]:
        with self._lock:
            names, self.newly_available = self.newly_available, []
        return names

    def summary(self) -> str:
        with self._lock:
            parts = [f"{self.names.get(cid, cid)}={count}"
                     for cid, count in sorted(self.total_samples.items())]
        return " ".join(parts) or "no channels"


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Low-latency data test receiver")
    parser.add_argument("host", help="IP address of host to connect to")
    parser.add_argument("port", nargs="?", default=DEFAULT_PORT,
                        help=f"Port number of host to connect to (default: {DEFAULT_PORT})")
    parser.add_argument("--channel", action="append", default=[],
                        help="Channel name to subscribe (repeatable, default: all)")
    parser.add_argument("--decimation", default=1, type=int, help="Decimation factor")
    parser.add_argument("--acquire", action="store_true", help="Toggle acquisition after subscribing")
    parser.add_argument("--secs", default=5, type=int, help="Seconds to run")
    parser.add_argument("--little-endian", action="store_true",
                        help="Server sends little-endian float samples")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                        help="Logging verbosity (default: INFO)")
    args = parser.parse_args()

    logging.getLogger().setLevel(getattr(logging, args.log_level))

    counter = SampleCounter(args.channel)
    client = LowLatencyDataClient(
        args.host,
        args.port,
        event_handler=counter,
        sample_dtype="<f4" if args.little_endian else SAMPLE_DTYPE,
    )

    try:
        client.connect()
        acquire_sent = False
        t_end = time.time() + args.secs
        t_report = time.time() + 1.0

        while time.time() < t_end and client.connected:
            for name in counter.take_newly_available():
                client.subscribe_channel(name, args.decimation)
            if args.acquire and not acquire_sent and client.subscribed_channels():
                client.acquire()
                acquire_sent = True
            if time.time() >= t_report:
                log.info(f"Samples: {counter.summary()}")
                t_report += 1.0
            time.sleep(0.1)

        log.info(f"Done. {counter.summary()}")

    except KeyboardInterrupt:
        log.info("Interrupted")
    finally:
        if client.connected:
            client.unsubscribe_all(timeout=2.0)
        client.close(timeout=2.0)
