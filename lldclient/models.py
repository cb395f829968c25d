"""Data structures for channel descriptors, frames and client events."""

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Union

import numpy as np

from .common import METADATA_ID

@dataclass
class PacketHeader:
    id:     int
    length: int     # total message length, header included

@dataclass
class Frame:
    """One complete protocol unit reconstructed from the byte stream."""
    header:  PacketHeader
    payload: bytes

    @property
    def is_control(self) -> bool:
        return bool(self.header.id & METADATA_ID)

@dataclass
class ChannelInfo:
    name:               str
    sample_period:      float = 0.0     # seconds
    data_type:          str = ""
    scale:              float = 1.0
    offset:             float = 0.0
    decimation_factor:  int = 1

    @property
    def sample_rate(self) -> float:
        if self.sample_period <= 0:
            return 0.0
        return 1.0 / self.sample_period

    def scale_samples(self, samples: np.ndarray) -> np.ndarray:
        """Convert raw samples to engineering units: value*scale+offset."""
        return np.asarray(samples, dtype=np.float64) * self.scale + self.offset

@dataclass
class SubscribedEntry:
    """One element of a server `subscribed` confirmation."""
    name:                       str
    id:                         int
    first_sample_timestamp_ns:  int

class EventType(Enum):
    AVAILABLE_CHANNEL           = "available_channel"
    UNAVAILABLE_CHANNEL         = "unavailable_channel"
    CHANNEL_SUBSCRIBED          = "channel_subscribed"
    CHANNEL_UNSUBSCRIBED        = "channel_unsubscribed"
    CHANNEL_FIRST_SAMPLE_TS     = "channel_first_sample_ts"
    ACQUIRE                     = "acquire"
    CHANNEL_DATA                = "channel_data"

@dataclass
class AvailableChannelEvent:
    type: ClassVar[EventType] = EventType.AVAILABLE_CHANNEL
    channel: ChannelInfo

@dataclass
class UnavailableChannelEvent:
    type: ClassVar[EventType] = EventType.UNAVAILABLE_CHANNEL
    name: str

@dataclass
class ChannelSubscribedEvent:
    type: ClassVar[EventType] = EventType.CHANNEL_SUBSCRIBED
    name: str
    id:   int

@dataclass
class ChannelUnsubscribedEvent:
    type: ClassVar[EventType] = EventType.CHANNEL_UNSUBSCRIBED
    id: int

@dataclass
class ChannelFirstSampleTimestampEvent:
    type: ClassVar[EventType] = EventType.CHANNEL_FIRST_SAMPLE_TS
    name:       str
    id:         int
    timestamp:  float   # seconds since epoch, 0.0 while acquisition is off

@dataclass
class AcquireEvent:
    type: ClassVar[EventType] = EventType.ACQUIRE
    state: bool

@dataclass
class ChannelDataEvent:
    type: ClassVar[EventType] = EventType.CHANNEL_DATA
    id:         int
    samples:    np.ndarray  # read-only float32 view over the frame payload
    n_samples:  int

Event = Union[
    AvailableChannelEvent,
    UnavailableChannelEvent,
    ChannelSubscribedEvent,
    ChannelUnsubscribedEvent,
    ChannelFirstSampleTimestampEvent,
    AcquireEvent,
    ChannelDataEvent,
]
