"""Low-latency data streaming client package.

The public surface mirrors ``lldclient.core``.
"""

from .common import (
	DEFAULT_PORT,
	HEADER_SIZE,
	METADATA_ID,
	MAX_DATA_CHANNEL_ID,
	RECV_BUFFER_SIZE,
	SAMPLE_DTYPE,
	NOT_FOUND,
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
