"""Shared constants and diagnostics helpers for the low-latency data client."""

import socket
import logging

logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(message)s')
log = logging.getLogger(__name__)

DEFAULT_PORT    = 10006         # TCP port of the low-latency data server

HEADER_SIZE     = 8             # uint32 id + uint32 length, network byte order

METADATA_ID     = 0x80000000    # id reserved for JSON control traffic

MAX_DATA_CHANNEL_ID = 7         # data channel ids are 0..7

RECV_BUFFER_SIZE = 1024 * 1024  # largest message the reader will reassemble

SAMPLE_DTYPE    = ">f4"         # IEEE-754 float32 samples, network byte order

NOT_FOUND       = -1            # SubscribedChannelId sentinel

CONTROL_KEYS = (
    "unsubscribed",
    "subscribed",
    "available",
    "unavailable",
    "acquisition_state",
    "status",
)

def _is_legal_id(packet_id: int) -> bool:
    return 0 <= packet_id <= MAX_DATA_CHANNEL_ID or packet_id == METADATA_ID

def _format_hex_preview(data: bytes, count: int = 16) -> str:
    """Render the first `count` bytes of a payload as space separated hex."""
    return " ".join(f"{b:02x}" for b in bytes(data[:count]))

def _resolve_port(service) -> int:
    """Accept a port number or a service name and return the numeric port."""
    if isinstance(service, int):
        return service
    text = str(service).strip()
    if text.isdigit():
        return int(text)
    return socket.getservbyname(text, "tcp")
