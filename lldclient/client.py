"""High-level low-latency data client: subscribe, unsubscribe, acquire."""

import threading
from typing import Callable, Iterable, Optional

from .codec import (
    AcquisitionStateNotice,
    AvailableNotice,
    ControlMessageError,
    StatusNotice,
    SubscribedNotice,
    UnavailableNotice,
    UnsubscribedNotice,
    decode_control,
    encode_acquire,
    encode_subscribe,
    encode_unsubscribe,
)
from .common import (
    DEFAULT_PORT,
    METADATA_ID,
    RECV_BUFFER_SIZE,
    SAMPLE_DTYPE,
    _format_hex_preview,
    log,
)
from .framing import decode_samples
from .models import ChannelDataEvent, ChannelInfo, Frame
from .registry import ChannelRegistry
from .tcp_client import LowLatencyTCPClient

class LowLatencyDataClient:
    """
    Public interface: connect to a data server, track the channels it
    offers, request subscriptions and deliver events to `event_handler`.

    Requests are fire-and-forget. A subscription exists only once the
    CHANNEL_SUBSCRIBED event has been delivered; server rejections show up
    as a missing confirmation, never as an exception.

    `event_handler` runs on the reader thread for every event and must
    return quickly.
    """

    def __init__(self, host: str, port=DEFAULT_PORT,
                 event_handler: Optional[Callable] = None,
                 recv_buffer_size: int = RECV_BUFFER_SIZE,
                 sample_dtype: str = SAMPLE_DTYPE,
                 transport=None):
        self.host          = host
        self.port          = port
        self.sample_dtype  = sample_dtype
        self.registry      = ChannelRegistry()
        self._event_cb     = event_handler
        if transport is None:
            transport = LowLatencyTCPClient(host, port, recv_buffer_size)
        self._tcp          = transport
        self._local        = threading.local()
        self.dropped_data_count = 0

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # ─── Lifecycle ────────────────────────────────────────────────────────

    def connect(self):
        self._tcp.connect(self.process_frame)

    def close(self, timeout: Optional[float] = None):
        self._tcp.disconnect(timeout)

    @property
    def connected(self) -> bool:
        return self._tcp.connected

    def set_event_handler(self, cb: Callable):
        """Register the consumer's event sink."""
        self._event_cb = cb

    # ─── Outbound operations ──────────────────────────────────────────────

    def subscribe_channels(self, channels: Iterable[ChannelInfo]):
        """Request subscription; channels the server has not offered are skipped."""
        accepted = self.registry.request_subscribe(channels)
        if not accepted:
            return
        log.debug(f"Subscribe: {', '.join(ch.name for ch in accepted)}")
        try:
            self._tcp.send_packet(encode_subscribe(accepted))
        except Exception:
            self.registry.cancel_pending(accepted)
            raise

    def subscribe_channel(self, name: str, decimation_factor: int = 1):
        self.subscribe_channels([ChannelInfo(name=name, decimation_factor=decimation_factor)])

    def unsubscribe_channels(self, channel_ids: Iterable[int]):
        ids = self.registry.filter_subscribed(channel_ids)
        if not ids:
            return
        self._send_unsubscribe(ids)

    def unsubscribe_channel(self, channel_id: int):
        self.unsubscribe_channels([channel_id])

    def unsubscribe_all(self, timeout: Optional[float] = None) -> bool:
        """
        Unsubscribe every subscribed channel and wait for the confirmations.

        Called from the event handler, the confirmations cannot arrive while
        the reader thread is busy in the handler: the request is sent and
        False is returned without waiting.
        """
        ids = list(self.registry.subscribed_channels())
        if not ids:
            return True
        self.unsubscribe_channels(ids)
        if getattr(self._local, "dispatching", False):
            log.warning(f"unsubscribe_all() called from the event handler, "
                        f"not waiting for ids {ids}")
            return False
        done = self.registry.wait_for_unsubscribed(ids, timeout)
        if not done:
            log.warning(f"Unsubscribe not confirmed for ids {ids} within {timeout}s")
        return done

    def acquire(self) -> bool:
        """
        Toggle acquisition. Returns the requested state; the server's
        acquisition_state reply is what the ACQUIRE event reports.
        """
        state = self.registry.toggle_acquisition()
        log.debug(f"Acquire: {state}")
        try:
            self._tcp.send_packet(encode_acquire(state))
        except Exception:
            self.registry.revert_acquisition(state)
            raise
        return state

    def _send_unsubscribe(self, ids: list[int]):
        log.debug(f"Unsubscribe: {ids}")
        self._tcp.send_packet(encode_unsubscribe(ids))

    # ─── Registry views ───────────────────────────────────────────────────

    def subscribed_channel_id(self, name: str) -> int:
        """Id of a subscribed channel, or NOT_FOUND."""
        return self.registry.subscribed_channel_id(name)

    def available_channels(self) -> dict[str, ChannelInfo]:
        return self.registry.available_channels()

    def pending_channels(self) -> list[ChannelInfo]:
        return self.registry.pending_channels()

    def subscribed_channels(self) -> dict[int, ChannelInfo]:
        return self.registry.subscribed_channels()

    def first_sample_timestamp(self, name: str) -> Optional[float]:
        return self.registry.first_sample_timestamp(name)

    @property
    def acquisition_state(self) -> bool:
        return self.registry.acquisition_state

    # ─── Inbound path (reader thread) ─────────────────────────────────────

    def process_frame(self, frame: Frame):
        if frame.is_control:
            if frame.header.id == METADATA_ID:
                self._process_control(frame)
            else:
                log.warning(f"Corrupt metadata id 0x{frame.header.id:x}")
        else:
            self._process_data(frame)

    def _process_data(self, frame: Frame):
        channel_id = frame.header.id
        if self.registry.subscribed_channel(channel_id) is None:
            # Late data for a channel that was just unsubscribed.
            self.dropped_data_count += 1
            return
        samples = decode_samples(frame.payload, self.sample_dtype)
        self._emit(ChannelDataEvent(id=channel_id, samples=samples, n_samples=len(samples)))

    def _process_control(self, frame: Frame):
        log.debug(f"Got: {bytes(frame.payload).decode('utf-8', errors='replace')}")
        try:
            notice = decode_control(frame.payload)
        except ControlMessageError as e:
            log.warning(
                f"{e} (length={frame.header.length} id=0x{frame.header.id:x} "
                f"payload={_format_hex_preview(frame.payload)})"
            )
            return

        registry = self.registry
        if isinstance(notice, UnsubscribedNotice):
            events = registry.confirm_unsubscribed(notice.names)
        elif isinstance(notice, SubscribedNotice):
            events = registry.confirm_subscribed(notice.entries)
        elif isinstance(notice, AvailableNotice):
            events = registry.add_available(notice.channels)
        elif isinstance(notice, UnavailableNotice):
            ids, events = registry.remove_unavailable(notice.names)
            if ids:
                self._send_unsubscribe(ids)
        elif isinstance(notice, AcquisitionStateNotice):
            events = registry.apply_acquisition_state(notice.state)
        elif isinstance(notice, StatusNotice):
            events = []
        else:
            log.warning(f"Unknown JSON: {notice.message}")
            events = []

        for event in events:
            self._emit(event)

    def _emit(self, event):
        if self._event_cb is None:
            return
        self._local.dispatching = True
        try:
            self._event_cb(event)
        except Exception:
            log.exception(f"Event handler failed on {event.type.name}")
        finally:
            self._local.dispatching = False
