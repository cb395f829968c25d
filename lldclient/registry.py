"""Channel registry: available, pending, subscribed and first-sample state."""

import dataclasses
import threading
import time
from typing import Iterable, Optional

from .common import NOT_FOUND, log
from .models import (
    AcquireEvent,
    AvailableChannelEvent,
    ChannelFirstSampleTimestampEvent,
    ChannelInfo,
    ChannelSubscribedEvent,
    ChannelUnsubscribedEvent,
    SubscribedEntry,
    UnavailableChannelEvent,
)

class ChannelRegistry:
    """
    Authoritative channel state shared by the reader thread and the caller.

    Every public method takes the one lock for its whole body, so each
    operation mutates the tables as a single unit. Mutating methods return
    the events to emit; they never call back into user code while locked.
    """

    def __init__(self):
        self._cond       = threading.Condition()
        self._available  = {}       # name -> ChannelInfo
        self._pending    = []       # ChannelInfo requested, not yet confirmed
        self._subscribed = {}       # server assigned id -> ChannelInfo
        self._fsts       = {}       # name -> first sample timestamp (s)
        self._acquiring  = False

    # ─── Server pushed state ──────────────────────────────────────────────

    def add_available(self, channels: Iterable[ChannelInfo]) -> list:
        events = []
        with self._cond:
            for ch in channels:
                if ch.name in self._available:
                    log.warning(f"Channel '{ch.name}' is already available")
                    continue
                self._available[ch.name] = ch
                events.append(AvailableChannelEvent(channel=dataclasses.replace(ch)))
        return events

    def remove_unavailable(self, names: Iterable[str]) -> tuple[list[int], list]:
        """
        Drop channels the server no longer offers.
        Returns (ids that need an unsubscribe request, events).
        """
        unsubscribe_ids = []
        events = []
        with self._cond:
            for name in names:
                self._available.pop(name, None)

                channel_id = self._find_subscribed(name)
                if channel_id != NOT_FOUND:
                    unsubscribe_ids.append(channel_id)
                    del self._subscribed[channel_id]

                self._fsts.pop(name, None)
                events.append(UnavailableChannelEvent(name=name))
            if unsubscribe_ids:
                self._cond.notify_all()
        return unsubscribe_ids, events

    def confirm_subscribed(self, entries: Iterable[SubscribedEntry]) -> list:
        events = []
        with self._cond:
            for entry in entries:
                idx = self._find_pending(entry.name)
                if idx is None:
                    log.debug(f"Subscribe confirmation for '{entry.name}' with no pending request")
                    continue
                if entry.name not in self._available:
                    log.warning(f"Channel '{entry.name}' is no longer available for subscribe")
                    continue

                requested = self._pending.pop(idx)
                self._subscribed[entry.id] = dataclasses.replace(
                    self._available[entry.name],
                    decimation_factor=requested.decimation_factor,
                )
                events.append(ChannelSubscribedEvent(name=entry.name, id=entry.id))

                timestamp = entry.first_sample_timestamp_ns / 1e9
                self._fsts[entry.name] = timestamp
                events.append(ChannelFirstSampleTimestampEvent(
                    name=entry.name, id=entry.id, timestamp=timestamp))
        return events

    def confirm_unsubscribed(self, names: Iterable[str]) -> list:
        events = []
        with self._cond:
            for name in names:
                channel_id = self._find_subscribed(name)
                if channel_id == NOT_FOUND:
                    continue
                events.append(ChannelUnsubscribedEvent(id=channel_id))
                del self._subscribed[channel_id]
            self._cond.notify_all()
        return events

    def apply_acquisition_state(self, state: str) -> list:
        events = []
        with self._cond:
            if state == "off":
                for channel_id, ch in self._subscribed.items():
                    self._fsts[ch.name] = 0.0
                    events.append(ChannelFirstSampleTimestampEvent(
                        name=ch.name, id=channel_id, timestamp=0.0))
                self._acquiring = False
            elif state == "on":
                self._acquiring = True
            else:
                log.warning(f"Unknown acquisition state '{state}'")
            events.append(AcquireEvent(state=self._acquiring))
        return events

    # ─── Client requests ──────────────────────────────────────────────────

    def request_subscribe(self, channels: Iterable[ChannelInfo]) -> list[ChannelInfo]:
        """
        Queue available channels as pending and return what was queued.
        Raises ValueError, queuing nothing, if any decimation factor is not
        an integer >= 1.
        """
        channels = list(channels)
        for ch in channels:
            _check_decimation(ch)
        with self._cond:
            accepted = [dataclasses.replace(ch) for ch in channels if ch.name in self._available]
            self._pending.extend(accepted)
        return accepted

    def cancel_pending(self, requested: Iterable[ChannelInfo]):
        """Withdraw entries returned by request_subscribe whose request was never sent."""
        with self._cond:
            withdrawn = {id(ch) for ch in requested}
            self._pending = [ch for ch in self._pending if id(ch) not in withdrawn]

    def filter_subscribed(self, channel_ids: Iterable[int]) -> list[int]:
        with self._cond:
            return [cid for cid in channel_ids if cid in self._subscribed]

    def toggle_acquisition(self) -> bool:
        """Flip the local prediction of the acquisition state and return it."""
        with self._cond:
            self._acquiring = not self._acquiring
            return self._acquiring

    def revert_acquisition(self, requested: bool):
        """Undo toggle_acquisition() unless a server reply has since changed the state."""
        with self._cond:
            if self._acquiring == requested:
                self._acquiring = not requested

    def wait_for_unsubscribed(self, channel_ids: Iterable[int],
                              timeout: Optional[float] = None) -> bool:
        """Block until none of `channel_ids` is subscribed or `timeout` expires."""
        wanted = set(channel_ids)
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while wanted & self._subscribed.keys():
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._cond.wait(remaining)
            return True

    # ─── Lookups ──────────────────────────────────────────────────────────

    def subscribed_channel(self, channel_id: int) -> Optional[ChannelInfo]:
        with self._cond:
            return self._subscribed.get(channel_id)

    def subscribed_channel_id(self, name: str) -> int:
        with self._cond:
            return self._find_subscribed(name)

    def is_available(self, name: str) -> bool:
        with self._cond:
            return name in self._available

    def available_channels(self) -> dict[str, ChannelInfo]:
        with self._cond:
            return {name: dataclasses.replace(ch) for name, ch in self._available.items()}

    def pending_channels(self) -> list[ChannelInfo]:
        with self._cond:
            return [dataclasses.replace(ch) for ch in self._pending]

    def subscribed_channels(self) -> dict[int, ChannelInfo]:
        with self._cond:
            return {cid: dataclasses.replace(ch) for cid, ch in self._subscribed.items()}

    def first_sample_timestamp(self, name: str) -> Optional[float]:
        with self._cond:
            return self._fsts.get(name)

    @property
    def acquisition_state(self) -> bool:
        with self._cond:
            return self._acquiring

    # Callers hold the lock.

    def _find_subscribed(self, name: str) -> int:
        for channel_id, ch in self._subscribed.items():
            if ch.name == name:
                return channel_id
        return NOT_FOUND

    def _find_pending(self, name: str) -> Optional[int]:
        for idx, ch in enumerate(self._pending):
            if ch.name == name:
                return idx
        return None

def _check_decimation(ch: ChannelInfo):
    factor = ch.decimation_factor
    if isinstance(factor, bool) or not isinstance(factor, int) or factor < 1:
        raise ValueError(f"Channel '{ch.name}' decimation factor must be an integer >= 1, "
                         f"got {factor!r}")
