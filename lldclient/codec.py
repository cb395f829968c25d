"""JSON control message codec. Knows nothing about sockets."""

from dataclasses import dataclass
from typing import Any, Iterable

import orjson

from .common import CONTROL_KEYS
from .framing import encode_control_packet
from .models import ChannelInfo, SubscribedEntry

class ControlMessageError(ValueError):
    """A control payload that cannot be turned into a notice."""

# ─── Inbound notices ──────────────────────────────────────────────────────────

@dataclass
class UnsubscribedNotice:
    names: list[str]

@dataclass
class SubscribedNotice:
    entries: list[SubscribedEntry]

@dataclass
class AvailableNotice:
    channels: list[ChannelInfo]     # server order, decimation_factor=1

@dataclass
class UnavailableNotice:
    names: list[str]

@dataclass
class AcquisitionStateNotice:
    state: str                      # "on" / "off" (anything else leaves the flag)

@dataclass
class StatusNotice:
    status: Any

@dataclass
class UnknownNotice:
    message: dict[str, Any]

# ─── Outbound requests ────────────────────────────────────────────────────────

def build_subscribe_message(channels: Iterable[ChannelInfo]) -> dict[str, Any]:
    return {"subscribe": {ch.name: int(ch.decimation_factor) for ch in channels}}

def build_unsubscribe_message(channel_ids: Iterable[int]) -> dict[str, Any]:
    return {"unsubscribe": [int(cid) for cid in channel_ids]}

def build_acquire_message(state: bool) -> dict[str, Any]:
    return {"acquire": bool(state)}

def encode_control(message: dict[str, Any]) -> bytes:
    """Serialize a control message to a complete wire packet (header + JSON)."""
    return encode_control_packet(orjson.dumps(message))

def encode_subscribe(channels: Iterable[ChannelInfo]) -> bytes:
    return encode_control(build_subscribe_message(channels))

def encode_unsubscribe(channel_ids: Iterable[int]) -> bytes:
    return encode_control(build_unsubscribe_message(channel_ids))

def encode_acquire(state: bool) -> bytes:
    return encode_control(build_acquire_message(state))

# ─── Decoding ─────────────────────────────────────────────────────────────────

def _name_list(body: Any, key: str) -> list[str]:
    if not isinstance(body, list) or not all(isinstance(n, str) for n in body):
        raise ControlMessageError(f"'{key}' must be a list of channel names")
    return list(body)

def _number(info: dict, field: str, name: str) -> float:
    value = info.get(field)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ControlMessageError(f"Channel '{name}' has bad {field}: {value!r}")
    return float(value)

def _integer(entry: dict, field: str) -> int:
    value = entry.get(field)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ControlMessageError(f"Subscribed entry has bad {field}: {value!r}")
    return value

def _parse_available(body: Any) -> AvailableNotice:
    if not isinstance(body, dict):
        raise ControlMessageError("'available' must be an object")
    channels = []
    for name, info in body.items():
        if not isinstance(info, dict):
            raise ControlMessageError(f"Channel '{name}' description must be an object")
        data_type = info.get("data_type")
        if not isinstance(data_type, str):
            raise ControlMessageError(f"Channel '{name}' has bad data_type: {data_type!r}")
        channels.append(ChannelInfo(
            name=name,
            sample_period=_number(info, "sample_period", name),
            data_type=data_type,
            scale=_number(info, "scale", name),
            offset=_number(info, "offset", name),
            decimation_factor=1,
        ))
    return AvailableNotice(channels=channels)

def _parse_subscribed(body: Any) -> SubscribedNotice:
    if not isinstance(body, list):
        raise ControlMessageError("'subscribed' must be a list")
    entries = []
    for entry in body:
        if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
            raise ControlMessageError(f"Bad subscribed entry: {entry!r}")
        entries.append(SubscribedEntry(
            name=entry["name"],
            id=_integer(entry, "id"),
            first_sample_timestamp_ns=_integer(entry, "first_sample_timestamp_ns"),
        ))
    return SubscribedNotice(entries=entries)

def _parse_acquisition_state(body: Any) -> AcquisitionStateNotice:
    if not isinstance(body, str):
        raise ControlMessageError(f"'acquisition_state' must be a string: {body!r}")
    return AcquisitionStateNotice(state=body)

_PARSERS = {
    "unsubscribed":      lambda body: UnsubscribedNotice(names=_name_list(body, "unsubscribed")),
    "subscribed":        _parse_subscribed,
    "available":         _parse_available,
    "unavailable":       lambda body: UnavailableNotice(names=_name_list(body, "unavailable")),
    "acquisition_state": _parse_acquisition_state,
    "status":            StatusNotice,
}

def decode_control(payload: bytes):
    """
    Decode one control payload into a notice.
    The first key found, in CONTROL_KEYS order, selects the notice type.
    Raises ControlMessageError; nothing is returned for a malformed message.
    """
    try:
        message = orjson.loads(payload)
    except orjson.JSONDecodeError as e:
        raise ControlMessageError(f"Failed to parse incoming JSON: {e}") from e

    if not isinstance(message, dict):
        raise ControlMessageError(f"Control message is not an object: {type(message).__name__}")

    for key in CONTROL_KEYS:
        if key in message:
            return _PARSERS[key](message[key])
    return UnknownNotice(message=message)
