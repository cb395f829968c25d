import struct
import time

import numpy as np
import pytest

from lldclient.common import HEADER_SIZE, METADATA_ID, NOT_FOUND
from lldclient.models import (
    AcquireEvent,
    AvailableChannelEvent,
    ChannelDataEvent,
    ChannelFirstSampleTimestampEvent,
    ChannelInfo,
    ChannelSubscribedEvent,
    ChannelUnsubscribedEvent,
    EventType,
    UnavailableChannelEvent,
)

from conftest import AVAILABLE, FakeTransport, control_packet, data_packet, feed


def _subscribed(client, name, channel_id, ts_ns=0):
    client.subscribe_channel(name)
    feed(client, control_packet({"subscribed": [
        {"name": name, "id": channel_id, "first_sample_timestamp_ns": ts_ns}]}))


def test_available_push_emits_descriptors(client, events):
    feed(client, control_packet(AVAILABLE))

    assert [e.type for e in events] == [EventType.AVAILABLE_CHANNEL] * 2
    temp = client.available_channels()["temp"]
    assert (temp.sample_period, temp.data_type, temp.scale, temp.offset) == (0.001, "float", 2.0, 1.0)
    assert temp.decimation_factor == 1


def test_subscribe_sends_request_and_marks_pending(client, transport):
    feed(client, control_packet(AVAILABLE))
    client.subscribe_channels([ChannelInfo(name="temp", decimation_factor=4),
                               ChannelInfo(name="missing")])

    assert transport.messages() == [{"subscribe": {"temp": 4}}]
    assert [ch.name for ch in client.pending_channels()] == ["temp"]


def test_subscribe_unknown_only_sends_nothing(client, transport):
    feed(client, control_packet(AVAILABLE))
    client.subscribe_channel("missing")

    assert transport.sent == []
    assert client.pending_channels() == []


def test_subscribe_rejects_bad_decimation(client, transport):
    feed(client, control_packet(AVAILABLE))
    with pytest.raises(ValueError):
        client.subscribe_channel("temp", 0)
    assert transport.sent == []
    assert client.pending_channels() == []


@pytest.mark.parametrize("factor", [0, -3, 2.7, True, "2"])
def test_subscribe_channels_rejects_bad_decimation(client, transport, factor):
    feed(client, control_packet(AVAILABLE))
    with pytest.raises(ValueError):
        client.subscribe_channels([
            ChannelInfo(name="press", decimation_factor=2),
            ChannelInfo(name="temp", decimation_factor=factor),
        ])
    assert transport.sent == []
    assert client.pending_channels() == []


def test_subscribe_confirmation(client, events):
    feed(client, control_packet(AVAILABLE))
    events.clear()
    _subscribed(client, "temp", 3, ts_ns=5_000_000_000)

    assert events == [
        ChannelSubscribedEvent(name="temp", id=3),
        ChannelFirstSampleTimestampEvent(name="temp", id=3, timestamp=5.0),
    ]
    assert client.subscribed_channels()[3].name == "temp"
    assert client.pending_channels() == []
    assert client.first_sample_timestamp("temp") == 5.0
    assert client.subscribed_channel_id("temp") == 3
    assert client.subscribed_channel_id("press") == NOT_FOUND


def test_data_for_subscribed_channel(client, events):
    feed(client, control_packet(AVAILABLE))
    _subscribed(client, "temp", 3)
    events.clear()

    feed(client, data_packet(3, [1.0, 2.5, -4.0]))

    assert len(events) == 1
    event = events[0]
    assert isinstance(event, ChannelDataEvent)
    assert event.id == 3
    assert event.n_samples == 3
    np.testing.assert_array_equal(event.samples, np.array([1.0, 2.5, -4.0], dtype=np.float32))
    scaled = client.subscribed_channels()[3].scale_samples(event.samples)
    np.testing.assert_allclose(scaled, [3.0, 6.0, -7.0])


def test_data_with_partial_trailing_sample(client, events):
    feed(client, control_packet(AVAILABLE))
    _subscribed(client, "temp", 1)
    events.clear()

    payload = np.array([7.0], dtype=">f4").tobytes() + b"\x00\x01"
    feed(client, struct.pack(">II", 1, HEADER_SIZE + len(payload)) + payload)

    assert events[0].n_samples == 1
    assert events[0].samples.tolist() == [7.0]


def test_data_for_unsubscribed_channel_is_dropped(client, events):
    feed(client, data_packet(4, [1.0]))
    assert events == []
    assert client.dropped_data_count == 1


def test_unsubscribe_request_and_confirmation(client, transport, events):
    feed(client, control_packet(AVAILABLE))
    _subscribed(client, "temp", 3)
    transport.sent.clear()
    events.clear()

    client.unsubscribe_channels([3, 6])
    assert transport.messages() == [{"unsubscribe": [3]}]
    # Still subscribed until the server confirms.
    assert 3 in client.subscribed_channels()

    feed(client, control_packet({"unsubscribed": ["temp"]}))
    assert events == [ChannelUnsubscribedEvent(id=3)]
    assert client.subscribed_channels() == {}

    feed(client, data_packet(3, [1.0]))
    assert len(events) == 1


def test_unsubscribe_nothing_subscribed_sends_nothing(client, transport):
    client.unsubscribe_channel(2)
    assert transport.sent == []


def test_unavailable_subscribed_channel(client, transport, events):
    feed(client, control_packet(AVAILABLE))
    _subscribed(client, "temp", 2, ts_ns=1)
    transport.sent.clear()
    events.clear()

    feed(client,
         data_packet(2, [1.0]),
         control_packet({"unavailable": ["temp"]}),
         data_packet(2, [2.0]))

    assert transport.messages() == [{"unsubscribe": [2]}]
    assert client.subscribed_channels() == {}
    assert "temp" not in client.available_channels()
    assert client.first_sample_timestamp("temp") is None
    assert [type(e) for e in events] == [ChannelDataEvent, UnavailableChannelEvent]
    assert events[1].name == "temp"


def test_acquisition_off(client, events):
    feed(client, control_packet(AVAILABLE))
    _subscribed(client, "temp", 0, ts_ns=2_000_000_000)
    _subscribed(client, "press", 1, ts_ns=3_000_000_000)
    events.clear()

    feed(client, control_packet({"acquisition_state": "off"}))

    assert sorted((e.id, e.timestamp) for e in events
                  if isinstance(e, ChannelFirstSampleTimestampEvent)) == [(0, 0.0), (1, 0.0)]
    assert events[-1] == AcquireEvent(state=False)
    assert len(events) == 3
    assert client.first_sample_timestamp("temp") == 0.0


def test_acquire_toggles_and_server_confirms(client, transport, events):
    assert client.acquire() is True
    assert transport.messages() == [{"acquire": True}]

    feed(client, control_packet({"acquisition_state": "on"}))
    assert events == [AcquireEvent(state=True)]
    assert client.acquisition_state is True

    client.acquire()
    assert transport.messages()[-1] == {"acquire": False}


def test_status_and_unknown_messages_emit_nothing(client, events, caplog):
    feed(client, control_packet({"status": "running"}), control_packet({"what": 1}))
    assert events == []
    assert "Unknown JSON" in caplog.text


def test_malformed_json_is_reported_and_connection_survives(client, events, caplog):
    bad = b"{oops"
    feed(client,
         struct.pack(">II", METADATA_ID, HEADER_SIZE + len(bad)) + bad,
         control_packet(AVAILABLE))

    assert "Failed to parse incoming JSON" in caplog.text
    assert "7b 6f 6f 70 73" in caplog.text
    assert len(events) == 2


def test_corrupt_metadata_id_is_dropped(client, events, caplog):
    feed(client, struct.pack(">II", METADATA_ID | 1, HEADER_SIZE))
    assert events == []
    assert "Corrupt metadata id" in caplog.text


def test_handler_exceptions_do_not_stop_dispatch(transport, caplog):
    from lldclient.client import LowLatencyDataClient

    seen = []

    def handler(event):
        seen.append(event)
        raise RuntimeError("consumer bug")

    client = LowLatencyDataClient("127.0.0.1", event_handler=handler, transport=transport)
    feed(client, control_packet(AVAILABLE))

    assert len(seen) == 2
    assert "Event handler failed" in caplog.text


def test_unsubscribe_all_without_subscriptions(client, transport):
    assert client.unsubscribe_all(timeout=0.01) is True
    assert transport.sent == []


def test_unsubscribe_all_times_out_without_confirmation(client, transport):
    feed(client, control_packet(AVAILABLE))
    _subscribed(client, "temp", 3)
    transport.sent.clear()

    assert client.unsubscribe_all(timeout=0.05) is False
    assert transport.messages() == [{"unsubscribe": [3]}]


def test_context_manager_connects_and_closes(client, transport):
    with client as c:
        assert c.connected
    assert not transport.connected


def test_available_event_carries_copy(client, events):
    feed(client, control_packet(AVAILABLE))
    first = next(e for e in events if isinstance(e, AvailableChannelEvent))
    first.channel.scale = 123.0
    assert client.available_channels()[first.channel.name].scale != 123.0


class FailingTransport(FakeTransport):
    def __init__(self, fail=True):
        super().__init__()
        self.fail = fail

    def send_packet(self, packet: bytes):
        if self.fail:
            raise OSError("Broken pipe")
        super().send_packet(packet)


def test_failed_subscribe_send_leaves_nothing_pending(events):
    from lldclient.client import LowLatencyDataClient

    client = LowLatencyDataClient("127.0.0.1", event_handler=events.append,
                                  transport=FailingTransport())
    feed(client, control_packet(AVAILABLE))

    with pytest.raises(OSError):
        client.subscribe_channel("temp", 2)
    assert client.pending_channels() == []


def test_subscribe_before_connect_leaves_nothing_pending():
    from lldclient.client import LowLatencyDataClient

    client = LowLatencyDataClient("127.0.0.1")
    feed(client, control_packet(AVAILABLE))

    with pytest.raises(RuntimeError, match="Not connected"):
        client.subscribe_channel("temp")
    assert client.pending_channels() == []


def test_failed_subscribe_keeps_earlier_pending_requests(events):
    from lldclient.client import LowLatencyDataClient

    transport = FailingTransport(fail=False)
    client = LowLatencyDataClient("127.0.0.1", event_handler=events.append, transport=transport)
    feed(client, control_packet(AVAILABLE))
    client.subscribe_channel("temp", 4)

    transport.fail = True
    with pytest.raises(OSError):
        client.subscribe_channel("temp", 8)

    assert [(ch.name, ch.decimation_factor) for ch in client.pending_channels()] == [("temp", 4)]


def test_failed_acquire_send_keeps_acquisition_state():
    from lldclient.client import LowLatencyDataClient

    client = LowLatencyDataClient("127.0.0.1", transport=FailingTransport())
    with pytest.raises(OSError):
        client.acquire()
    assert client.acquisition_state is False

    with pytest.raises(OSError):
        client.acquire()
    assert client.acquisition_state is False


def test_unsubscribe_all_from_event_handler_does_not_block(transport):
    from lldclient.client import LowLatencyDataClient

    results = []

    def handler(event):
        if event.type == EventType.CHANNEL_SUBSCRIBED:
            started = time.monotonic()
            results.append(client.unsubscribe_all(timeout=None))
            results.append(time.monotonic() - started)

    client = LowLatencyDataClient("127.0.0.1", event_handler=handler, transport=transport)
    feed(client, control_packet(AVAILABLE))
    _subscribed(client, "temp", 3)

    assert results[0] is False
    assert results[1] < 1.0
    assert transport.messages()[-1] == {"unsubscribe": [3]}

    feed(client, control_packet({"unsubscribed": ["temp"]}))
    assert client.subscribed_channels() == {}
    assert client.unsubscribe_all(timeout=0.01) is True
