"""
Tests for the Message model and the Event union.
"""
import orjson
import pytest
from pydantic import ValidationError

from mqtt_async_client import Event, EventType, Message, Properties, PropertyCode
from mqtt_async_client.core.message import encode_payload


# ============================================================================
# MESSAGE
# ============================================================================


class TestMessage:
    """Payload conversion, defaults and immutability."""

    @pytest.mark.parametrize("payload,expected", [
        (None, b""),
        (b"raw", b"raw"),
        (bytearray(b"ba"), b"ba"),
        (memoryview(b"mv"), b"mv"),
        ("héllo", "héllo".encode("utf-8")),
        ({"x": 42}, b'{"x":42}'),
        ([1, 2], b"[1,2]"),
        (21.5, b"21.5"),
    ])
    def test_payload_conversion(self, payload, expected):
        assert encode_payload(payload) == expected
        assert Message(topic="t", payload=payload).payload == expected

    def test_unsupported_payload_type(self):
        with pytest.raises(TypeError):
            encode_payload(object())

    def test_defaults(self):
        msg = Message(topic="t")
        assert msg.qos == Message.DEFAULT_QOS == 0
        assert msg.retained is Message.DEFAULT_RETAINED is False
        assert msg.duplicate is False
        assert msg.payload == b""
        assert isinstance(msg.properties, Properties) and not msg.properties

    @pytest.mark.parametrize("qos", [-1, 3])
    def test_invalid_qos(self, qos):
        with pytest.raises(ValidationError):
            Message(topic="t", qos=qos)

    def test_frozen(self):
        msg = Message(topic="t", payload="x")
        with pytest.raises(ValidationError):
            msg.qos = 1

    def test_to_string_and_json(self):
        msg = Message(topic="t", payload={"temp": 21.5, "unit": "C"})
        assert orjson.loads(msg.to_string()) == {"temp": 21.5, "unit": "C"}
        assert msg.payload_json() == {"temp": 21.5, "unit": "C"}
        assert str(Message(topic="t", payload="hi")) == "hi"

    def test_with_duplicate_copies(self):
        msg = Message(topic="t", payload="x", qos=1)
        dup = msg.with_duplicate()
        assert dup.duplicate is True
        assert msg.duplicate is False
        assert dup.payload == msg.payload and dup.qos == 1

    def test_properties_are_copied(self):
        props = Properties({PropertyCode.CONTENT_TYPE: "text/plain"})
        msg = Message(topic="t", properties=props)
        props.add(PropertyCode.CONTENT_TYPE, "application/json")
        assert msg.properties.get(PropertyCode.CONTENT_TYPE) == "text/plain"

    def test_get_properties_returns_copy(self):
        msg = Message(topic="t", properties=Properties({PropertyCode.CONTENT_TYPE: "text/plain"}))
        props = msg.get_properties()
        props.add(PropertyCode.USER_PROPERTY, ("k", "v"))
        assert len(props) == 2
        assert len(msg.properties) == 1
        assert not msg.properties.contains(PropertyCode.USER_PROPERTY)


# ============================================================================
# EVENT
# ============================================================================


class TestEvent:
    """Tagged union of messages and connection state changes."""

    def test_message_event(self):
        msg = Message(topic="hello", payload="x")
        event = Event.message(msg)
        assert event.is_message()
        assert event.type is EventType.MESSAGE
        assert event.get_message() is msg

    def test_default_event_is_empty_message(self):
        event = Event()
        assert event.is_message()
        assert event.get_message() is None

    def test_connected_and_lost(self):
        assert Event.connected("connect onSuccess called").cause == "connect onSuccess called"
        lost = Event.connection_lost("keepalive timeout")
        assert lost.is_connection_lost()
        assert not lost.is_connected()
        assert lost.cause == "keepalive timeout"

    def test_disconnected_carries_reason_and_properties(self):
        props = Properties({PropertyCode.REASON_STRING: "taken over"})
        event = Event.disconnected(0x8E, props)
        assert event.is_disconnected()
        assert event.reason_code == 0x8E
        assert event.properties.get(PropertyCode.REASON_STRING) == "taken over"
        assert event.cause == ""

    def test_get_message_on_state_event_raises(self):
        with pytest.raises(TypeError):
            Event.connected().get_message()

    def test_equality(self):
        msg = Message(topic="a")
        assert Event.message(msg) == Event.message(msg)
        assert Event.connected("x") == Event.connected("x")
        assert Event.connected("x") != Event.connection_lost("x")
