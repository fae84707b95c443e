"""
Behaviour tests for AsyncClient, driven by a scripted protocol engine.

Covers:
- Connection state machine (connect, disconnect, reconnect, failures)
- Subscriptions: remembering, forgetting and resubscribing on a new session
- Publishing online, offline buffering and persisted restore
- Consumer mode and callback mode
- Shutdown with pending operations
"""
from datetime import timedelta

import pytest

from mqtt_async_client import (
    ActionListener,
    AlreadyConnected,
    ArgumentError,
    AsyncClient,
    Callback,
    ClientDestroyed,
    ClientState,
    ConnectOptionsBuilder,
    CreateOptions,
    CreateOptionsBuilder,
    FilePersistence,
    Message,
    MessageDropped,
    OperationTimeout,
    Properties,
    PropertyCode,
    ProtocolError,
    QueueClosed,
    StateError,
    TransportError,
)
from mqtt_async_client.core.token import FailureData, SuccessData
from tests.conftest import SERVER_URI
from tests.fake_engine import FakeEngine


class RecordingCallback(Callback):
    def __init__(self):
        self.calls = []

    def connected(self, cause):
        self.calls.append(("connected", cause))

    def connection_lost(self, cause):
        self.calls.append(("connection_lost", cause))

    def message_arrived(self, msg):
        self.calls.append(("message", msg.topic))

    def delivery_complete(self, token):
        self.calls.append(("delivered", token.get_message().topic))

    def disconnected(self, reason_code, properties):
        self.calls.append(("disconnected", reason_code))


# ============================================================================
# CONSTRUCTION
# ============================================================================


class TestConstruction:
    """Argument checking and defaults at construction time."""

    def test_defaults(self, client, engine):
        assert client.client_id == "test-client"
        assert client.server_uri == SERVER_URI
        assert client.get_state() is ClientState.DISCONNECTED
        assert not client.is_connected
        assert client.get_engine() is engine
        assert engine.handler is not None

    def test_invalid_server_uri(self):
        with pytest.raises(ArgumentError):
            AsyncClient("gopher://broker", "c", engine=FakeEngine())

    def test_invalid_buffer_size(self):
        with pytest.raises(ArgumentError):
            AsyncClient(SERVER_URI, "c", max_buffered_messages=-1, engine=FakeEngine())

    def test_buffer_size_overrides_create_options(self, make_client):
        opts = CreateOptionsBuilder().delete_oldest_messages(False).finalize()
        client = make_client(max_buffered_messages=5, create_options=opts)
        assert client.get_create_options().max_buffered_messages == 5
        assert client.get_create_options().delete_oldest_messages is False

    def test_path_selects_file_persistence(self, make_client, tmp_path):
        client = make_client(persistence=tmp_path)
        assert isinstance(client.get_persistence(), FilePersistence)

    def test_initial_subscriptions(self, make_client):
        client = make_client(subscriptions=["a/#", ("b/+", 2)])
        assert client.get_subscriptions() == {"a/#": (0, None), "b/+": (2, None)}


# ============================================================================
# CONNECTION STATE MACHINE
# ============================================================================


class TestConnect:
    """connect / disconnect / reconnect transitions."""

    def test_connect_and_disconnect(self, client, engine):
        rsp = client.connect().get_connect_response()
        assert client.is_connected
        assert rsp.server_uri == "mqtt://fake-broker:1883"
        assert not rsp.is_session_present()

        client.disconnect().wait()
        assert client.get_state() is ClientState.DISCONNECTED
        assert len(engine.disconnects) == 1

    def test_v5_options_switch_protocol_version(self, client):
        client.connect(ConnectOptionsBuilder.v5().finalize()).wait()
        assert int(client.get_mqtt_version()) == 5
        assert client.get_connect_options().is_v5

    def test_second_connect_is_refused(self, client):
        client.connect().wait()
        token = client.connect()
        with pytest.raises(AlreadyConnected):
            token.wait()
        assert client.is_connected

    def test_connect_while_connecting_is_refused(self, client, engine):
        engine.auto_complete = False
        client.connect()
        with pytest.raises(AlreadyConnected):
            client.connect().wait()
        engine.complete_connect()
        assert client.is_connected
        engine.auto_complete = True

    def test_broker_refusal(self, client, engine):
        engine.auto_complete = False
        token = client.connect()
        assert client.get_state() is ClientState.CONNECTING
        engine.refuse_connect(0x87)
        with pytest.raises(ProtocolError):
            token.wait()
        assert token.get_reason_code() == 0x87
        assert client.get_state() is ClientState.DISCONNECTED

    def test_connect_timeout(self, client, engine):
        engine.auto_complete = False
        token = client.connect()
        engine.time_out_connect()
        with pytest.raises(OperationTimeout):
            token.wait()
        assert client.get_state() is ClientState.DISCONNECTED

    def test_engine_rejects_connect(self, client, engine):
        engine.fail_next = TransportError("No route to host")
        token = client.connect()
        with pytest.raises(TransportError):
            token.wait()
        assert client.get_state() is ClientState.DISCONNECTED

    def test_reconnect_reuses_options(self, client, engine):
        opts = ConnectOptionsBuilder().keep_alive_interval(30).finalize()
        client.connect(opts).wait()
        client.disconnect().wait()
        client.reconnect().wait()
        assert client.is_connected
        assert engine.connects[-1][0] is opts

    def test_reconnect_before_connect(self, client):
        with pytest.raises(StateError):
            client.reconnect().wait()

    def test_disconnect_when_disconnected(self, client):
        with pytest.raises(StateError):
            client.disconnect().wait()

    @pytest.mark.parametrize("timeout", [0.5, timedelta(seconds=2)])
    def test_disconnect_timeout_forms(self, client, engine, timeout):
        client.connect().wait()
        client.disconnect(timeout).wait()
        assert engine.disconnects[-1][0].timeout == pytest.approx(
            timeout.total_seconds() if isinstance(timeout, timedelta) else timeout
        )

    def test_disconnect_cancels_pending_connect(self, client, engine):
        """A disconnect while connecting fails the connect token."""
        engine.auto_complete = False
        connect_token = client.connect()
        engine.auto_complete = True

        client.disconnect().wait()
        with pytest.raises(StateError):
            connect_token.wait()
        assert client.get_state() is ClientState.DISCONNECTED

    @pytest.mark.parametrize("fail", ["refuse_connect", "time_out_connect"])
    def test_failed_connect_with_automatic_reconnect_keeps_retrying(self, client, engine, fail):
        engine.auto_complete = False
        token = client.connect(ConnectOptionsBuilder().automatic_reconnect(1, 2).finalize())
        getattr(engine, fail)()
        with pytest.raises((ProtocolError, OperationTimeout)):
            token.wait()
        assert client.get_state() is ClientState.RECONNECTING

        engine.reconnect()
        assert client.get_state() is ClientState.CONNECTED
        engine.auto_complete = True

    def test_disconnect_while_reconnecting(self, client, engine):
        """A user disconnect preempts the pending reconnect."""
        client.start_consuming()
        client.connect(ConnectOptionsBuilder().automatic_reconnect().finalize()).wait()
        engine.lose_connection("socket closed", reconnecting=True)
        assert client.get_state() is ClientState.RECONNECTING

        client.disconnect().wait()
        assert client.get_state() is ClientState.DISCONNECTED

        engine.reconnect()
        assert client.get_state() is ClientState.DISCONNECTED
        assert client.try_consume_event().is_connected()
        assert client.try_consume_event().is_connection_lost()
        assert client.try_consume_event() is None

    def test_listener_and_user_context(self, client):
        seen = []
        client.connect(user_context="ctx", listener=_listener(seen)).wait()
        assert seen == [("ok", "ctx")]


def _listener(seen):
    return ActionListener(
        on_success=lambda t: seen.append(("ok", t.get_user_context())),
        on_failure=lambda t: seen.append(("failed", t.get_user_context())),
    )


# ============================================================================
# CONNECTION LOSS
# ============================================================================


class TestConnectionLoss:
    """Automatic reconnect and the operations that do or do not survive it."""

    def test_qos1_publish_survives_reconnect(self, client, engine):
        """An unacknowledged QoS 1 publish completes after the engine reconnects."""
        client.connect(ConnectOptionsBuilder().automatic_reconnect(1, 2).finalize()).wait()
        engine.auto_complete = False
        token = client.publish("data/temp", "21.5", qos=1)
        mid = token.get_message_id()
        assert mid in engine.pending

        engine.lose_connection("keepalive timeout", reconnecting=True)
        assert client.get_state() is ClientState.RECONNECTING
        assert not token.is_complete()

        engine.reconnect()
        assert client.is_connected
        engine.ack(mid)
        assert token.wait_for(1)
        engine.auto_complete = True

    def test_loss_without_reconnect_fails_unreplayable_operations(self, client, engine):
        client.connect().wait()
        engine.auto_complete = False
        qos0 = client.publish("data/a", "x", qos=0)
        qos1 = client.publish("data/b", "y", qos=1)
        sub = client.subscribe("cmd/#", 1)

        engine.lose_connection("socket closed")
        assert client.get_state() is ClientState.DISCONNECTED
        for token in (qos0, sub):
            with pytest.raises(TransportError):
                token.wait()
        assert not qos1.is_complete()
        engine.auto_complete = True

    def test_late_suback_does_not_rewrite_failed_token(self, client, engine):
        client.connect().wait()
        engine.auto_complete = False
        sub = client.subscribe("cmd/#", 1)
        (_, _, response), = engine.subscribed

        engine.lose_connection("socket closed")
        response.complete_failure(FailureData(return_code=0x87, reason_code=0x87, message="late"))
        response.complete_success(SuccessData(reason_codes=[1]))

        assert (sub.get_error_message(), sub.get_return_code(), sub.get_reason_code()) == (
            "Connection lost: socket closed", -3, 0,
        )
        assert sub.get_reason_codes() == []
        assert isinstance(sub.get_error(), TransportError)
        assert "cmd/#" not in client.get_subscriptions()
        engine.auto_complete = True

    def test_events_and_handlers(self, client, engine):
        lost = []
        client.set_connection_lost_handler(lost.append)
        client.start_consuming()
        client.connect().wait()
        assert client.try_consume_event_for(1).is_connected()

        engine.lose_connection("keepalive timeout")
        event = client.try_consume_event_for(1)
        assert event.is_connection_lost()
        assert event.cause == "keepalive timeout"
        assert lost == ["keepalive timeout"]

    def test_reconnect_event_cause(self, client, engine):
        client.start_consuming()
        client.connect(ConnectOptionsBuilder().automatic_reconnect().finalize()).wait()
        engine.lose_connection(reconnecting=True)
        engine.reconnect()
        causes = [client.try_consume_event_for(1).cause for _ in range(3)]
        assert causes == ["connect onSuccess called", "Connection lost", "automatic reconnect"]

    def test_server_disconnect(self, client, engine):
        """A broker DISCONNECT yields a Disconnected event, then ConnectionLost."""
        client.start_consuming()
        client.connect(ConnectOptionsBuilder.v5().finalize()).wait()
        assert client.consume_event().is_connected()

        engine.server_disconnect(0x8E, Properties({PropertyCode.REASON_STRING: "taken over"}))
        event = client.consume_event()
        assert event.is_disconnected()
        assert event.reason_code == 0x8E
        assert event.properties.get(PropertyCode.REASON_STRING) == "taken over"
        assert client.consume_event().is_connection_lost()
        assert client.get_state() is ClientState.DISCONNECTED

        client.stop_consuming()
        with pytest.raises(QueueClosed):
            client.consume_event()

    def test_user_disconnect_emits_no_events(self, client):
        client.start_consuming()
        client.connect().wait()
        client.try_consume_event()
        client.disconnect().wait()
        assert client.try_consume_event() is None


# ============================================================================
# SUBSCRIPTIONS
# ============================================================================


class TestSubscriptions:

    def test_subscribe_requires_connection(self, client):
        with pytest.raises(StateError):
            client.subscribe("a/#").wait()

    def test_subscribe_is_remembered(self, client, engine):
        client.connect().wait()
        rsp = client.subscribe(["a/#", "b"], [1, 2]).get_subscribe_response()
        assert rsp.reason_codes == [1, 2]
        assert client.get_subscriptions() == {"a/#": (1, None), "b": (2, None)}
        assert engine.subscribed[-1][:2] == (["a/#", "b"], [1, 2])

    def test_partially_refused_subscribe(self, client, engine):
        client.connect().wait()
        engine.suback_codes = [1, 0x80]
        client.subscribe(["a", "b"], 1).wait()
        assert client.get_subscriptions() == {"a": (1, None)}

    def test_fully_refused_subscribe(self, client, engine):
        client.connect().wait()
        engine.suback_codes = [0x87]
        with pytest.raises(ProtocolError):
            client.subscribe("secret/#", 1).wait()
        assert client.get_subscriptions() == {}

    def test_unsubscribe_forgets(self, client, engine):
        client.connect().wait()
        client.subscribe("a/#", 1).wait()
        client.unsubscribe("a/#").get_unsubscribe_response()
        assert client.get_subscriptions() == {}
        assert engine.unsubscribed[-1][0] == ["a/#"]

    def test_resubscribe_on_new_session(self, make_client, engine):
        client = make_client(subscriptions=[("hello", 1)])
        client.start_consuming()
        client.connect().wait()
        assert engine.subscribed[0][:2] == (["hello"], [1])

        engine.deliver("hello", "Hello there", qos=1)
        assert client.try_consume_event_for(1).is_connected()
        msg = client.try_consume_message_for(1)
        assert msg.topic == "hello"
        assert msg.payload == b"Hello there"

    def test_no_resubscribe_when_session_present(self, client, engine):
        client.connect(ConnectOptionsBuilder().automatic_reconnect().finalize()).wait()
        client.subscribe("a", 1).wait()
        engine.lose_connection(reconnecting=True)
        engine.reconnect(session_present=True)
        assert len(engine.subscribed) == 1

        engine.lose_connection(reconnecting=True)
        engine.reconnect(session_present=False)
        assert len(engine.subscribed) == 2
        assert engine.subscribed[-1][0] == ["a"]

    def test_auto_resubscribe_disabled(self, make_client, engine):
        opts = CreateOptionsBuilder().auto_resubscribe(False).finalize()
        client = make_client(subscriptions=["hello"], create_options=opts)
        client.connect().wait()
        assert engine.subscribed == []

    @pytest.mark.parametrize("call", [
        lambda c: c.subscribe([]),
        lambda c: c.subscribe(["a", "b"], [0]),
        lambda c: c.subscribe("a", 3),
        lambda c: c.subscribe("a/#/b"),
        lambda c: c.unsubscribe("a+"),
    ])
    def test_invalid_arguments(self, client, call):
        client.connect().wait()
        with pytest.raises(ArgumentError):
            call(client)


# ============================================================================
# PUBLISH
# ============================================================================


class TestPublish:

    def test_publish_when_connected(self, client, engine):
        client.connect().wait()
        token = client.publish("data/temp", {"value": 21.5}, qos=1, retained=True)
        assert token.wait_for(1)
        msg = engine.published[-1]
        assert msg.topic == "data/temp"
        assert msg.payload == b'{"value":21.5}'
        assert msg.retained is True
        assert token.get_message() is msg

    def test_publish_message_object(self, client, engine):
        client.connect().wait()
        msg = Message(topic="a/b", payload="x", qos=2)
        client.publish(msg).wait()
        assert engine.published == [msg]

    def test_publish_without_buffer_while_disconnected(self, client):
        with pytest.raises(StateError):
            client.publish("a", "x").wait()

    @pytest.mark.parametrize("topic,qos", [("a/+", 0), ("a/#", 0), ("", 0), ("a", 3)])
    def test_invalid_arguments(self, client, topic, qos):
        with pytest.raises(ArgumentError):
            client.publish(topic, "x", qos=qos)

    def test_engine_rejects_publish(self, client, engine):
        client.connect().wait()
        engine.fail_next = TransportError("Write failed")
        token = client.publish("a", "x", qos=1)
        with pytest.raises(TransportError):
            token.wait()
        assert client.get_persistence().keys() == []

    def test_persisted_until_acknowledged(self, client, engine):
        client.connect().wait()
        engine.auto_complete = False
        token = client.publish("a", "x", qos=1)
        assert len(client.get_persistence().keys()) == 1
        assert client.get_pending_delivery_tokens() == [token]

        engine.ack(token.get_message_id())
        assert client.get_persistence().keys() == []
        assert client.get_pending_delivery_tokens() == []
        engine.auto_complete = True

    def test_qos0_dies_with_disconnect(self, client, engine):
        client.connect().wait()
        engine.auto_complete = False
        token = client.publish("a", "x", qos=0)
        engine.auto_complete = True
        client.disconnect().wait()
        with pytest.raises(StateError):
            token.wait()


# ============================================================================
# OFFLINE BUFFER
# ============================================================================


class TestOfflineBuffer:
    """Publishes accepted while disconnected are sent in order on connect."""

    def test_buffered_then_flushed_in_order(self, make_client, engine):
        client = make_client(max_buffered_messages=10)
        tokens = [client.publish("data/seq", str(i), qos=1) for i in range(3)]
        assert not any(t.is_complete() for t in tokens)
        assert engine.published == []

        client.connect().wait()
        assert engine.published_payloads == [b"0", b"1", b"2"]
        assert all(t.wait_for(1) for t in tokens)

    def test_full_buffer_drops_oldest(self, make_client, engine):
        client = make_client(max_buffered_messages=2)
        tokens = [client.publish("data/seq", str(i), qos=1) for i in range(3)]
        with pytest.raises(MessageDropped):
            tokens[0].wait()
        assert len(client.get_persistence().keys()) == 2

        client.connect().wait()
        assert engine.published_payloads == [b"1", b"2"]
        assert all(t.wait_for(1) for t in tokens[1:])

    def test_full_buffer_refuses_new(self, make_client):
        opts = CreateOptions(max_buffered_messages=1, delete_oldest_messages=False)
        client = make_client(create_options=opts)
        first = client.publish("a", "1", qos=1)
        second = client.publish("a", "2", qos=1)
        with pytest.raises(MessageDropped):
            second.wait()
        assert not first.is_complete()

    def test_buffering_while_reconnecting(self, make_client, engine):
        client = make_client(max_buffered_messages=5)
        client.connect(ConnectOptionsBuilder().automatic_reconnect().finalize()).wait()
        engine.lose_connection(reconnecting=True)
        token = client.publish("a", "x", qos=1)
        assert not token.is_complete()
        engine.reconnect()
        assert token.wait_for(1)
        assert engine.published_payloads == [b"x"]

    def test_qos0_not_persisted_by_default(self, make_client):
        client = make_client(max_buffered_messages=5)
        client.publish("a", "x", qos=0)
        assert client.get_persistence().keys() == []

    def test_qos0_persisted_when_enabled(self, make_client):
        opts = CreateOptions(max_buffered_messages=5, persist_qos0=True)
        client = make_client(create_options=opts)
        client.publish("a", "x", qos=0)
        assert len(client.get_persistence().keys()) == 1

    def test_restore_after_restart(self, make_client, tmp_path):
        """Messages buffered by a closed client are sent by its successor."""
        first = make_client("restore-client", max_buffered_messages=10, persistence=str(tmp_path))
        dead = [first.publish("data/a", "one", qos=1), first.publish("data/b", "two", qos=2)]
        first.close()
        for token in dead:
            with pytest.raises(ClientDestroyed):
                token.wait()

        engine = FakeEngine()
        second = make_client("restore-client", max_buffered_messages=10,
                             persistence=str(tmp_path), engine=engine)
        pending = second.get_pending_delivery_tokens()
        assert [t.get_message().topic for t in pending] == ["data/a", "data/b"]
        assert all(t.get_message().duplicate for t in pending)

        second.connect().wait()
        assert engine.published_topics == ["data/a", "data/b"]
        assert all(t.wait_for(1) for t in pending)
        assert second.get_persistence().keys() == []

    def test_restore_disabled(self, make_client, tmp_path):
        first = make_client("c1", max_buffered_messages=10, persistence=tmp_path)
        first.publish("a", "x", qos=1)
        first.close()

        opts = CreateOptions(max_buffered_messages=10, restore_messages=False)
        second = make_client("c1", create_options=opts, persistence=tmp_path, engine=FakeEngine())
        assert second.get_pending_delivery_tokens() == []


# ============================================================================
# CONSUMER AND CALLBACK MODES
# ============================================================================


class TestConsuming:

    def test_consume_requires_start(self, client):
        assert not client.is_consuming()
        with pytest.raises(StateError):
            client.consume_event()

    def test_try_consume_on_empty_queue(self, client):
        client.start_consuming()
        assert client.try_consume_message() is None
        assert client.try_consume_message_for(0.01) is None

    def test_consume_message_skips_to_none_for_state_events(self, client, engine):
        client.start_consuming()
        client.connect().wait()
        assert client.consume_message() is None
        engine.deliver("t", "x")
        assert client.consume_message().payload == b"x"

    def test_restart_consuming_closes_old_queue(self, client):
        client.start_consuming()
        client.stop_consuming()
        assert not client.is_consuming()
        client.start_consuming()
        assert client.is_consuming()

    def test_bounded_queue_counts_drops(self, make_client, engine):
        opts = CreateOptions(event_queue_capacity=1)
        client = make_client(create_options=opts)
        client.start_consuming()
        client.connect().wait()
        engine.deliver("t", "x")
        assert client.dropped_message_count == 1


class TestCallbacks:
    """Callback mode, used when nothing is consuming."""

    def test_callback_object(self, client, engine):
        callback = RecordingCallback()
        client.set_callback(callback)
        client.connect().wait()
        engine.deliver("sensors/1", "x")
        client.publish("out", "y", qos=1).wait()
        engine.server_disconnect(0x8B)

        assert callback.calls == [
            ("connected", "connect onSuccess called"),
            ("message", "sensors/1"),
            ("delivered", "out"),
            ("disconnected", 0x8B),
            ("connection_lost", "Server sent DISCONNECT (0x8B)"),
        ]

    def test_handler_functions(self, client, engine):
        messages, connected, disconnected = [], [], []
        client.set_message_callback(messages.append)
        client.set_connected_handler(connected.append)
        client.set_disconnected_handler(lambda rc, props: disconnected.append(rc))
        client.connect().wait()
        engine.deliver("a", "1")
        engine.server_disconnect(0x8E)
        assert [m.topic for m in messages] == ["a"]
        assert connected == ["connect onSuccess called"]
        assert disconnected == [0x8E]

    def test_callback_exception_is_contained(self, client, engine):
        def boom(msg):
            raise RuntimeError("user bug")

        client.set_message_callback(boom)
        client.connect().wait()
        engine.deliver("a", "1")
        assert client.is_connected

    def test_message_without_receiver_is_dropped(self, client, engine):
        client.connect().wait()
        engine.deliver("a", "1")
        engine.deliver("b", "2")
        assert client.dropped_message_count == 2

    def test_queue_takes_precedence(self, client, engine):
        messages = []
        client.set_message_callback(messages.append)
        client.start_consuming()
        client.connect().wait()
        engine.deliver("a", "1")
        assert messages == []
        client.stop_consuming()
        engine.deliver("b", "2")
        assert [m.topic for m in messages] == ["b"]


# ============================================================================
# SHUTDOWN
# ============================================================================


class TestClose:

    def test_close_fails_pending_tokens(self, make_client, engine):
        client = make_client()
        client.connect().wait()
        engine.auto_complete = False
        token = client.publish("a", "x", qos=1)
        engine.auto_complete = True

        client.close()
        with pytest.raises(ClientDestroyed):
            token.wait()
        assert engine.closed
        assert engine.handler is None
        assert len(engine.disconnects) == 1

    def test_operations_after_close(self, client):
        client.close()
        with pytest.raises(ClientDestroyed):
            client.connect().wait()
        with pytest.raises(ClientDestroyed):
            client.publish("a", "x").wait()
        with pytest.raises(ClientDestroyed):
            client.subscribe("a").wait()

    def test_close_is_idempotent(self, client, engine):
        client.connect().wait()
        client.close()
        client.close()
        assert len(engine.disconnects) == 1

    def test_close_drops_buffered_messages(self, make_client):
        client = make_client(max_buffered_messages=5)
        token = client.publish("a", "x", qos=1)
        client.close()
        with pytest.raises(ClientDestroyed):
            token.wait()
        assert client.get_pending_delivery_tokens() == []
