"""
Tests for action listeners and the client callback dispatcher.
"""
import logging

from mqtt_async_client import ActionListener, Callback, Message, Properties
from mqtt_async_client.async_client.callback import ActionListenerProtocol, CallbackDispatcher


class TestActionListener:

    def test_functions_are_optional(self):
        listener = ActionListener()
        listener.on_success(None)
        listener.on_failure(None)

    def test_subclass_satisfies_protocol(self):
        class Listener(ActionListener):
            def on_success(self, token):
                pass

        assert isinstance(Listener(), ActionListenerProtocol)


class TestCallbackDispatcher:
    """Callback object and handler functions both receive each notification."""

    def test_nothing_installed(self):
        dispatcher = CallbackDispatcher()
        assert dispatcher.message_arrived(Message(topic="t")) is False
        assert not dispatcher.handles_messages()
        dispatcher.connected("x")
        dispatcher.connection_lost("x")

    def test_callback_and_handler_both_called(self):
        seen = []

        class Recorder(Callback):
            def message_arrived(self, msg):
                seen.append(("callback", msg.topic))

        dispatcher = CallbackDispatcher()
        dispatcher.set_callback(Recorder())
        dispatcher.set_message_callback(lambda msg: seen.append(("handler", msg.topic)))
        assert dispatcher.message_arrived(Message(topic="t")) is True
        assert seen == [("callback", "t"), ("handler", "t")]

    def test_disconnected_handler_matches_callback_argument_order(self):
        seen = []

        class Recorder(Callback):
            def disconnected(self, reason_code, properties):
                seen.append(("callback", reason_code, properties))

        dispatcher = CallbackDispatcher()
        dispatcher.set_callback(Recorder())
        dispatcher.set_disconnected_handler(lambda rc, props: seen.append(("handler", rc, props)))
        props = Properties()
        dispatcher.disconnected(0x8E, props)
        assert seen == [("callback", 0x8E, props), ("handler", 0x8E, props)]

    def test_exceptions_are_logged(self, caplog):
        def boom(cause):
            raise RuntimeError("user bug")

        after = []
        dispatcher = CallbackDispatcher()
        dispatcher.set_connected_handler(boom)
        dispatcher.set_callback(type("C", (Callback,), {"connected": lambda self, c: after.append(c)})())

        with caplog.at_level(logging.ERROR):
            dispatcher.connected("connect onSuccess called")
        assert after == ["connect onSuccess called"]
        assert "user bug" in caplog.text

    def test_clear(self):
        dispatcher = CallbackDispatcher()
        dispatcher.set_callback(Callback())
        dispatcher.set_message_callback(print)
        dispatcher.clear()
        assert dispatcher.get_callback() is None
        assert not dispatcher.handles_messages()
