"""
Asynchronous, token-based MQTT client.

``AsyncClient`` submits every broker interaction to a protocol engine and
returns immediately with a token. Results arrive on the engine's network
thread, which resolves the token, wakes waiters (blocking, timed, or asyncio)
and fires any action listener.

Key features:
    - Connection state machine with optional automatic reconnect
    - Remembered subscriptions, restored when a session is not resumed
    - Offline buffering of publishes, persisted and replayed in order
    - Consumer mode: messages and connection events on one closable queue
    - Callback mode: a Callback object and/or per-event handler functions

Thread safety:
    Client state and the in-flight token table are guarded by one re-entrant
    lock. The lock is never held while calling into the engine or user code.

Example:
    >>> client = AsyncClient("mqtt://localhost:1883", "sensor-01")
    >>> client.start_consuming()
    >>> client.connect(ConnectOptionsBuilder.v5().clean_start(True).finalize()).wait()
    >>> client.subscribe("commands/#", 1).wait()
    >>> client.publish("data/temp", "21.5", qos=1).wait()
    >>> msg = client.consume_message()
    >>> client.close()
"""
import logging
import os
import threading
from datetime import datetime, timedelta
from typing import Any, Iterable

from pydantic import ValidationError

from ..core.base import AsyncClientBase
from ..core.event import Event
from ..core.exceptions import (
    AlreadyConnected,
    ArgumentError,
    ClientDestroyed,
    MessageDropped,
    MqttException,
    StateError,
    TransportError,
)
from ..core.message import Message
from ..core.models import ClientState
from ..core.options import (
    ConnectOptions,
    ConnectOptionsBuilder,
    CreateOptions,
    DisconnectOptions,
    MQTTVersion,
    ResponseOptions,
    SubscribeOptions,
)
from ..core.persistence import ClientPersistence, FilePersistence, MemoryPersistence
from ..core.properties import Properties
from ..core.protocol_utils import (
    parse_server_uri,
    to_timeout,
    validate_qos,
    validate_topic_filter,
    validate_topic_name,
)
from ..core.reason_codes import reason_code_to_string
from ..core.thread_queue import ThreadQueue
from ..core.token import DeliveryToken, FailureData, SuccessData, Token, TokenType
from .callback import ActionListener, Callback, CallbackDispatcher
from .engine import ProtocolEngine
from .offline_buffer import BufferedMessage, OfflineBuffer
from .paho_engine import PahoEngine


class _EngineEvents:
    """Routes engine events to the client's private handlers."""

    def __init__(self, client: "AsyncClient"):
        self._client = client

    def on_connected(self, cause: str, data: SuccessData) -> None:
        self._client._handle_connected(cause, data)

    def on_connection_lost(self, cause: str, reconnecting: bool) -> None:
        self._client._handle_connection_lost(cause, reconnecting)

    def on_message(self, msg: Message) -> None:
        self._client._handle_message(msg)

    def on_disconnected(self, reason_code: int, properties: Properties) -> None:
        self._client._handle_server_disconnect(reason_code, properties)


class AsyncClient(AsyncClientBase):
    """
    Token-based MQTT v3.1.1 / v5 client.

    Args:
        server_uri: Broker URI, e.g. "mqtt://localhost:1883" or "wss://host/mqtt"
        client_id: MQTT client identifier
        max_buffered_messages: Offline buffer size; 0 disables offline publishing
        persistence: None (in memory), a directory path (file persistence), or a ClientPersistence
        create_options: Full construction options; ``max_buffered_messages`` overrides its value when non-zero
        engine: Protocol engine; defaults to a PahoEngine for ``server_uri``
        subscriptions: Filters (or (filter, qos) pairs) to subscribe on every new session
        logger: Custom logger adapter
    """

    def __init__(
        self,
        server_uri: str,
        client_id: str = "",
        max_buffered_messages: int = 0,
        persistence: "ClientPersistence | str | os.PathLike[str] | None" = None,
        create_options: CreateOptions | None = None,
        engine: ProtocolEngine | None = None,
        subscriptions: "Iterable[str | tuple[str, int]] | None" = None,
        logger: logging.LoggerAdapter | None = None,
    ):
        parse_server_uri(server_uri)
        super().__init__(server_uri, client_id, logger)

        try:
            if create_options is None:
                create_options = CreateOptions(max_buffered_messages=max_buffered_messages)
            elif max_buffered_messages:
                create_options = CreateOptions(**{
                    **create_options.model_dump(),
                    "max_buffered_messages": max_buffered_messages,
                })
        except ValidationError as e:
            raise ArgumentError(f"Invalid create options: {e}")
        self._create_options = create_options
        self._mqtt_version = self._effective_version(create_options.mqtt_version)

        self._lock = threading.RLock()
        self._state = ClientState.DISCONNECTED
        self._closed = False
        self._connect_options: ConnectOptions | None = None
        self._connect_token: Token | None = None
        self._disconnect_token: Token | None = None
        self._tokens: dict[int, Token] = {}
        self._delivery_keys: dict[int, str | None] = {}
        self._sub_requests: dict[int, list[tuple[str, int, SubscribeOptions | None]]] = {}
        self._subscriptions: dict[str, tuple[int, SubscribeOptions | None]] = {}
        self._flushing = False
        self._queue: ThreadQueue[Event] | None = None
        self._dropped = 0
        self._dispatcher = CallbackDispatcher(self.logger)

        for item in subscriptions or []:
            topic_filter, qos = (item, 0) if isinstance(item, str) else item
            self._subscriptions[validate_topic_filter(topic_filter)] = (validate_qos(qos), None)

        if persistence is None:
            persistence = MemoryPersistence()
        elif isinstance(persistence, (str, os.PathLike)):
            persistence = FilePersistence(persistence)
        self._persistence = persistence
        if client_id or not isinstance(persistence, MemoryPersistence):
            persistence.open(client_id, server_uri)

        self._buffer = OfflineBuffer(
            persistence,
            capacity=create_options.max_buffered_messages,
            delete_oldest=create_options.delete_oldest_messages,
            persist_qos0=create_options.persist_qos0,
            client_logger=self.logger,
        )

        self._engine = engine or PahoEngine(server_uri, client_id, logger=self.logger)
        self._engine.set_handler(_EngineEvents(self))

        if create_options.restore_messages:
            self._restore_messages()

        self.logger.debug(f"Created client for {server_uri} with identifier '{client_id}'")

    @staticmethod
    def _effective_version(version: MQTTVersion | int) -> MQTTVersion:
        version = MQTTVersion(version)
        return MQTTVersion.V3_1_1 if version == MQTTVersion.DEFAULT else version

    # ========================================================================
    # Accessors
    # ========================================================================

    @property
    def is_connected(self) -> bool:
        with self._lock:
            return self._state is ClientState.CONNECTED

    def get_state(self) -> ClientState:
        with self._lock:
            return self._state

    def get_mqtt_version(self) -> MQTTVersion:
        return self._mqtt_version

    def get_connect_options(self) -> ConnectOptions | None:
        return self._connect_options

    def get_create_options(self) -> CreateOptions:
        return self._create_options

    def get_persistence(self) -> ClientPersistence:
        return self._persistence

    def get_engine(self) -> ProtocolEngine:
        return self._engine

    def get_subscriptions(self) -> dict[str, tuple[int, SubscribeOptions | None]]:
        """Remembered subscriptions: filter -> (qos, options)."""
        with self._lock:
            return dict(self._subscriptions)

    def get_pending_delivery_tokens(self) -> list[DeliveryToken]:
        with self._lock:
            tokens = [t for t in self._tokens.values() if isinstance(t, DeliveryToken)]
        return [t for t in sorted(tokens, key=lambda t: t.handle) if not t.is_complete()]

    @property
    def dropped_message_count(self) -> int:
        """Incoming messages discarded because nothing could take them."""
        with self._lock:
            return self._dropped

    # ========================================================================
    # Callbacks
    # ========================================================================

    def set_callback(self, callback: Callback | None) -> None:
        self._dispatcher.set_callback(callback)

    def set_connected_handler(self, handler) -> None:
        self._dispatcher.set_connected_handler(handler)

    def set_connection_lost_handler(self, handler) -> None:
        self._dispatcher.set_connection_lost_handler(handler)

    def set_message_callback(self, handler) -> None:
        self._dispatcher.set_message_callback(handler)

    def set_disconnected_handler(self, handler) -> None:
        self._dispatcher.set_disconnected_handler(handler)

    # ========================================================================
    # Token bookkeeping
    # ========================================================================

    def _new_token(self, token_type: TokenType, topics: list[str] | None = None,
                   user_context: Any = None, listener: Any = None) -> Token:
        token = Token(token_type, self, topics=topics, user_context=user_context, listener=listener)
        token._add_done_callback(self._token_done)
        return token

    def _new_delivery_token(self, msg: Message, user_context: Any = None, listener: Any = None) -> DeliveryToken:
        token = DeliveryToken(self, msg, user_context=user_context, listener=listener)
        token._add_done_callback(self._token_done)
        return token

    def _token_done(self, token: Token) -> None:
        with self._lock:
            self._tokens.pop(token.handle, None)
            self._sub_requests.pop(token.handle, None)
            key = self._delivery_keys.pop(token.handle, None)

        error = token.get_error()
        # Keep persisted messages of a closed client for the next run
        if key is not None and not isinstance(error, ClientDestroyed):
            self._buffer.forget(key)

        if isinstance(token, DeliveryToken) and error is None:
            self._dispatcher.delivery_complete(token)

    def _submit(self, token: Token, response: ResponseOptions, operation) -> Token:
        """Run ``operation(response)`` against the engine, outside the client lock."""
        try:
            mid = operation(response)
        except MqttException as e:
            self.logger.warning(
                f"Engine rejected {token.get_type().value}: {e.detail or e}",
                extra={"token": token.handle},
            )
            self._on_submit_failed(token)
            token._resolve_failure(e)
            return token
        if isinstance(mid, int) and mid:
            token.set_message_id(mid)
        return token

    def _on_submit_failed(self, token: Token) -> None:
        with self._lock:
            if token.get_type() is TokenType.CONNECT and self._connect_token is token:
                self._connect_token = None
                self._state = ClientState.DISCONNECTED
            elif token.get_type() is TokenType.DISCONNECT and self._disconnect_token is token:
                self._disconnect_token = None
                self._state = ClientState.DISCONNECTED

    def _response(self, token: Token, properties: Properties | None = None,
                  subscribe_options: list[SubscribeOptions] | None = None) -> ResponseOptions:
        return ResponseOptions(token, self._mqtt_version, properties, subscribe_options)

    # --- completion hooks (called by Token before it resolves) -------------

    def _on_token_success(self, token: Token, data: SuccessData) -> None:
        if token.is_complete():
            return
        token_type = token.get_type()
        self.logger.debug(f"{token_type.value} succeeded", extra={"token": token.handle, "mid": data.message_id})

        if token_type is TokenType.CONNECT:
            with self._lock:
                if self._connect_token is token:
                    self._connect_token = None
            self._handle_connected("connect onSuccess called", data)
        elif token_type is TokenType.SUBSCRIBE:
            self._remember_subscriptions(token, data.reason_codes)
        elif token_type is TokenType.UNSUBSCRIBE:
            with self._lock:
                for topic_filter in token.get_topics():
                    self._subscriptions.pop(topic_filter, None)
        elif token_type is TokenType.DISCONNECT:
            self._handle_disconnect_complete(token)

    def _on_token_failure(self, token: Token, data: FailureData) -> None:
        if token.is_complete():
            return
        token_type = token.get_type()
        self.logger.warning(
            f"{token_type.value} failed: {data.message} (rc={data.return_code}, reason={data.reason_code:#04x})",
            extra={"token": token.handle},
        )
        if token_type is TokenType.CONNECT:
            with self._lock:
                if self._connect_token is token:
                    self._connect_token = None
                    if self._state is ClientState.CONNECTING:
                        # The engine keeps retrying in the background
                        retrying = self._connect_options is not None and self._connect_options.automatic_reconnect
                        self._state = ClientState.RECONNECTING if retrying else ClientState.DISCONNECTED
            if self.get_state() is ClientState.RECONNECTING:
                self.logger.info("Connect failed; retrying automatically")
        elif token_type is TokenType.SUBSCRIBE:
            with self._lock:
                for topic_filter in token.get_topics():
                    self._subscriptions.pop(topic_filter, None)
        elif token_type is TokenType.DISCONNECT:
            self._handle_disconnect_complete(token)

    def _remember_subscriptions(self, token: Token, reason_codes: list[int]) -> None:
        with self._lock:
            requests = self._sub_requests.get(token.handle, [])
            for i, (topic_filter, qos, opts) in enumerate(requests):
                code = reason_codes[i] if i < len(reason_codes) else qos
                if code >= 0x80:
                    self._subscriptions.pop(topic_filter, None)
                else:
                    self._subscriptions[topic_filter] = (qos, opts)

    # ========================================================================
    # Connect / disconnect
    # ========================================================================

    def _default_connect_options(self) -> ConnectOptions:
        if self._mqtt_version == MQTTVersion.V5:
            return ConnectOptionsBuilder.v5().finalize()
        return ConnectOptionsBuilder(self._mqtt_version).finalize()

    def connect(self, options: ConnectOptions | None = None, user_context: Any = None,
                listener: Any = None) -> Token:
        """
        Connect to the broker.

        Returns:
            CONNECT token. It is already failed with AlreadyConnected if the
            client is not DISCONNECTED.
        """
        if options is None:
            options = self._default_connect_options()
        token = self._new_token(TokenType.CONNECT, user_context=user_context, listener=listener)

        with self._lock:
            if self._closed:
                error = ClientDestroyed("Client is closed", client_id=self._client_id)
            elif self._state is not ClientState.DISCONNECTED:
                error = AlreadyConnected(f"Client is {self._state.value}", client_id=self._client_id)
            else:
                error = None
                self._state = ClientState.CONNECTING
                self._connect_options = options
                self._mqtt_version = self._effective_version(options.mqtt_version)
                self._connect_token = token
                self._tokens[token.handle] = token

        if error is not None:
            token._resolve_failure(error)
            return token

        self.logger.info(f"Connecting to {self._server_uri}")
        return self._submit(token, self._response(token, options.properties),
                            lambda rsp: self._engine.connect(options, rsp))

    def reconnect(self, user_context: Any = None, listener: Any = None) -> Token:
        """Connect again with the options of the last connect() call."""
        with self._lock:
            options = self._connect_options
        if options is None:
            token = self._new_token(TokenType.CONNECT, user_context=user_context, listener=listener)
            token._resolve_failure(StateError("reconnect() called before connect()", client_id=self._client_id))
            return token
        return self.connect(options, user_context=user_context, listener=listener)

    def disconnect(self, options: "DisconnectOptions | float | timedelta | None" = None,
                   user_context: Any = None, listener: Any = None) -> Token:
        """
        Disconnect from the broker.

        A disconnect while CONNECTING or RECONNECTING cancels the connection
        attempt: the pending connect token fails and the client ends up
        DISCONNECTED.
        """
        if options is None:
            options = DisconnectOptions()
        elif not isinstance(options, DisconnectOptions):
            options = DisconnectOptions(timeout=to_timeout(options))
        token = self._new_token(TokenType.DISCONNECT, user_context=user_context, listener=listener)

        preempted = None
        with self._lock:
            if self._closed:
                error = ClientDestroyed("Client is closed", client_id=self._client_id)
            elif self._state in (ClientState.DISCONNECTED, ClientState.DISCONNECTING):
                error = StateError(f"Client is {self._state.value}", client_id=self._client_id)
            else:
                error = None
                preempted = self._connect_token
                self._connect_token = None
                self._state = ClientState.DISCONNECTING
                self._flushing = False
                self._disconnect_token = token
                self._tokens[token.handle] = token

        if error is not None:
            token._resolve_failure(error)
            return token
        if preempted is not None:
            preempted._resolve_failure(StateError("Connect cancelled by disconnect", client_id=self._client_id))

        self.logger.info(f"Disconnecting from {self._server_uri}")
        return self._submit(token, self._response(token, options.properties),
                            lambda rsp: self._engine.disconnect(options, rsp))

    def _handle_disconnect_complete(self, token: Token) -> None:
        with self._lock:
            if self._disconnect_token is token:
                self._disconnect_token = None
            self._state = ClientState.DISCONNECTED
            self._flushing = False
            buffered = self._buffered_handles()
            stale = [
                t for t in self._tokens.values()
                if t is not token and self._dies_with_connection(t, buffered)
            ]
        for t in stale:
            t._resolve_failure(StateError("Client disconnected", client_id=self._client_id))
        self.logger.info(f"Disconnected from {self._server_uri}")

    def _buffered_handles(self) -> set[int]:
        return {t.handle for t in self._buffer.tokens()}

    @staticmethod
    def _dies_with_connection(token: Token, buffered: set[int]) -> bool:
        """Operations that cannot outlive the connection they were sent on."""
        if token.get_type() in (TokenType.CONNECT, TokenType.SUBSCRIBE, TokenType.UNSUBSCRIBE):
            return True
        if isinstance(token, DeliveryToken) and token.handle not in buffered:
            msg = token.get_message()
            return msg is not None and msg.qos == 0
        return False

    # ========================================================================
    # Engine events
    # ========================================================================

    def _handle_connected(self, cause: str, data: SuccessData) -> None:
        with self._lock:
            if self._closed or self._state not in (ClientState.CONNECTING, ClientState.RECONNECTING):
                return
            self._state = ClientState.CONNECTED
            self._flushing = True
            resubscribe = []
            if not data.session_present and self._create_options.auto_resubscribe:
                resubscribe = list(self._subscriptions.items())

        self.logger.info(f"Connected to {self._server_uri} (session_present={data.session_present})")
        self._emit(Event.connected(cause))
        self._dispatcher.connected(cause)

        if resubscribe:
            self._resubscribe(resubscribe)
        self._flush_buffer()

    def _resubscribe(self, items: list[tuple[str, tuple[int, SubscribeOptions | None]]]) -> None:
        filters = [f for f, _ in items]
        qos = [q for _, (q, _) in items]
        opts = [o or SubscribeOptions() for _, (_, o) in items]
        self.logger.debug(f"Resubscribing to {len(filters)} filter(s)")

        def _failed(token: Token) -> None:
            self.logger.warning(f"Resubscribe failed: {token.get_error_message()}")

        try:
            self.subscribe(filters, qos, options=opts, listener=ActionListener(on_failure=_failed))
        except MqttException as e:
            self.logger.warning(f"Resubscribe rejected: {e}")

    def _flush_buffer(self) -> None:
        """Send buffered messages in order; later publishes queue behind them."""
        sent = 0
        while True:
            with self._lock:
                if self._state is not ClientState.CONNECTED:
                    self._flushing = False
                    break
                entry = self._buffer.pop()
                if entry is None:
                    self._flushing = False
                    break
            self._send_publish(entry.token, entry.message)
            sent += 1
        if sent:
            self.logger.debug(f"Flushed {sent} buffered message(s)")

    def _handle_connection_lost(self, cause: str, reconnecting: bool) -> None:
        with self._lock:
            if self._closed or self._state in (ClientState.DISCONNECTED, ClientState.DISCONNECTING):
                return
            self._state = ClientState.RECONNECTING if reconnecting else ClientState.DISCONNECTED
            self._flushing = False
            buffered = self._buffered_handles()
            doomed = [t for t in self._tokens.values() if self._dies_with_connection(t, buffered)]
            self._connect_token = None

        self.logger.warning(f"Connection lost: {cause}" + (" (reconnecting)" if reconnecting else ""))
        for t in doomed:
            t._resolve_failure(TransportError(f"Connection lost: {cause}", client_id=self._client_id))
        self._emit(Event.connection_lost(cause))
        self._dispatcher.connection_lost(cause)

    def _handle_server_disconnect(self, reason_code: int, properties: Properties) -> None:
        self.logger.warning(f"Broker sent DISCONNECT: {reason_code_to_string(reason_code)}")
        self._emit(Event.disconnected(reason_code, properties))
        self._dispatcher.disconnected(reason_code, properties)

    def _handle_message(self, msg: Message) -> None:
        queue = self._queue
        if queue is not None and not queue.closed():
            if not queue.try_put(Event.message(msg)):
                self._count_drop(f"Event queue full; dropped message on '{msg.topic}'")
            return
        if not self._dispatcher.message_arrived(msg):
            self._count_drop(f"No consumer or callback; dropped message on '{msg.topic}'")

    def _count_drop(self, reason: str) -> None:
        with self._lock:
            self._dropped += 1
        self.logger.warning(reason)

    def _emit(self, event: Event) -> None:
        queue = self._queue
        if queue is not None and not queue.closed() and not queue.try_put(event):
            self.logger.warning(f"Event queue full; dropped {event!r}")

    # ========================================================================
    # Publish
    # ========================================================================

    def publish(self, topic: "str | Message", payload: Any = None, qos: int = 0, retained: bool = False,
                properties: Properties | None = None, user_context: Any = None,
                listener: Any = None) -> DeliveryToken:
        """
        Publish a message.

        Accepts either ``(topic, payload, qos, retained, properties)`` or a
        ready ``Message``. While not connected, the message is buffered if
        offline buffering is enabled; otherwise the returned token is failed
        with StateError.

        Raises:
            ArgumentError: Invalid topic, QoS or payload
        """
        if isinstance(topic, Message):
            msg = topic
            validate_topic_name(msg.topic)
        else:
            validate_topic_name(topic)
            validate_qos(qos)
            try:
                msg = Message(topic=topic, payload=payload, qos=qos, retained=retained, properties=properties)
            except (ValidationError, TypeError) as e:
                raise ArgumentError(f"Invalid message: {e}", topic=topic)

        token = self._new_delivery_token(msg, user_context, listener)
        error: MqttException | None = None
        dropped: BufferedMessage | None = None
        send = False

        with self._lock:
            state = self._state
            connected = state is ClientState.CONNECTED
            if self._closed:
                error = ClientDestroyed("Client is closed", client_id=self._client_id)
            elif connected and not self._flushing:
                try:
                    key = self._buffer.persist(msg)
                except MqttException as e:
                    error = e
                else:
                    self._register_delivery(token, key)
                    send = True
            elif (self._buffer.enabled or connected) and state is not ClientState.DISCONNECTING:
                try:
                    key = self._buffer.persist(msg, buffered=True)
                except MqttException as e:
                    error = e
                else:
                    accepted, dropped = self._buffer.push(BufferedMessage(token, msg, key), bounded=not connected)
                    if accepted:
                        self._register_delivery(token, key)
                    else:
                        self._buffer.forget(key)
                        error = MessageDropped("Offline buffer is full", topic=msg.topic, client_id=self._client_id)
            else:
                error = StateError(f"Client is {state.value}", topic=msg.topic, client_id=self._client_id)

        if dropped is not None:
            self.logger.warning(f"Offline buffer full; dropped oldest message on '{dropped.message.topic}'")
            dropped.token._resolve_failure(MessageDropped(
                "Dropped from full offline buffer", topic=dropped.message.topic, client_id=self._client_id,
            ))
        if error is not None:
            token._resolve_failure(error)
            return token
        if send:
            self._send_publish(token, msg)
        else:
            self.logger.debug(f"Buffered message on '{msg.topic}'", extra={"token": token.handle})
        return token

    def _register_delivery(self, token: DeliveryToken, key: str | None) -> None:
        self._tokens[token.handle] = token
        self._delivery_keys[token.handle] = key

    def _send_publish(self, token: DeliveryToken, msg: Message) -> None:
        self.logger.debug(f"Publishing to '{msg.topic}' (qos={msg.qos})", extra={"token": token.handle})
        self._submit(token, self._response(token, msg.properties), lambda rsp: self._engine.publish(msg, rsp))

    def _restore_messages(self) -> None:
        entries = []
        with self._lock:
            for key, msg in self._buffer.restore():
                msg = msg.with_duplicate()
                token = self._new_delivery_token(msg)
                self._register_delivery(token, key)
                entries.append(BufferedMessage(token, msg, key))
            self._buffer.push_front(entries)
        if entries:
            self.logger.info(f"Restored {len(entries)} persisted message(s)")

    # ========================================================================
    # Subscribe / unsubscribe
    # ========================================================================

    @staticmethod
    def _as_list(value: Any, count: int, what: str) -> list:
        if isinstance(value, (list, tuple)):
            if len(value) != count:
                raise ArgumentError(f"Expected {count} {what} value(s), got {len(value)}")
            return list(value)
        return [value] * count

    def subscribe(self, topic_filter: "str | list[str]", qos: "int | list[int]" = 0,
                  options: "SubscribeOptions | list[SubscribeOptions] | None" = None,
                  properties: Properties | None = None, user_context: Any = None,
                  listener: Any = None) -> Token:
        """
        Subscribe to one filter or a list of filters.

        Raises:
            ArgumentError: Empty filter list, invalid filter or QoS, or
                           mismatched list lengths
        """
        filters = [topic_filter] if isinstance(topic_filter, str) else list(topic_filter)
        if not filters:
            raise ArgumentError("At least one topic filter is required")
        for f in filters:
            validate_topic_filter(f)
        qos_list = [validate_qos(q) for q in self._as_list(qos, len(filters), "QoS")]
        opts_list = [] if options is None else self._as_list(options, len(filters), "subscribe option")

        token = self._new_token(TokenType.SUBSCRIBE, filters, user_context, listener)
        error = self._register_operation(token)
        if error is not None:
            token._resolve_failure(error)
            return token
        with self._lock:
            self._sub_requests[token.handle] = list(zip(filters, qos_list, opts_list or [None] * len(filters)))

        self.logger.debug(f"Subscribing to {filters}", extra={"token": token.handle})
        return self._submit(token, self._response(token, properties, opts_list),
                            lambda rsp: self._engine.subscribe(filters, qos_list, rsp))

    def unsubscribe(self, topic_filter: "str | list[str]", properties: Properties | None = None,
                    user_context: Any = None, listener: Any = None) -> Token:
        filters = [topic_filter] if isinstance(topic_filter, str) else list(topic_filter)
        if not filters:
            raise ArgumentError("At least one topic filter is required")
        for f in filters:
            validate_topic_filter(f)

        token = self._new_token(TokenType.UNSUBSCRIBE, filters, user_context, listener)
        error = self._register_operation(token)
        if error is not None:
            token._resolve_failure(error)
            return token

        self.logger.debug(f"Unsubscribing from {filters}", extra={"token": token.handle})
        return self._submit(token, self._response(token, properties),
                            lambda rsp: self._engine.unsubscribe(filters, rsp))

    def _register_operation(self, token: Token) -> MqttException | None:
        with self._lock:
            if self._closed:
                return ClientDestroyed("Client is closed", client_id=self._client_id)
            if self._state is not ClientState.CONNECTED:
                return StateError(f"Client is {self._state.value}", client_id=self._client_id)
            self._tokens[token.handle] = token
        return None

    # ========================================================================
    # Consumer mode
    # ========================================================================

    def start_consuming(self) -> None:
        """Route incoming messages and connection events to a fresh event queue."""
        with self._lock:
            old = self._queue
            self._queue = ThreadQueue(self._create_options.event_queue_capacity)
        if old is not None:
            old.close()

    def stop_consuming(self) -> None:
        """Close the event queue. Blocked consumers drain it, then get QueueClosed."""
        with self._lock:
            queue = self._queue
        if queue is not None:
            queue.close()

    def is_consuming(self) -> bool:
        queue = self._queue
        return queue is not None and not queue.closed()

    def _require_queue(self) -> ThreadQueue[Event]:
        queue = self._queue
        if queue is None:
            raise StateError("Client is not consuming; call start_consuming() first", client_id=self._client_id)
        return queue

    def consume_event(self) -> Event:
        """Block for the next event. Raises QueueClosed once stopped and drained."""
        return self._require_queue().get()

    def consume_message(self) -> Message | None:
        """Block for the next event; returns its message, or None for a connection event."""
        event = self.consume_event()
        return event.get_message() if event.is_message() else None

    def try_consume_event(self) -> Event | None:
        ok, event = self._require_queue().try_get()
        return event if ok else None

    def try_consume_event_for(self, timeout: "float | timedelta") -> Event | None:
        ok, event = self._require_queue().try_get_for(timeout)
        return event if ok else None

    def try_consume_event_until(self, deadline: "float | datetime") -> Event | None:
        ok, event = self._require_queue().try_get_until(deadline)
        return event if ok else None

    @staticmethod
    def _message_of(event: Event | None) -> Message | None:
        if event is None or not event.is_message():
            return None
        return event.get_message()

    def try_consume_message(self) -> Message | None:
        return self._message_of(self.try_consume_event())

    def try_consume_message_for(self, timeout: "float | timedelta") -> Message | None:
        return self._message_of(self.try_consume_event_for(timeout))

    def try_consume_message_until(self, deadline: "float | datetime") -> Message | None:
        return self._message_of(self.try_consume_event_until(deadline))

    # ========================================================================
    # Shutdown
    # ========================================================================

    def close(self, timeout: "float | timedelta" = 10) -> None:
        """
        Stop consuming, disconnect (waiting up to ``timeout``), fail every
        pending token with ClientDestroyed, and release the engine and
        persistence. Persisted outbound messages are kept. Idempotent.
        """
        with self._lock:
            if self._closed:
                return
            state = self._state

        self.stop_consuming()
        if state is not ClientState.DISCONNECTED:
            token = self.disconnect()
            try:
                if not token.wait_for(timeout):
                    self.logger.warning("Timed out waiting for disconnect during close")
            except MqttException as e:
                self.logger.debug(f"Disconnect during close failed: {e}")

        with self._lock:
            self._closed = True
            self._state = ClientState.DISCONNECTED
            pending = list(self._tokens.values())
            self._buffer.drain()

        for t in pending:
            t._resolve_failure(ClientDestroyed("Client closed", client_id=self._client_id))

        self._engine.set_handler(None)
        try:
            self._engine.close()
        finally:
            self._persistence.close()
        self.logger.debug("Client closed")

    def __repr__(self):
        return (
            f"{self.__class__.__name__}(server_uri={self._server_uri!r}, "
            f"client_id={self._client_id!r}, state={self._state.value})"
        )


__all__ = ["AsyncClient"]
