"""
Protocol engine built on paho-mqtt.

``PahoEngine`` drives a ``paho.mqtt.client.Client`` in its threaded mode
(``loop_start()``) and translates between the client's operation/response model
and paho's callbacks:

    - connect -> connect_async() + loop_start(); CONNACK -> on_connect
    - publish / subscribe / unsubscribe -> message id; PUBACK/PUBCOMP, SUBACK,
      UNSUBACK -> on_publish / on_subscribe / on_unsubscribe keyed by that id
    - disconnect -> disconnect(); socket closed -> on_disconnect

All paho callbacks run on paho's network thread.

Note:
    paho holds its callback mutex while calling our callbacks, and takes the
    same mutex inside publish()/subscribe(). The engine therefore never holds
    its own lock while calling into paho. Because an ack can arrive before
    publish() has returned its message id, completions for unknown ids are
    parked briefly and claimed when the id is registered.
"""
import logging
import ssl
import threading
import time
from typing import Any

import paho.mqtt.client as mqtt
from paho.mqtt.packettypes import PacketTypes
from paho.mqtt.properties import Properties as PahoProperties
from paho.mqtt.reasoncodes import ReasonCode as PahoReasonCode
from paho.mqtt.subscribeoptions import SubscribeOptions as PahoSubscribeOptions

from ..core.base import MessageLogger
from ..core.exceptions import ArgumentError, MqttException, TransportError
from ..core.message import Message
from ..core.options import (
    ConnectOptions,
    DisconnectOptions,
    MQTTVersion,
    ResponseOptions,
    SslOptions,
)
from ..core.properties import Properties, PropertyCode
from ..core.protocol_utils import ServerURI, parse_server_uri
from ..core.token import FailureData, SuccessData
from .engine import EngineHandler, ProtocolEngine

logger = logging.getLogger(__name__)

_PROTOCOLS = {
    MQTTVersion.DEFAULT: mqtt.MQTTv311,
    MQTTVersion.V3_1: mqtt.MQTTv31,
    MQTTVersion.V3_1_1: mqtt.MQTTv311,
    MQTTVersion.V5: mqtt.MQTTv5,
}

# Completions that arrive before their id is registered are kept this long
_EARLY_COMPLETION_TTL = 30.0


def _code_value(code: Any) -> int:
    """Integer value of a paho ReasonCode (or a plain int)."""
    return int(getattr(code, "value", code))


def to_paho_properties(props: Properties, packet_type: int) -> PahoProperties | None:
    """Convert our Properties to paho Properties for ``packet_type``. None when empty."""
    if not props:
        return None
    paho_props = PahoProperties(packet_type)
    for code in dict.fromkeys(p.code for p in props):
        name = code.display_name.replace(" ", "")
        value = props.get_all(code) if code.allows_multiple else props.get(code)
        try:
            setattr(paho_props, name, value)
        except Exception as e:
            raise ArgumentError(f"Property '{code}' not allowed here: {e}")
    return paho_props


def from_paho_properties(paho_props: Any) -> Properties:
    """Convert paho Properties (or None) to our Properties."""
    props = Properties()
    if paho_props is None:
        return props
    for code in PropertyCode:
        name = code.display_name.replace(" ", "")
        if not hasattr(paho_props, name):
            continue
        value = getattr(paho_props, name)
        values = value if code.allows_multiple and isinstance(value, list) else [value]
        for v in values:
            props.add(code, v)
    return props


def build_ssl_context(opts: SslOptions) -> ssl.SSLContext:
    """Create an SSLContext from SslOptions."""
    if opts.ssl_version is not None:
        ctx = ssl.SSLContext(opts.ssl_version)
        ctx.verify_mode = ssl.CERT_REQUIRED
        ctx.check_hostname = True
        if opts.trust_store or opts.ca_path:
            ctx.load_verify_locations(cafile=opts.trust_store, capath=opts.ca_path)
        else:
            ctx.load_default_certs()
    else:
        ctx = ssl.create_default_context(cafile=opts.trust_store, capath=opts.ca_path)

    if not opts.enable_server_cert_auth:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    elif not opts.verify:
        ctx.check_hostname = False

    if opts.key_store:
        password = opts.private_key_password.get_secret_value() if opts.private_key_password else None
        ctx.load_cert_chain(opts.key_store, opts.private_key, password)
    if opts.enabled_cipher_suites:
        ctx.set_ciphers(opts.enabled_cipher_suites)
    if opts.alpn_protos:
        ctx.set_alpn_protocols(opts.alpn_protos)
    return ctx


class PahoEngine(ProtocolEngine):
    """
    ProtocolEngine over paho-mqtt 2.x.

    Args:
        server_uri: Broker URI (mqtt://, mqtts://, ws://, wss://, unix://)
        client_id: MQTT client identifier
        logger: Optional logger adapter
    """

    def __init__(self, server_uri: str, client_id: str, logger: logging.LoggerAdapter | None = None):
        self._server_uri = server_uri
        self._uri: ServerURI = parse_server_uri(server_uri)
        self._client_id = client_id
        self.logger = logger or MessageLogger(
            logging.getLogger(__name__),
            extra={"client_id": client_id},
            merge_extra=True
        )

        self._lock = threading.Lock()
        self._handler: EngineHandler | None = None
        self._client: mqtt.Client | None = None
        self._client_key: tuple | None = None
        self._loop_running = False
        self._mqtt_version = MQTTVersion.V3_1_1

        self._connect_response: ResponseOptions | None = None
        self._connect_timer: threading.Timer | None = None
        self._disconnect_response: ResponseOptions | None = None
        self._connected = False
        self._auto_reconnect = False

        # mid -> (response, replayable)
        self._pending: dict[int, tuple[ResponseOptions, bool]] = {}
        # mid -> (timestamp, success, data)
        self._early: dict[int, tuple[float, bool, Any]] = {}

    # --- ProtocolEngine ----------------------------------------------------

    def set_handler(self, handler: EngineHandler | None) -> None:
        self._handler = handler

    def is_connected(self) -> bool:
        client = self._client
        return client is not None and self._connected and client.is_connected()

    @property
    def paho_client(self) -> mqtt.Client | None:
        return self._client

    def connect(self, options: ConnectOptions, response: ResponseOptions) -> None:
        client = self._prepare_client(options)
        with self._lock:
            self._connect_response = response
            self._disconnect_response = None
            self._mqtt_version = options.mqtt_version
            self._auto_reconnect = options.automatic_reconnect

        host, port = self._uri.host, self._uri.port
        if options.servers:
            first = parse_server_uri(options.servers[0])
            host, port = first.host, first.port

        kwargs: dict[str, Any] = {"keepalive": int(options.keep_alive_interval)}
        if options.is_v5:
            kwargs["clean_start"] = options.clean_start
            kwargs["properties"] = to_paho_properties(options.properties, PacketTypes.CONNECT)

        self.logger.debug(f"Connecting to {host}:{port} (MQTT v{int(options.mqtt_version)})")
        try:
            # Reap a network thread left over from a previous connection
            client.loop_stop()
            client.connect_async(host, port, **kwargs)
            rc = client.loop_start()
        except (ValueError, OSError) as e:
            with self._lock:
                self._connect_response = None
            raise TransportError(f"Failed to start connection: {e}", client_id=self._client_id)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            with self._lock:
                self._connect_response = None
            raise TransportError(f"Failed to start network loop: {mqtt.error_string(rc)}", return_code=int(rc))
        self._loop_running = True

        timer = threading.Timer(options.connect_timeout, self._on_connect_timeout, args=(response,))
        timer.daemon = True
        with self._lock:
            self._cancel_connect_timer()
            self._connect_timer = timer
        timer.start()

    def disconnect(self, options: DisconnectOptions, response: ResponseOptions) -> None:
        client = self._client
        with self._lock:
            self._disconnect_response = response
            self._connect_response = None
            self._cancel_connect_timer()

        if client is None:
            self._finish_disconnect(0)
            return

        if options.timeout > 0 and self._has_pending_publishes():
            threading.Thread(
                target=self._quiesce_then_disconnect,
                args=(client, options),
                name=f"mqtt-quiesce-{self._client_id}",
                daemon=True,
            ).start()
            return
        self._send_disconnect(client, options)

    def publish(self, msg: Message, response: ResponseOptions) -> int:
        client = self._require_client()
        props = None
        if self._mqtt_version == MQTTVersion.V5:
            props = to_paho_properties(msg.properties, PacketTypes.PUBLISH)
        try:
            info = client.publish(msg.topic, msg.payload, qos=msg.qos, retain=msg.retained, properties=props)
        except ValueError as e:
            raise ArgumentError(str(e), topic=msg.topic)

        rc = info.rc
        # paho keeps QoS 1/2 messages queued while disconnected and sends them on reconnect
        if rc == mqtt.MQTT_ERR_NO_CONN and msg.qos > 0:
            rc = mqtt.MQTT_ERR_SUCCESS
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(mqtt.error_string(rc), return_code=int(rc), topic=msg.topic)

        self._register(info.mid, response, replayable=msg.qos > 0)
        return info.mid

    def subscribe(self, filters: list[str], qos: list[int], response: ResponseOptions) -> int:
        client = self._require_client()
        if self._mqtt_version == MQTTVersion.V5:
            sub_opts = response.subscribe_many_options
            topics = []
            for i, (topic_filter, q) in enumerate(zip(filters, qos)):
                opt = sub_opts[i] if i < len(sub_opts) else None
                topics.append((topic_filter, PahoSubscribeOptions(
                    qos=q,
                    noLocal=bool(opt and opt.no_local),
                    retainAsPublished=bool(opt and opt.retain_as_published),
                    retainHandling=int(opt.retain_handling) if opt else 0,
                )))
            props = to_paho_properties(response.properties, PacketTypes.SUBSCRIBE)
        else:
            topics = list(zip(filters, qos))
            props = None

        try:
            rc, mid = client.subscribe(topics, properties=props)
        except ValueError as e:
            raise ArgumentError(str(e), topic=filters[0])
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(mqtt.error_string(rc), return_code=int(rc), topic=filters[0])
        self._register(mid, response, replayable=False)
        return mid

    def unsubscribe(self, filters: list[str], response: ResponseOptions) -> int:
        client = self._require_client()
        props = None
        if self._mqtt_version == MQTTVersion.V5:
            props = to_paho_properties(response.properties, PacketTypes.UNSUBSCRIBE)
        try:
            rc, mid = client.unsubscribe(list(filters), properties=props)
        except ValueError as e:
            raise ArgumentError(str(e), topic=filters[0])
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(mqtt.error_string(rc), return_code=int(rc), topic=filters[0])
        self._register(mid, response, replayable=False)
        return mid

    def close(self) -> None:
        client = self._client
        with self._lock:
            self._cancel_connect_timer()
            self._pending.clear()
            self._early.clear()
            self._connect_response = None
            self._disconnect_response = None
            self._connected = False
        if client is not None:
            if client.is_connected():
                client.disconnect()
            client.loop_stop()
        self._loop_running = False
        self._client = None
        self._client_key = None

    # --- paho client setup -------------------------------------------------

    def _require_client(self) -> mqtt.Client:
        client = self._client
        if client is None:
            raise TransportError("Engine has no connection; call connect() first", client_id=self._client_id)
        return client

    def _prepare_client(self, options: ConnectOptions) -> mqtt.Client:
        """Create the paho client, or reuse it if nothing construction-time changed."""
        use_tls = self._uri.use_tls or options.ssl is not None
        protocol = _PROTOCOLS[MQTTVersion(options.mqtt_version)]
        clean_session = None if protocol == mqtt.MQTTv5 else options.clean_session
        key = (protocol, self._uri.transport, clean_session, options.automatic_reconnect, use_tls, options.ssl)

        if self._client is not None and self._client_key == key:
            client = self._client
        else:
            if self._client is not None:
                self.logger.debug("Connection settings changed; recreating paho client")
                self._client.loop_stop()
                self._loop_running = False
            client = mqtt.Client(
                mqtt.CallbackAPIVersion.VERSION2,
                client_id=self._client_id,
                clean_session=clean_session,
                protocol=protocol,
                transport=self._uri.transport,
                reconnect_on_failure=options.automatic_reconnect,
            )
            client.on_connect = self._on_connect
            client.on_connect_fail = self._on_connect_fail
            client.on_disconnect = self._on_disconnect
            client.on_message = self._on_message
            client.on_publish = self._on_publish
            client.on_subscribe = self._on_subscribe
            client.on_unsubscribe = self._on_unsubscribe
            client.enable_logger(logging.getLogger(f"{__name__}.paho"))
            if self._uri.transport == "websockets":
                client.ws_set_options(path=self._uri.path or "/mqtt")
            if use_tls:
                client.tls_set_context(build_ssl_context(options.ssl or SslOptions()))
            self._client = client
            self._client_key = key

        client.connect_timeout = options.connect_timeout
        client.max_inflight_messages_set(options.max_inflight)
        client.reconnect_delay_set(
            min_delay=max(1, int(options.min_retry_interval)),
            max_delay=max(1, int(options.max_retry_interval)),
        )
        client.username_pw_set(options.user_name, options.password_str())

        client.will_clear()
        if options.will is not None:
            will = options.will
            will_props = None
            if options.is_v5:
                will_props = to_paho_properties(will.properties, PacketTypes.WILLMESSAGE)
            client.will_set(will.topic, will.payload, qos=will.qos, retain=will.retained, properties=will_props)
        return client

    # --- id bookkeeping ----------------------------------------------------

    def _register(self, mid: int, response: ResponseOptions, replayable: bool) -> None:
        with self._lock:
            early = self._early.pop(mid, None)
            if early is None:
                self._pending[mid] = (response, replayable)
                return
        _, success, data = early
        self._complete(response, success, data)

    def _claim(self, mid: int, success: bool, data: Any) -> ResponseOptions | None:
        """Pop the response registered for ``mid``, or park the completion until it is registered."""
        with self._lock:
            entry = self._pending.pop(mid, None)
            if entry is not None:
                return entry[0]
            now = time.monotonic()
            for stale in [m for m, (ts, _, _) in self._early.items() if now - ts > _EARLY_COMPLETION_TTL]:
                del self._early[stale]
            self._early[mid] = (now, success, data)
            return None

    def _has_pending_publishes(self) -> bool:
        with self._lock:
            return any(replayable for _, replayable in self._pending.values())

    @staticmethod
    def _complete(response: ResponseOptions, success: bool, data: Any) -> None:
        try:
            if success:
                response.complete_success(data)
            else:
                response.complete_failure(data)
        except Exception as e:
            logger.error(f"Error completing operation: {e}", exc_info=True)

    def _cancel_connect_timer(self) -> None:
        if self._connect_timer is not None:
            self._connect_timer.cancel()
            self._connect_timer = None

    # --- disconnect helpers ------------------------------------------------

    def _quiesce_then_disconnect(self, client: mqtt.Client, options: DisconnectOptions) -> None:
        deadline = time.monotonic() + options.timeout
        while time.monotonic() < deadline and self._has_pending_publishes():
            time.sleep(0.05)
        self._send_disconnect(client, options)

    def _send_disconnect(self, client: mqtt.Client, options: DisconnectOptions) -> None:
        reason = None
        props = None
        if self._mqtt_version == MQTTVersion.V5:
            reason = PahoReasonCode(PacketTypes.DISCONNECT, identifier=options.effective_reason_code)
            props = to_paho_properties(options.properties, PacketTypes.DISCONNECT)
        rc = client.disconnect(reasoncode=reason, properties=props)
        if rc != mqtt.MQTT_ERR_SUCCESS or not self._connected:
            # No socket: paho will not call on_disconnect
            self._finish_disconnect(0)

    def _finish_disconnect(self, reason_code: int) -> None:
        with self._lock:
            response = self._disconnect_response
            self._disconnect_response = None
            self._connected = False
            self._drop_non_replayable()
        client = self._client
        if client is not None and self._loop_running:
            client.loop_stop()
            self._loop_running = False
        if response is not None:
            self._complete(response, True, SuccessData(reason_code=reason_code))

    def _drop_non_replayable(self) -> None:
        for mid in [m for m, (_, replayable) in self._pending.items() if not replayable]:
            del self._pending[mid]

    # --- paho callbacks (network thread) -----------------------------------

    def _fail_connect(self, response: ResponseOptions, data: FailureData) -> None:
        """
        Fail the pending connect. With automatic reconnect paho's network loop
        keeps retrying, and the first later CONNACK is reported to the handler
        as an automatic reconnect. Otherwise the retry loop is stopped.
        """
        self._complete(response, False, data)
        client = self._client
        if client is not None and not self._auto_reconnect:
            client.disconnect()

    def _on_connect_timeout(self, response: ResponseOptions) -> None:
        with self._lock:
            if self._connect_response is not response:
                return
            self._connect_response = None
            self._connect_timer = None
        self.logger.warning("Connect timed out waiting for CONNACK")
        self._fail_connect(response, FailureData(return_code=-4, message="Connect timed out", timed_out=True))

    def _on_connect(self, client, userdata, connect_flags, reason_code, properties):
        code = _code_value(reason_code)
        props = from_paho_properties(properties)
        with self._lock:
            response = self._connect_response
            self._connect_response = None
            self._cancel_connect_timer()
            if code < 0x80:
                self._connected = True

        if code >= 0x80:
            self.logger.error(f"Broker refused connection: {reason_code}")
            if response is not None:
                self._fail_connect(response, FailureData(
                    return_code=code,
                    reason_code=code,
                    message=f"Connection refused: {reason_code}",
                    properties=props,
                ))
            return

        data = SuccessData(
            reason_code=code,
            properties=props,
            session_present=bool(getattr(connect_flags, "session_present", False)),
            server_uri=self._server_uri,
            mqtt_version=int(self._mqtt_version),
        )
        if response is not None:
            self._complete(response, True, data)
        elif self._handler is not None:
            self._handler.on_connected("automatic reconnect", data)

    def _on_connect_fail(self, client, userdata):
        with self._lock:
            response = self._connect_response
            self._connect_response = None
            if response is not None:
                self._cancel_connect_timer()
        if response is not None:
            self._fail_connect(response, FailureData(return_code=-3, message="Unable to connect to server"))
        else:
            self.logger.debug("Reconnect attempt failed")

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        code = _code_value(reason_code)
        with self._lock:
            was_connected = self._connected
            self._connected = False
            user_disconnect = self._disconnect_response is not None

        if user_disconnect:
            self._finish_disconnect(code)
            return

        with self._lock:
            self._drop_non_replayable()

        handler = self._handler
        if handler is None:
            return
        if getattr(disconnect_flags, "is_disconnect_packet_from_server", False):
            handler.on_disconnected(code, from_paho_properties(properties))
        if was_connected:
            handler.on_connection_lost(str(reason_code), self._auto_reconnect)

    def _on_message(self, client, userdata, message):
        handler = self._handler
        if handler is None:
            return
        msg = Message(
            topic=message.topic,
            payload=message.payload,
            qos=message.qos,
            retained=bool(message.retain),
            duplicate=bool(message.dup),
            properties=from_paho_properties(getattr(message, "properties", None)),
        )
        handler.on_message(msg)

    def _on_publish(self, client, userdata, mid, reason_code, properties):
        code = _code_value(reason_code)
        props = from_paho_properties(properties)
        if code >= 0x80:
            data = FailureData(message_id=mid, return_code=code, reason_code=code,
                               message=str(reason_code), properties=props)
            success = False
        else:
            data = SuccessData(message_id=mid, reason_code=code, properties=props)
            success = True
        response = self._claim(mid, success, data)
        if response is not None:
            self._complete(response, success, data)

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties):
        data = SuccessData(
            message_id=mid,
            reason_codes=[_code_value(rc) for rc in reason_code_list],
            properties=from_paho_properties(properties),
        )
        response = self._claim(mid, True, data)
        if response is not None:
            self._complete(response, True, data)

    def _on_unsubscribe(self, client, userdata, mid, reason_code_list, properties):
        codes = [_code_value(rc) for rc in reason_code_list or []]
        props = from_paho_properties(properties)
        failed = [c for c in codes if c >= 0x80]
        if codes and len(failed) == len(codes):
            data = FailureData(message_id=mid, return_code=failed[0], reason_code=failed[0],
                               reason_codes=codes, message="Unsubscribe refused by broker", properties=props)
            success = False
        else:
            data = SuccessData(message_id=mid, reason_codes=codes, properties=props)
            success = True
        response = self._claim(mid, success, data)
        if response is not None:
            self._complete(response, success, data)


__all__ = ["PahoEngine", "to_paho_properties", "from_paho_properties", "build_ssl_context"]
