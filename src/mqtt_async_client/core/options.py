"""
Option models and fluent builders.

All connection-level options are frozen Pydantic models, validated on
construction. Each has a fluent builder whose ``finalize()`` returns the model;
builders turn Pydantic validation errors into ``ArgumentError`` so callers see
the client's own error taxonomy.

Key Models:
    - WillOptions: Last Will and Testament message
    - SslOptions: TLS settings
    - ConnectOptions: Everything sent in CONNECT plus reconnect policy
    - SubscribeOptions: MQTT v5 per-filter subscription flags
    - DisconnectOptions: Reason code, properties and timeout for DISCONNECT
    - CreateOptions: Client construction settings (buffering, persistence)
    - ResponseOptions: Per-operation completion routing handed to the engine

Example:
    >>> opts = (
    ...     ConnectOptionsBuilder.v5()
    ...     .keep_alive_interval(20)
    ...     .clean_start(False)
    ...     .session_expiry_interval(3600)
    ...     .automatic_reconnect(1, 30)
    ...     .finalize()
    ... )
"""
from datetime import timedelta
from enum import IntEnum
from typing import TYPE_CHECKING, Any, Callable, ClassVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
    field_validator,
    model_validator,
)

from .exceptions import ArgumentError
from .message import Message, encode_payload
from .properties import Properties, PropertyCode
from .protocol_utils import parse_server_uri, to_timeout, validate_topic_name

if TYPE_CHECKING:
    from .token import FailureData, SuccessData, Token


class MQTTVersion(IntEnum):
    DEFAULT = 0
    V3_1 = 3
    V3_1_1 = 4
    V5 = 5


class RetainHandling(IntEnum):
    SEND_RETAINED_ON_SUBSCRIBE = 0
    SEND_RETAINED_ON_NEW = 1
    DONT_SEND_RETAINED = 2


def _seconds(value: Any) -> Any:
    if isinstance(value, timedelta):
        return to_timeout(value)
    return value


def _properties(value: Any) -> Properties:
    if value is None:
        return Properties()
    return Properties(value)


def _build(model: type[BaseModel], fields: dict[str, Any]) -> Any:
    try:
        return model(**fields)
    except ValidationError as e:
        raise ArgumentError(f"Invalid {model.__name__}: {e}")


class _FrozenOptions(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, extra="forbid")


# ============================================================================
# WILL / SSL
# ============================================================================


class WillOptions(_FrozenOptions):
    """
    Last Will and Testament, published by the broker if the client vanishes.

    Attributes:
        topic: Will topic (no wildcards)
        payload: Will payload
        qos: Will QoS
        retained: Will retain flag
        properties: MQTT v5 will properties (e.g. Will Delay Interval)
    """
    topic: str
    payload: bytes = b""
    qos: int = Field(default=0, ge=0, le=2)
    retained: bool = False
    properties: Properties = Field(default_factory=Properties)

    @field_validator("topic")
    @classmethod
    def _check_topic(cls, value: str) -> str:
        return validate_topic_name(value)

    @field_validator("payload", mode="before")
    @classmethod
    def _encode_payload(cls, value: Any) -> bytes:
        return encode_payload(value)

    @field_validator("properties", mode="before")
    @classmethod
    def _copy_properties(cls, value: Any) -> Properties:
        return _properties(value)

    @classmethod
    def from_message(cls, msg: Message) -> "WillOptions":
        return _build(cls, {
            "topic": msg.topic,
            "payload": msg.payload,
            "qos": msg.qos,
            "retained": msg.retained,
            "properties": msg.properties,
        })

    def to_message(self) -> Message:
        return Message(
            topic=self.topic,
            payload=self.payload,
            qos=self.qos,
            retained=self.retained,
            properties=self.properties,
        )


class SslOptions(_FrozenOptions):
    """
    TLS settings.

    Attributes:
        trust_store: CA certificate file (PEM)
        ca_path: Directory of CA certificates
        key_store: Client certificate file (PEM)
        private_key: Client private key file (defaults to key_store)
        private_key_password: Passphrase for the private key
        enabled_cipher_suites: OpenSSL cipher string
        enable_server_cert_auth: Verify the broker's certificate chain
        verify: Verify the broker's hostname against its certificate
        ssl_version: ``ssl.PROTOCOL_*`` constant, or None for the default
        alpn_protos: ALPN protocol list
    """
    trust_store: str | None = None
    ca_path: str | None = None
    key_store: str | None = None
    private_key: str | None = None
    private_key_password: SecretStr | None = None
    enabled_cipher_suites: str | None = None
    enable_server_cert_auth: bool = True
    verify: bool = True
    ssl_version: int | None = None
    alpn_protos: list[str] = Field(default_factory=list)


class SslOptionsBuilder:
    def __init__(self):
        self._fields: dict[str, Any] = {}

    def trust_store(self, path: str) -> "SslOptionsBuilder":
        self._fields["trust_store"] = path
        return self

    def ca_path(self, path: str) -> "SslOptionsBuilder":
        self._fields["ca_path"] = path
        return self

    def key_store(self, path: str) -> "SslOptionsBuilder":
        self._fields["key_store"] = path
        return self

    def private_key(self, path: str) -> "SslOptionsBuilder":
        self._fields["private_key"] = path
        return self

    def private_key_password(self, password: str | SecretStr) -> "SslOptionsBuilder":
        self._fields["private_key_password"] = password
        return self

    def enabled_cipher_suites(self, ciphers: str) -> "SslOptionsBuilder":
        self._fields["enabled_cipher_suites"] = ciphers
        return self

    def enable_server_cert_auth(self, on: bool = True) -> "SslOptionsBuilder":
        self._fields["enable_server_cert_auth"] = on
        return self

    def verify(self, on: bool = True) -> "SslOptionsBuilder":
        self._fields["verify"] = on
        return self

    def ssl_version(self, version: int) -> "SslOptionsBuilder":
        self._fields["ssl_version"] = version
        return self

    def alpn_protos(self, protos: list[str]) -> "SslOptionsBuilder":
        self._fields["alpn_protos"] = list(protos)
        return self

    def finalize(self) -> SslOptions:
        return _build(SslOptions, self._fields)


# ============================================================================
# CONNECT
# ============================================================================


class ConnectOptions(_FrozenOptions):
    """
    Options for connect().

    ``clean_session`` applies to MQTT v3.x, ``clean_start`` and ``properties``
    to MQTT v5. Durations are in seconds.
    """
    DEFAULT_KEEP_ALIVE: ClassVar[float] = 60
    DEFAULT_CONNECT_TIMEOUT: ClassVar[float] = 30

    mqtt_version: MQTTVersion = MQTTVersion.V3_1_1
    keep_alive_interval: float = Field(default=60, ge=0)
    connect_timeout: float = Field(default=30, gt=0)
    clean_session: bool = True
    clean_start: bool = False
    properties: Properties = Field(default_factory=Properties)
    will: WillOptions | None = None
    ssl: SslOptions | None = None
    user_name: str | None = None
    password: SecretStr | None = None
    servers: list[str] = Field(default_factory=list)
    max_inflight: int = Field(default=20, gt=0)
    automatic_reconnect: bool = False
    min_retry_interval: float = Field(default=1, gt=0)
    max_retry_interval: float = Field(default=60, gt=0)

    @field_validator("keep_alive_interval", "connect_timeout", "min_retry_interval", "max_retry_interval", mode="before")
    @classmethod
    def _durations(cls, value: Any) -> Any:
        return _seconds(value)

    @field_validator("properties", mode="before")
    @classmethod
    def _copy_properties(cls, value: Any) -> Properties:
        return _properties(value)

    @field_validator("servers")
    @classmethod
    def _check_servers(cls, value: list[str]) -> list[str]:
        for uri in value:
            parse_server_uri(uri)
        return value

    @model_validator(mode="after")
    def _check_version_fields(self) -> "ConnectOptions":
        if self.min_retry_interval > self.max_retry_interval:
            raise ValueError("min_retry_interval must not exceed max_retry_interval")
        if self.mqtt_version != MQTTVersion.V5 and self.properties:
            raise ValueError("Connect properties require MQTT v5")
        return self

    @property
    def is_v5(self) -> bool:
        return self.mqtt_version == MQTTVersion.V5

    @property
    def session_expiry_interval(self) -> int:
        return self.properties.get(PropertyCode.SESSION_EXPIRY_INTERVAL, 0)

    def password_str(self) -> str | None:
        return self.password.get_secret_value() if self.password is not None else None


class ConnectOptionsBuilder:
    """
    Fluent builder for ConnectOptions.

    Use ``v3()`` (the default) or ``v5()``; setting a field that only exists in
    the other protocol version raises ArgumentError.
    """

    def __init__(self, mqtt_version: MQTTVersion | int = MQTTVersion.V3_1_1):
        self._fields: dict[str, Any] = {"mqtt_version": MQTTVersion(mqtt_version)}
        self._props = Properties()

    @classmethod
    def v3(cls) -> "ConnectOptionsBuilder":
        return cls(MQTTVersion.V3_1_1)

    @classmethod
    def v5(cls) -> "ConnectOptionsBuilder":
        builder = cls(MQTTVersion.V5)
        builder._fields["clean_start"] = True
        builder._fields["clean_session"] = False
        return builder

    def _is_v5(self) -> bool:
        return self._fields["mqtt_version"] == MQTTVersion.V5

    def _require_v5(self, what: str) -> None:
        if not self._is_v5():
            raise ArgumentError(f"'{what}' is only valid for MQTT v5 connections")

    def mqtt_version(self, version: MQTTVersion | int) -> "ConnectOptionsBuilder":
        self._fields["mqtt_version"] = MQTTVersion(version)
        return self

    def keep_alive_interval(self, interval: "float | timedelta") -> "ConnectOptionsBuilder":
        self._fields["keep_alive_interval"] = interval
        return self

    def connect_timeout(self, timeout: "float | timedelta") -> "ConnectOptionsBuilder":
        self._fields["connect_timeout"] = timeout
        return self

    def clean_session(self, clean: bool = True) -> "ConnectOptionsBuilder":
        if self._is_v5():
            raise ArgumentError("'clean_session' is only valid for MQTT v3 connections; use clean_start")
        self._fields["clean_session"] = clean
        return self

    def clean_start(self, clean: bool = True) -> "ConnectOptionsBuilder":
        self._require_v5("clean_start")
        self._fields["clean_start"] = clean
        return self

    def properties(self, props: "Properties | dict") -> "ConnectOptionsBuilder":
        self._require_v5("properties")
        self._props = Properties(props)
        return self

    def session_expiry_interval(self, interval: "float | timedelta") -> "ConnectOptionsBuilder":
        self._require_v5("session_expiry_interval")
        self._props.add(PropertyCode.SESSION_EXPIRY_INTERVAL, int(to_timeout(interval)))
        return self

    def automatic_reconnect(
        self,
        min_retry_interval: "float | timedelta" = 1,
        max_retry_interval: "float | timedelta" = 60,
    ) -> "ConnectOptionsBuilder":
        self._fields["automatic_reconnect"] = True
        self._fields["min_retry_interval"] = min_retry_interval
        self._fields["max_retry_interval"] = max_retry_interval
        return self

    def will(self, will: "WillOptions | Message") -> "ConnectOptionsBuilder":
        self._fields["will"] = WillOptions.from_message(will) if isinstance(will, Message) else will
        return self

    def ssl(self, ssl: SslOptions) -> "ConnectOptionsBuilder":
        self._fields["ssl"] = ssl
        return self

    def user_name(self, user_name: str) -> "ConnectOptionsBuilder":
        self._fields["user_name"] = user_name
        return self

    def password(self, password: str | SecretStr) -> "ConnectOptionsBuilder":
        self._fields["password"] = password
        return self

    def servers(self, servers: list[str]) -> "ConnectOptionsBuilder":
        self._fields["servers"] = list(servers)
        return self

    def max_inflight(self, n: int) -> "ConnectOptionsBuilder":
        self._fields["max_inflight"] = n
        return self

    def finalize(self) -> ConnectOptions:
        fields = dict(self._fields)
        if self._props:
            fields["properties"] = self._props
        return _build(ConnectOptions, fields)


# ============================================================================
# SUBSCRIBE / DISCONNECT
# ============================================================================


class SubscribeOptions(_FrozenOptions):
    """MQTT v5 subscription flags for a single filter."""
    NO_LOCAL: ClassVar[bool] = True
    LOCAL: ClassVar[bool] = False
    RETAIN_AS_PUBLISHED: ClassVar[bool] = True
    RETAIN_AS_RECEIVED: ClassVar[bool] = False

    no_local: bool = False
    retain_as_published: bool = False
    retain_handling: RetainHandling = RetainHandling.SEND_RETAINED_ON_SUBSCRIBE


class DisconnectOptions(_FrozenOptions):
    """
    Options for disconnect().

    Attributes:
        timeout: Seconds to wait for in-flight work before closing
        reason_code: MQTT v5 DISCONNECT reason code
        properties: MQTT v5 DISCONNECT properties
        publish_will_message: Ask the broker to publish the will anyway (v5)
    """
    timeout: float = Field(default=0, ge=0)
    reason_code: int = Field(default=0, ge=0, le=0xFF)
    properties: Properties = Field(default_factory=Properties)
    publish_will_message: bool = False

    @field_validator("timeout", mode="before")
    @classmethod
    def _duration(cls, value: Any) -> Any:
        return _seconds(value)

    @field_validator("properties", mode="before")
    @classmethod
    def _copy_properties(cls, value: Any) -> Properties:
        return _properties(value)

    @property
    def effective_reason_code(self) -> int:
        """Reason code to send; 0x04 (disconnect with will) when requested."""
        if self.publish_will_message and self.reason_code == 0:
            return 0x04
        return self.reason_code


class DisconnectOptionsBuilder:
    def __init__(self):
        self._fields: dict[str, Any] = {}

    def timeout(self, timeout: "float | timedelta") -> "DisconnectOptionsBuilder":
        self._fields["timeout"] = timeout
        return self

    def reason_code(self, code: int) -> "DisconnectOptionsBuilder":
        self._fields["reason_code"] = int(code)
        return self

    def properties(self, props: "Properties | dict") -> "DisconnectOptionsBuilder":
        self._fields["properties"] = props
        return self

    def publish_will_message(self, on: bool = True) -> "DisconnectOptionsBuilder":
        self._fields["publish_will_message"] = on
        return self

    def finalize(self) -> DisconnectOptions:
        return _build(DisconnectOptions, self._fields)


# ============================================================================
# CREATE
# ============================================================================


class CreateOptions(_FrozenOptions):
    """
    Client construction settings.

    Attributes:
        mqtt_version: Protocol version used for operations before connect()
        max_buffered_messages: Offline buffer capacity; 0 disables buffering
        delete_oldest_messages: At capacity, drop the oldest (True) or refuse the new one (False)
        restore_messages: Reload persisted outbound messages on construction
        persist_qos0: Persist buffered QoS 0 messages too
        auto_resubscribe: Resubscribe remembered filters when a session is not resumed
        event_queue_capacity: Bound for the consumer queue, None for unlimited
    """
    mqtt_version: MQTTVersion = MQTTVersion.V3_1_1
    max_buffered_messages: int = Field(default=0, ge=0)
    delete_oldest_messages: bool = True
    restore_messages: bool = True
    persist_qos0: bool = False
    auto_resubscribe: bool = True
    event_queue_capacity: int | None = Field(default=None, gt=0)

    @property
    def send_while_disconnected(self) -> bool:
        return self.max_buffered_messages > 0


class CreateOptionsBuilder:
    def __init__(self):
        self._fields: dict[str, Any] = {}

    def mqtt_version(self, version: MQTTVersion | int) -> "CreateOptionsBuilder":
        self._fields["mqtt_version"] = MQTTVersion(version)
        return self

    def max_buffered_messages(self, n: int) -> "CreateOptionsBuilder":
        self._fields["max_buffered_messages"] = n
        return self

    def send_while_disconnected(self, on: bool = True, max_buffered: int = 100) -> "CreateOptionsBuilder":
        self._fields["max_buffered_messages"] = max_buffered if on else 0
        return self

    def delete_oldest_messages(self, on: bool = True) -> "CreateOptionsBuilder":
        self._fields["delete_oldest_messages"] = on
        return self

    def restore_messages(self, on: bool = True) -> "CreateOptionsBuilder":
        self._fields["restore_messages"] = on
        return self

    def persist_qos0(self, on: bool = True) -> "CreateOptionsBuilder":
        self._fields["persist_qos0"] = on
        return self

    def auto_resubscribe(self, on: bool = True) -> "CreateOptionsBuilder":
        self._fields["auto_resubscribe"] = on
        return self

    def event_queue_capacity(self, capacity: int | None) -> "CreateOptionsBuilder":
        self._fields["event_queue_capacity"] = capacity
        return self

    def finalize(self) -> CreateOptions:
        return _build(CreateOptions, self._fields)


# ============================================================================
# RESPONSE
# ============================================================================


class ResponseOptions:
    """
    Per-operation completion routing handed to the protocol engine.

    Holds the token (the opaque context for the operation) and exposes the
    completion callbacks the engine must call. For MQTT v3 the ``on_success`` /
    ``on_failure`` pair is set and the v5 pair is None; for MQTT v5 it is the
    other way round.
    """

    def __init__(
        self,
        token: "Token | None" = None,
        mqtt_version: MQTTVersion | int = MQTTVersion.V3_1_1,
        properties: "Properties | None" = None,
        subscribe_options: "list[SubscribeOptions] | None" = None,
    ):
        self._token = token
        self._properties = _properties(properties)
        self._subscribe_options = list(subscribe_options or [])
        self.on_success: Callable[["SuccessData"], None] | None = None
        self.on_failure: Callable[["FailureData"], None] | None = None
        self.on_success5: Callable[["SuccessData"], None] | None = None
        self.on_failure5: Callable[["FailureData"], None] | None = None
        self.set_mqtt_version(mqtt_version)

    @property
    def token(self) -> "Token | None":
        return self._token

    def set_token(self, token: "Token") -> None:
        self._token = token

    @property
    def mqtt_version(self) -> MQTTVersion:
        return self._mqtt_version

    def set_mqtt_version(self, mqtt_version: MQTTVersion | int) -> None:
        self._mqtt_version = MQTTVersion(mqtt_version)
        if self._mqtt_version == MQTTVersion.V5:
            self.on_success, self.on_failure = None, None
            self.on_success5, self.on_failure5 = self._success, self._failure
        else:
            self.on_success, self.on_failure = self._success, self._failure
            self.on_success5, self.on_failure5 = None, None

    @property
    def properties(self) -> Properties:
        return self._properties

    def set_properties(self, props: "Properties | dict") -> None:
        self._properties = Properties(props)

    @property
    def subscribe_many_options(self) -> list[SubscribeOptions]:
        return list(self._subscribe_options)

    def set_subscribe_many_options(self, options: list[SubscribeOptions]) -> None:
        self._subscribe_options = list(options)

    def complete_success(self, data: "SuccessData") -> None:
        """Call whichever success callback is active for this version."""
        (self.on_success or self.on_success5)(data)

    def complete_failure(self, data: "FailureData") -> None:
        (self.on_failure or self.on_failure5)(data)

    def _success(self, data: "SuccessData") -> None:
        if self._token is not None:
            self._token.on_success(data)

    def _failure(self, data: "FailureData") -> None:
        if self._token is not None:
            self._token.on_failure(data)


class ResponseOptionsBuilder:
    def __init__(self, mqtt_version: MQTTVersion | int = MQTTVersion.V3_1_1):
        self._opts = ResponseOptions(mqtt_version=mqtt_version)

    def mqtt_version(self, version: MQTTVersion | int) -> "ResponseOptionsBuilder":
        self._opts.set_mqtt_version(version)
        return self

    def token(self, token: "Token") -> "ResponseOptionsBuilder":
        self._opts.set_token(token)
        return self

    def properties(self, props: "Properties | dict") -> "ResponseOptionsBuilder":
        self._opts.set_properties(props)
        return self

    def subscribe_opts(self, options: list[SubscribeOptions]) -> "ResponseOptionsBuilder":
        self._opts.set_subscribe_many_options(options)
        return self

    def finalize(self) -> ResponseOptions:
        return self._opts


__all__ = [
    "MQTTVersion",
    "RetainHandling",
    "WillOptions",
    "SslOptions",
    "SslOptionsBuilder",
    "ConnectOptions",
    "ConnectOptionsBuilder",
    "SubscribeOptions",
    "DisconnectOptions",
    "DisconnectOptionsBuilder",
    "CreateOptions",
    "CreateOptionsBuilder",
    "ResponseOptions",
    "ResponseOptionsBuilder",
]
