"""
Asynchronous MQTT v3.1.1 / v5 client with tokens, offline buffering and persistence.
"""
# Core components
from .core import (
    AsyncClientBase,
    MessageLogger,
    ClientFormatter,
    generate_unique_id,
    ClientState,
    MQTTBrokerConfig,
    Message,
    Topic,
    TopicFilter,
    Property,
    Properties,
    PropertyCode,
    PropertyType,
    ReasonCode,
    reason_code_to_string,
    MQTTVersion,
    RetainHandling,
    WillOptions,
    SslOptions,
    SslOptionsBuilder,
    ConnectOptions,
    ConnectOptionsBuilder,
    SubscribeOptions,
    DisconnectOptions,
    DisconnectOptionsBuilder,
    CreateOptions,
    CreateOptionsBuilder,
    ResponseOptions,
    ResponseOptionsBuilder,
    ClientPersistence,
    MemoryPersistence,
    FilePersistence,
    ThreadQueue,
    Token,
    DeliveryToken,
    TokenType,
    TokenState,
    ConnectResponse,
    SubscribeResponse,
    UnsubscribeResponse,
    Event,
    EventType,
    MqttException,
    ProtocolError,
    TransportError,
    OperationTimeout,
    PersistenceError,
    ArgumentError,
    StateError,
    AlreadyConnected,
    QueueClosed,
    MessageDropped,
    ClientDestroyed,
)

# Async client
from .async_client import (
    AsyncClient,
    ActionListener,
    Callback,
    EngineHandler,
    ProtocolEngine,
    PahoEngine,
)

__all__ = [
    # Core
    "AsyncClientBase",
    "MessageLogger",
    "ClientFormatter",
    "generate_unique_id",
    "ClientState",
    "MQTTBrokerConfig",
    # Values
    "Message",
    "Topic",
    "TopicFilter",
    "Property",
    "Properties",
    "PropertyCode",
    "PropertyType",
    "ReasonCode",
    "reason_code_to_string",
    # Options
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
    # Persistence
    "ClientPersistence",
    "MemoryPersistence",
    "FilePersistence",
    # Concurrency
    "ThreadQueue",
    "Token",
    "DeliveryToken",
    "TokenType",
    "TokenState",
    "ConnectResponse",
    "SubscribeResponse",
    "UnsubscribeResponse",
    "Event",
    "EventType",
    # Exceptions
    "MqttException",
    "ProtocolError",
    "TransportError",
    "OperationTimeout",
    "PersistenceError",
    "ArgumentError",
    "StateError",
    "AlreadyConnected",
    "QueueClosed",
    "MessageDropped",
    "ClientDestroyed",
    # Async client
    "AsyncClient",
    "ActionListener",
    "Callback",
    "EngineHandler",
    "ProtocolEngine",
    "PahoEngine",
]
