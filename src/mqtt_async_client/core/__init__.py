"""
Core components: value types, options, tokens, events, persistence and errors.
"""
from .base import AsyncClientBase, MessageLogger, ClientFormatter, generate_unique_id
from .models import ClientState, MQTTBrokerConfig
from .message import Message, encode_payload
from .topic import Topic, TopicFilter
from .properties import Property, Properties, PropertyCode, PropertyType
from .reason_codes import ReasonCode, reason_code_to_string
from .options import (
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
)
from .persistence import ClientPersistence, MemoryPersistence, FilePersistence
from .thread_queue import ThreadQueue
from .token import (
    Token,
    DeliveryToken,
    TokenType,
    TokenState,
    ConnectResponse,
    SubscribeResponse,
    UnsubscribeResponse,
    SuccessData,
    FailureData,
)
from .event import Event, EventType, ConnectedEvent, ConnectionLostEvent, DisconnectedEvent
from .exceptions import (
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
from . import protocol_utils

__all__ = [
    # Base classes
    "AsyncClientBase",
    "MessageLogger",
    "ClientFormatter",
    "generate_unique_id",
    # Models
    "ClientState",
    "MQTTBrokerConfig",
    "Message",
    "encode_payload",
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
    # Persistence and queues
    "ClientPersistence",
    "MemoryPersistence",
    "FilePersistence",
    "ThreadQueue",
    # Tokens and events
    "Token",
    "DeliveryToken",
    "TokenType",
    "TokenState",
    "ConnectResponse",
    "SubscribeResponse",
    "UnsubscribeResponse",
    "SuccessData",
    "FailureData",
    "Event",
    "EventType",
    "ConnectedEvent",
    "ConnectionLostEvent",
    "DisconnectedEvent",
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
    # Utilities
    "protocol_utils",
]
