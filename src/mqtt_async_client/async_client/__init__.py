"""
Async MQTT client implementation on top of paho-mqtt.
"""
from .client import AsyncClient
from .callback import ActionListener, ActionListenerProtocol, Callback, CallbackDispatcher
from .engine import EngineHandler, ProtocolEngine
from .offline_buffer import OfflineBuffer, BufferedMessage
from .paho_engine import PahoEngine, build_ssl_context, from_paho_properties, to_paho_properties

__all__ = [
    # Client
    "AsyncClient",
    # Callbacks
    "ActionListener",
    "ActionListenerProtocol",
    "Callback",
    "CallbackDispatcher",
    # Engine
    "EngineHandler",
    "ProtocolEngine",
    "PahoEngine",
    "build_ssl_context",
    "from_paho_properties",
    "to_paho_properties",
    # Buffering
    "OfflineBuffer",
    "BufferedMessage",
]
