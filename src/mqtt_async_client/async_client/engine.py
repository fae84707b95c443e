"""
Protocol engine contract.

The client never touches sockets or the MQTT wire format. It hands each
operation to a ``ProtocolEngine`` together with a ``ResponseOptions`` and the
engine reports the outcome by calling the response's completion callbacks
(``on_success``/``on_failure`` for MQTT v3, ``on_success5``/``on_failure5``
for MQTT v5) from its own thread.

Engine obligations:
    - Every accepted operation completes exactly once, except QoS 1/2 publishes
      in flight when the connection drops: those are replayed after reconnect
      and complete then
    - A submission that cannot be accepted raises ``MqttException`` synchronously
      and never completes
    - Connection-level events go to the installed ``EngineHandler``
    - Completions and handler calls may happen on any thread, including while
      the submitting call is still running

``PahoEngine`` (paho_engine.py) is the production implementation.
"""
from abc import ABC, abstractmethod
from typing import Protocol, runtime_checkable

from ..core.message import Message
from ..core.options import ConnectOptions, DisconnectOptions, ResponseOptions
from ..core.properties import Properties
from ..core.token import FailureData, SuccessData


@runtime_checkable
class EngineHandler(Protocol):
    """Receiver for engine events that are not tied to a submitted operation."""

    def on_connected(self, cause: str, data: SuccessData) -> None:
        """The engine reconnected on its own (automatic reconnect)."""
        ...

    def on_connection_lost(self, cause: str, reconnecting: bool) -> None:
        """An established connection dropped without a user disconnect."""
        ...

    def on_message(self, msg: Message) -> None:
        ...

    def on_disconnected(self, reason_code: int, properties: Properties) -> None:
        """The broker sent DISCONNECT (MQTT v5)."""
        ...


class ProtocolEngine(ABC):
    """Abstract transport + codec behind the client."""

    @abstractmethod
    def set_handler(self, handler: EngineHandler | None) -> None:
        ...

    @abstractmethod
    def connect(self, options: ConnectOptions, response: ResponseOptions) -> None:
        """Start connecting. Completes ``response`` on CONNACK or failure."""

    @abstractmethod
    def disconnect(self, options: DisconnectOptions, response: ResponseOptions) -> None:
        """
        Start disconnecting. Also stops any reconnect loop in progress.

        Completes ``response`` once the connection is closed.
        """

    @abstractmethod
    def publish(self, msg: Message, response: ResponseOptions) -> int:
        """Submit a publish and return its packet identifier (0 for QoS 0)."""

    @abstractmethod
    def subscribe(self, filters: list[str], qos: list[int], response: ResponseOptions) -> int:
        """Submit a SUBSCRIBE; per-filter v5 options come from ``response``."""

    @abstractmethod
    def unsubscribe(self, filters: list[str], response: ResponseOptions) -> int:
        ...

    @abstractmethod
    def is_connected(self) -> bool:
        ...

    @abstractmethod
    def close(self) -> None:
        """Stop the network thread and release the transport."""


__all__ = ["EngineHandler", "ProtocolEngine", "SuccessData", "FailureData"]
