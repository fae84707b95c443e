"""
Client events delivered through the consumer queue.

In consumer mode every incoming message and every connection state change is
placed on a single queue as an ``Event``, so an application can run one loop
that sees messages interleaved with CONNECTED / CONNECTION_LOST / DISCONNECTED
notifications in the order they happened.

Example:
    >>> client.start_consuming()
    >>> while True:
    ...     event = client.consume_event()
    ...     if event.is_message():
    ...         print(event.get_message().to_string())
    ...     elif event.is_connection_lost():
    ...         print("lost:", event.cause)
"""
from dataclasses import dataclass, field
from enum import Enum

from .message import Message
from .properties import Properties


class EventType(Enum):
    MESSAGE = "message"
    CONNECTED = "connected"
    CONNECTION_LOST = "connection_lost"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class ConnectedEvent:
    cause: str = ""


@dataclass(frozen=True)
class ConnectionLostEvent:
    cause: str = ""


@dataclass(frozen=True)
class DisconnectedEvent:
    reason_code: int = 0
    properties: Properties = field(default_factory=Properties)


class Event:
    """
    Tagged union of a message or a connection state change.

    A default-constructed ``Event()`` is a MESSAGE event with no message.
    """

    __slots__ = ("_type", "_message", "_data")

    def __init__(
        self,
        event_type: EventType = EventType.MESSAGE,
        message: Message | None = None,
        data: "ConnectedEvent | ConnectionLostEvent | DisconnectedEvent | None" = None,
    ):
        self._type = event_type
        self._message = message
        self._data = data

    @classmethod
    def message(cls, msg: Message | None) -> "Event":
        return cls(EventType.MESSAGE, message=msg)

    @classmethod
    def connected(cls, cause: str = "") -> "Event":
        return cls(EventType.CONNECTED, data=ConnectedEvent(cause))

    @classmethod
    def connection_lost(cls, cause: str = "") -> "Event":
        return cls(EventType.CONNECTION_LOST, data=ConnectionLostEvent(cause))

    @classmethod
    def disconnected(cls, reason_code: int = 0, properties: Properties | None = None) -> "Event":
        return cls(EventType.DISCONNECTED, data=DisconnectedEvent(reason_code, properties or Properties()))

    @property
    def type(self) -> EventType:
        return self._type

    def is_message(self) -> bool:
        return self._type is EventType.MESSAGE

    def is_connected(self) -> bool:
        return self._type is EventType.CONNECTED

    def is_connection_lost(self) -> bool:
        return self._type is EventType.CONNECTION_LOST

    def is_disconnected(self) -> bool:
        return self._type is EventType.DISCONNECTED

    def get_message(self) -> Message | None:
        """
        Return the message carried by a MESSAGE event (possibly None).

        Raises:
            TypeError: If this is not a MESSAGE event
        """
        if self._type is not EventType.MESSAGE:
            raise TypeError(f"Event is not a message event ({self._type.value})")
        return self._message

    @property
    def data(self) -> "ConnectedEvent | ConnectionLostEvent | DisconnectedEvent | None":
        return self._data

    @property
    def cause(self) -> str:
        """Cause string of a CONNECTED or CONNECTION_LOST event, '' otherwise."""
        return getattr(self._data, "cause", "")

    @property
    def reason_code(self) -> int:
        return getattr(self._data, "reason_code", 0)

    @property
    def properties(self) -> Properties:
        if isinstance(self._data, DisconnectedEvent):
            return self._data.properties
        if self._message is not None:
            return self._message.properties
        return Properties()

    def __eq__(self, other):
        if not isinstance(other, Event):
            return NotImplemented
        return (self._type, self._message, self._data) == (other._type, other._message, other._data)

    def __repr__(self):
        if self._type is EventType.MESSAGE:
            topic = self._message.topic if self._message is not None else None
            return f"Event(type=message, topic={topic!r})"
        return f"Event(type={self._type.value}, data={self._data!r})"


__all__ = ["EventType", "Event", "ConnectedEvent", "ConnectionLostEvent", "DisconnectedEvent"]
