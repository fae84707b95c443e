from typing import Optional


class MqttException(Exception):
    """
    Base for all client errors. Carries:
      - detail: human-readable description
      - return_code: client/engine level error code (negative for local errors)
      - reason_code: MQTT v5 reason code reported by the broker, if any
      - topic: the topic or filter involved, if any
      - client_id: the client that raised it
    """
    default_code: Optional[int] = None

    def __init__(
        self,
        detail: Optional[str] = None,
        *,
        return_code: Optional[int] = None,
        reason_code: Optional[int] = None,
        topic: Optional[str] = None,
        client_id: Optional[str] = None,
    ):
        # pick the explicit return_code or fall back to subclass default
        self.return_code = return_code if return_code is not None else self.default_code
        self.reason_code = reason_code
        self.detail = detail
        self.topic = topic
        self.client_id = client_id

        parts = [f"code={self.return_code}"]
        if reason_code is not None:
            parts.append(f"reason_code={reason_code:#04x}")
        if topic:
            parts.append(f"topic={topic!r}")
        if client_id:
            parts.append(f"client_id={client_id!r}")

        super().__init__(f"{detail!r} {self.__class__.__name__}: " + ", ".join(parts))

    def __repr__(self):
        return (
            f"{self.__class__.__name__}("
            f"detail={self.detail!r}, "
            f"return_code={self.return_code!r}, "
            f"reason_code={self.reason_code!r}, "
            f"topic={self.topic!r}, "
            f"client_id={self.client_id!r}"
            f")"
        )


class ProtocolError(MqttException):
    """The broker answered with a failure reason code."""

    default_code = -1


class TransportError(MqttException):
    """Socket, TLS or connection level failure."""

    default_code = -3


class OperationTimeout(MqttException, TimeoutError):
    """An operation did not complete in time."""

    default_code = -4


class PersistenceError(MqttException):
    """The persistence store failed or the key is missing."""

    default_code = -2


class ArgumentError(MqttException, ValueError):
    """Invalid QoS, empty topic, wildcard in a publish topic and the like."""

    default_code = -5


class StateError(MqttException):
    """The operation is not valid in the client's current state."""

    default_code = -6


class AlreadyConnected(StateError):
    """connect() was called while the client was not disconnected."""

    default_code = -7


class QueueClosed(MqttException):
    """The event queue is closed (and, for reads, empty)."""

    default_code = -8


class MessageDropped(MqttException):
    """A buffered outbound message was discarded before being sent."""

    default_code = -9


class ClientDestroyed(MqttException):
    """The client was closed while the operation was still pending."""

    default_code = -10


__all__ = [
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
]
