"""
Abstract Base Class for the MQTT client.

This module provides the abstract base class (AsyncClientBase) that defines the
public interface of the token-based client, together with the logging helpers
shared by every module in the package.

Key Components:
    - AsyncClientBase: Abstract base class defining the client interface
    - MessageLogger: Logger adapter with contextual logging support
    - ClientFormatter: Log formatter with extra field support
    - generate_unique_id(): Client identifier generation

The base class handles:
    - Client identity (client ID, server URI)
    - Logging infrastructure with contextual information
    - Context manager support (``with client: ...`` closes the client)
    - Abstract method definitions for the concrete client

This design follows the Template Method pattern: the base class defines the
structure and common operations, the concrete client provides the protocol
behaviour on top of a protocol engine.
"""
import logging
import uuid
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .options import ConnectOptions, DisconnectOptions, SubscribeOptions
    from .properties import Properties
    from .token import DeliveryToken, Token


logger = logging.getLogger(__name__)


class ClientFormatter(logging.Formatter):
    """
    Log formatter that appends contextual metadata to log messages.

    Extra fields passed through a ``MessageLogger`` (client_id, topic, token...)
    are appended as key=value pairs.

    Example:
        >>> handler.setFormatter(ClientFormatter("%(levelname)s %(message)s"))
        >>> log.info("Connected", extra={"client_id": "sensor-01"})
        # Output: "INFO Connected client_id=sensor-01"
    """

    _STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)
        extras = {
            k: v for k, v in record.__dict__.items()
            if k not in self._STANDARD_ATTRS and not k.startswith("_")
        }
        if extras:
            extra_info = " ".join(f"{k}={v}" for k, v in extras.items())
            return f"{formatted} {extra_info}"
        return formatted


class MessageLogger(logging.LoggerAdapter):
    """
    Logger adapter that provides contextual logging with flexible extra field management.

    Attributes:
        logger: The underlying Logger instance
        extra: Base context dictionary attached to all log records
        merge_extra: If True, merge call-time extras with base extras; if False, replace
        exclude_extras: List of field names to exclude from the extra context

    Example:
        >>> log = MessageLogger(
        ...     logging.getLogger(__name__),
        ...     extra={"client_id": "device-001"},
        ...     merge_extra=True
        ... )
        >>> log.info("Subscribed", extra={"topic": "sensors/#"})
        # Logs with both client_id and topic in the context
    """

    def __init__(
        self,
        logger: logging.Logger,
        extra: dict[str, Any] | None = None,
        merge_extra: bool = False,
        exclude_extras: list[str] | None = None
    ):
        super().__init__(logger, extra or {})
        self.logger = logger
        self.extra = extra or {}
        self.merge_extra = merge_extra
        self.exclude_extras = exclude_extras or []

    def process(self, msg, kwargs):
        """Inject the base context into ``kwargs['extra']``, merging or replacing per-call extras."""
        if self.merge_extra and "extra" in kwargs:
            kwargs["extra"] = {**self.extra, **kwargs["extra"]}
        else:
            kwargs["extra"] = dict(self.extra)

        if self.exclude_extras:
            for key in self.exclude_extras:
                kwargs["extra"].pop(key, None)

        return msg, kwargs


def generate_unique_id(prefix: str | None = "mqtt_client") -> str:
    """
    Generate a globally unique identifier with an optional prefix.

    MQTT v3.1 brokers limit client identifiers to 23 characters, so use a short
    prefix (or None) when targeting them.

    Example:
        >>> generate_unique_id("device")
        "device-a7f3c8d9-1234-5678-9abc-def012345678"
        >>> generate_unique_id(None)
        "a7f3c8d9-1234-5678-9abc-def012345678"
    """
    if prefix is None:
        return str(uuid.uuid4())
    return f"{prefix}-{uuid.uuid4()}"


class AsyncClientBase(ABC):
    """
    Abstract base class for the token-based MQTT client.

    Every operation returns immediately with a token; results arrive when the
    protocol engine completes the operation.
    """

    def __init__(
        self,
        server_uri: str,
        client_id: str = "",
        logger: logging.LoggerAdapter | None = None,
    ):
        self._server_uri = server_uri
        self._client_id = client_id

        self.logger = logger or MessageLogger(
            logging.getLogger(__name__),
            extra={"client_id": client_id},
            merge_extra=True
        )

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def server_uri(self) -> str:
        return self._server_uri

    def get_client_id(self) -> str:
        return self._client_id

    def get_server_uri(self) -> str:
        return self._server_uri

    # Abstract methods that subclasses must implement

    @abstractmethod
    def connect(self, options: "ConnectOptions | None" = None, user_context: Any = None, listener: Any = None) -> "Token":
        """
        Start connecting to the broker.

        Returns:
            A CONNECT token resolved on CONNACK (or connection failure)
        """

    @abstractmethod
    def disconnect(self, options: "DisconnectOptions | float | None" = None, user_context: Any = None, listener: Any = None) -> "Token":
        """Start disconnecting. Returns a DISCONNECT token."""

    @abstractmethod
    def publish(self, topic: Any, payload: Any = None, qos: int = 0, retained: bool = False,
                properties: "Properties | None" = None, user_context: Any = None, listener: Any = None) -> "DeliveryToken":
        """Publish a message. Returns a delivery token."""

    @abstractmethod
    def subscribe(self, topic_filter: Any, qos: Any = 0, options: "SubscribeOptions | list | None" = None,
                  properties: "Properties | None" = None, user_context: Any = None, listener: Any = None) -> "Token":
        """Subscribe to one or more filters. Returns a SUBSCRIBE token."""

    @abstractmethod
    def unsubscribe(self, topic_filter: Any, properties: "Properties | None" = None,
                    user_context: Any = None, listener: Any = None) -> "Token":
        """Unsubscribe from one or more filters. Returns an UNSUBSCRIBE token."""

    @abstractmethod
    def close(self, timeout: float = 10) -> None:
        """Disconnect if needed and release every resource."""

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Check if client is currently connected to broker."""

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()


__all__ = ["AsyncClientBase", "MessageLogger", "ClientFormatter", "generate_unique_id"]
