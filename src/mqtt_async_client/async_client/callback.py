"""
User callbacks for the async client.

Two kinds of user code receive notifications:

    - Action listeners, attached to a single token: ``on_success(token)`` or
      ``on_failure(token)`` fires once when that operation completes
    - Client callbacks, for everything not tied to an operation: connection
      established, connection lost, message arrived, delivery complete, and
      broker-initiated disconnect

``CallbackDispatcher`` multiplexes an installed ``Callback`` object with plain
per-event functions. It never lets a user exception escape into the network
thread: failures are logged and dispatch continues.

All notifications run on the protocol engine's network thread. Keep them
short; hand long work to another thread or to the consumer queue.
"""
import logging
import threading
from typing import TYPE_CHECKING, Any, Callable, Protocol, runtime_checkable

from ..core.message import Message
from ..core.properties import Properties

if TYPE_CHECKING:
    from ..core.token import DeliveryToken, Token

logger = logging.getLogger(__name__)

ConnectionHandler = Callable[[str], None]
MessageHandler = Callable[[Message], None]
DisconnectedHandler = Callable[[int, Properties], None]


# === Action Listener ===

@runtime_checkable
class ActionListenerProtocol(Protocol):
    def on_success(self, token: "Token") -> None:
        ...

    def on_failure(self, token: "Token") -> None:
        ...


class ActionListener:
    """
    Base class for per-operation listeners.

    Override ``on_success`` / ``on_failure``, or pass functions to the
    constructor.
    """

    def __init__(
        self,
        on_success: Callable[["Token"], None] | None = None,
        on_failure: Callable[["Token"], None] | None = None,
    ):
        self._on_success = on_success
        self._on_failure = on_failure

    def on_success(self, token: "Token") -> None:
        if self._on_success is not None:
            self._on_success(token)

    def on_failure(self, token: "Token") -> None:
        if self._on_failure is not None:
            self._on_failure(token)


# === Client Callback ===

class Callback:
    """Base class for client-level callbacks. Every method is a no-op by default."""

    def connected(self, cause: str) -> None:
        pass

    def connection_lost(self, cause: str) -> None:
        pass

    def message_arrived(self, msg: Message) -> None:
        pass

    def delivery_complete(self, token: "DeliveryToken") -> None:
        pass

    def disconnected(self, reason_code: int, properties: Properties) -> None:
        pass


class CallbackDispatcher:
    """
    Routes client notifications to an installed ``Callback`` and to per-event
    handler functions. Thread-safe to reconfigure while running.
    """

    def __init__(self, client_logger: logging.LoggerAdapter | None = None):
        self._lock = threading.Lock()
        self._callback: Callback | None = None
        self._connected_handler: ConnectionHandler | None = None
        self._connection_lost_handler: ConnectionHandler | None = None
        self._message_handler: MessageHandler | None = None
        self._disconnected_handler: DisconnectedHandler | None = None
        self.logger = client_logger or logger

    # --- configuration -----------------------------------------------------

    def set_callback(self, callback: Callback | None) -> None:
        with self._lock:
            self._callback = callback

    def get_callback(self) -> Callback | None:
        return self._callback

    def set_connected_handler(self, handler: ConnectionHandler | None) -> None:
        with self._lock:
            self._connected_handler = handler

    def set_connection_lost_handler(self, handler: ConnectionHandler | None) -> None:
        with self._lock:
            self._connection_lost_handler = handler

    def set_message_callback(self, handler: MessageHandler | None) -> None:
        with self._lock:
            self._message_handler = handler

    def set_disconnected_handler(self, handler: DisconnectedHandler | None) -> None:
        """Install ``handler(reason_code, properties)`` for a broker-sent DISCONNECT."""
        with self._lock:
            self._disconnected_handler = handler

    def clear(self) -> None:
        with self._lock:
            self._callback = None
            self._connected_handler = None
            self._connection_lost_handler = None
            self._message_handler = None
            self._disconnected_handler = None

    def handles_messages(self) -> bool:
        """True if something is installed to receive incoming messages."""
        with self._lock:
            return self._callback is not None or self._message_handler is not None

    # --- dispatch ----------------------------------------------------------

    def _invoke(self, what: str, func: Callable[..., Any], *args: Any) -> None:
        try:
            func(*args)
        except Exception as e:
            self.logger.error(f"User callback '{what}' raised: {e}", exc_info=True)

    def connected(self, cause: str) -> None:
        with self._lock:
            callback, handler = self._callback, self._connected_handler
        if callback is not None:
            self._invoke("connected", callback.connected, cause)
        if handler is not None:
            self._invoke("connected", handler, cause)

    def connection_lost(self, cause: str) -> None:
        with self._lock:
            callback, handler = self._callback, self._connection_lost_handler
        if callback is not None:
            self._invoke("connection_lost", callback.connection_lost, cause)
        if handler is not None:
            self._invoke("connection_lost", handler, cause)

    def message_arrived(self, msg: Message) -> bool:
        """Deliver ``msg``. Returns False if nothing was installed to take it."""
        with self._lock:
            callback, handler = self._callback, self._message_handler
        if callback is None and handler is None:
            return False
        if callback is not None:
            self._invoke("message_arrived", callback.message_arrived, msg)
        if handler is not None:
            self._invoke("message_arrived", handler, msg)
        return True

    def delivery_complete(self, token: "DeliveryToken") -> None:
        with self._lock:
            callback = self._callback
        if callback is not None:
            self._invoke("delivery_complete", callback.delivery_complete, token)

    def disconnected(self, reason_code: int, properties: Properties) -> None:
        with self._lock:
            callback, handler = self._callback, self._disconnected_handler
        if callback is not None:
            self._invoke("disconnected", callback.disconnected, reason_code, properties)
        if handler is not None:
            self._invoke("disconnected", handler, reason_code, properties)


__all__ = [
    "ActionListenerProtocol",
    "ActionListener",
    "Callback",
    "CallbackDispatcher",
]
