"""
Tokens: one-shot futures for MQTT operations.

Every operation submitted to the client (connect, disconnect, publish, subscribe,
unsubscribe) returns a ``Token``. The token starts PENDING and is resolved exactly
once, to SUCCEEDED or FAILED, by the protocol engine's completion callback (or by
the client itself when the operation is rejected, dropped, or abandoned).

Waiting:
    - ``wait()`` blocks until resolution and re-raises the stored error
    - ``wait_for(timeout)`` / ``try_wait_until(deadline)`` return False on timeout
    - ``await token`` suspends an asyncio coroutine without blocking its loop

Timeouts never cancel the underlying operation; they only stop waiting.

Notification:
    An optional action listener (``on_success(token)`` / ``on_failure(token)``)
    is invoked exactly once on the thread that resolves the token, after the
    token's internal lock has been released. Listeners must not block: that
    thread is usually the protocol engine's network thread.

Example:
    >>> tok = client.connect(options)
    >>> rsp = tok.get_connect_response()   # blocks until CONNACK
    >>> if not rsp.session_present:
    ...     client.subscribe("hello", 1).wait()
"""
import asyncio
import itertools
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from .exceptions import (
    MqttException,
    OperationTimeout,
    ProtocolError,
    StateError,
    TransportError,
)
from .message import Message
from .properties import Properties
from .protocol_utils import deadline_to_timeout, to_timeout

if TYPE_CHECKING:
    from ..async_client.callback import ActionListener

logger = logging.getLogger(__name__)


class TokenType(Enum):
    CONNECT = "connect"
    SUBSCRIBE = "subscribe"
    PUBLISH = "publish"
    UNSUBSCRIBE = "unsubscribe"
    DISCONNECT = "disconnect"


class TokenState(Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class SuccessData:
    """Result handed to a token by the protocol engine on success."""
    message_id: int = 0
    reason_code: int = 0
    reason_codes: list[int] = field(default_factory=list)
    properties: Properties = field(default_factory=Properties)
    session_present: bool = False
    server_uri: str = ""
    mqtt_version: int = 0


@dataclass
class FailureData:
    """Result handed to a token by the protocol engine on failure."""
    message_id: int = 0
    return_code: int = -1
    reason_code: int = 0
    reason_codes: list[int] = field(default_factory=list)
    message: str = ""
    properties: Properties = field(default_factory=Properties)
    timed_out: bool = False

    def to_exception(self, client_id: str | None = None, topic: str | None = None) -> MqttException:
        if self.timed_out:
            return OperationTimeout(
                self.message or "Operation timed out",
                reason_code=self.reason_code or None,
                client_id=client_id,
                topic=topic,
            )
        if self.reason_code >= 0x80:
            return ProtocolError(
                self.message or "Broker rejected the operation",
                return_code=self.return_code,
                reason_code=self.reason_code,
                client_id=client_id,
                topic=topic,
            )
        return TransportError(
            self.message or "Operation failed",
            return_code=self.return_code,
            client_id=client_id,
            topic=topic,
        )


@dataclass(frozen=True)
class ConnectResponse:
    """Information returned by the broker in CONNACK."""
    server_uri: str = ""
    mqtt_version: int = 0
    session_present: bool = False
    reason_code: int = 0
    properties: Properties = field(default_factory=Properties)

    def is_session_present(self) -> bool:
        return self.session_present


@dataclass(frozen=True)
class SubscribeResponse:
    """Per-filter reason codes from SUBACK (the granted QoS for successes)."""
    reason_codes: list[int] = field(default_factory=list)
    properties: Properties = field(default_factory=Properties)

    @property
    def granted_qos(self) -> list[int]:
        return list(self.reason_codes)


@dataclass(frozen=True)
class UnsubscribeResponse:
    """Per-filter reason codes from UNSUBACK (all 0 for MQTT v3)."""
    reason_codes: list[int] = field(default_factory=list)
    properties: Properties = field(default_factory=Properties)


class Token:
    """
    One-shot future tracking a single MQTT operation.

    Attributes:
        handle: Opaque integer identifying this token to the protocol engine
    """

    _handles = itertools.count(1)

    def __init__(
        self,
        token_type: TokenType,
        client: Any = None,
        topics: list[str] | None = None,
        user_context: Any = None,
        listener: "ActionListener | None" = None,
    ):
        self.handle = next(Token._handles)
        self._type = token_type
        self._client = client
        self._topics = list(topics or [])
        self._user_context = user_context
        self._listener = listener
        self._done_callbacks: list[Callable[["Token"], None]] = []

        self._lock = threading.Lock()
        self._cond = threading.Condition(self._lock)
        self._state = TokenState.PENDING
        self._error: MqttException | None = None

        self._message_id = 0
        self._return_code = 0
        self._reason_code = 0
        self._reason_codes: list[int] = []
        self._properties = Properties()
        self._error_message = ""
        self._connect_response: ConnectResponse | None = None

    # --- observers ---------------------------------------------------------

    @property
    def state(self) -> TokenState:
        with self._lock:
            return self._state

    def is_complete(self) -> bool:
        return self.state is not TokenState.PENDING

    def get_type(self) -> TokenType:
        return self._type

    def get_client(self) -> Any:
        return self._client

    def get_topics(self) -> list[str]:
        return list(self._topics)

    def get_user_context(self) -> Any:
        return self._user_context

    def set_user_context(self, context: Any) -> None:
        self._user_context = context

    def get_message_id(self) -> int:
        return self._message_id

    def set_message_id(self, message_id: int) -> None:
        self._message_id = message_id

    def set_action_callback(self, listener: "ActionListener") -> None:
        """
        Install an action listener.

        If the token is already resolved, the listener fires immediately on the
        calling thread.
        """
        with self._lock:
            if self._state is TokenState.PENDING:
                self._listener = listener
                return
        self._notify_listener(listener)

    def get_action_callback(self) -> "ActionListener | None":
        return self._listener

    # --- waiting -----------------------------------------------------------

    def _raise_if_failed(self) -> None:
        if self._state is TokenState.FAILED and self._error is not None:
            raise self._error

    def wait(self) -> "Token":
        """Block until the token resolves. Raises the stored error on failure."""
        with self._cond:
            self._cond.wait_for(lambda: self._state is not TokenState.PENDING)
            self._raise_if_failed()
        return self

    def wait_for(self, timeout: "float | timedelta") -> bool:
        """
        Wait up to ``timeout`` for resolution.

        Returns:
            True if the token succeeded, False on timeout

        Raises:
            MqttException: The stored error if the token failed
        """
        with self._cond:
            done = self._cond.wait_for(
                lambda: self._state is not TokenState.PENDING, to_timeout(timeout)
            )
            if not done:
                return False
            self._raise_if_failed()
        return True

    def try_wait_until(self, deadline: "float | datetime") -> bool:
        return self.wait_for(deadline_to_timeout(deadline))

    def _wait_quietly(self) -> None:
        with self._cond:
            self._cond.wait_for(lambda: self._state is not TokenState.PENDING)

    def __await__(self):
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        def _wake(fut: asyncio.Future) -> None:
            if not fut.done():
                fut.set_result(None)

        self._add_done_callback(lambda _tok: loop.call_soon_threadsafe(_wake, future))
        yield from future.__await__()
        with self._lock:
            self._raise_if_failed()
        return self

    # --- results -----------------------------------------------------------

    def get_return_code(self) -> int:
        self._wait_quietly()
        return self._return_code

    def get_reason_code(self) -> int:
        self._wait_quietly()
        return self._reason_code

    def get_reason_codes(self) -> list[int]:
        self._wait_quietly()
        return list(self._reason_codes)

    def get_error_message(self) -> str:
        self._wait_quietly()
        return self._error_message

    def get_error(self) -> MqttException | None:
        self._wait_quietly()
        return self._error

    def get_properties(self) -> Properties:
        self._wait_quietly()
        return self._properties

    def get_connect_response(self) -> ConnectResponse:
        """Block until the connect completes and return the CONNACK details."""
        if self._type is not TokenType.CONNECT:
            raise StateError(f"Token is not a connect token ({self._type.value})")
        self.wait()
        return self._connect_response or ConnectResponse()

    def get_subscribe_response(self) -> SubscribeResponse:
        if self._type is not TokenType.SUBSCRIBE:
            raise StateError(f"Token is not a subscribe token ({self._type.value})")
        self.wait()
        return SubscribeResponse(list(self._reason_codes), self._properties)

    def get_unsubscribe_response(self) -> UnsubscribeResponse:
        if self._type is not TokenType.UNSUBSCRIBE:
            raise StateError(f"Token is not an unsubscribe token ({self._type.value})")
        self.wait()
        return UnsubscribeResponse(list(self._reason_codes), self._properties)

    # --- resolution (engine / client side) ---------------------------------

    def on_success(self, data: SuccessData) -> None:
        """Completion entry point for the protocol engine (success). Ignored once resolved."""
        if self.is_complete():
            return

        # A SUBACK in which every filter was refused is a failure
        if (
            self._type is TokenType.SUBSCRIBE
            and data.reason_codes
            and all(code >= 0x80 for code in data.reason_codes)
        ):
            self.on_failure(FailureData(
                message_id=data.message_id,
                reason_code=data.reason_codes[0],
                reason_codes=list(data.reason_codes),
                message="Subscription refused by broker",
                properties=data.properties,
            ))
            return

        def _store() -> None:
            self._message_id = data.message_id or self._message_id
            self._properties = data.properties
            self._reason_codes = list(data.reason_codes)
            self._reason_code = data.reason_code or (data.reason_codes[0] if data.reason_codes else 0)
            if self._type is TokenType.CONNECT:
                self._connect_response = ConnectResponse(
                    server_uri=data.server_uri,
                    mqtt_version=data.mqtt_version,
                    session_present=data.session_present,
                    reason_code=data.reason_code,
                    properties=data.properties,
                )

        self._notify_client("_on_token_success", data)
        self._complete(None, _store)

    def on_failure(self, data: FailureData) -> None:
        """Completion entry point for the protocol engine (failure). Ignored once resolved."""
        if self.is_complete():
            return

        def _store() -> None:
            self._message_id = data.message_id or self._message_id
            self._properties = data.properties
            self._reason_code = data.reason_code
            self._return_code = data.return_code
            if data.reason_codes:
                self._reason_codes = list(data.reason_codes)
            self._error_message = data.message

        client_id = getattr(self._client, "client_id", None)
        error = data.to_exception(client_id=client_id, topic=self._topics[0] if self._topics else None)
        self._notify_client("_on_token_failure", data)
        self._complete(error, _store)

    def _notify_client(self, hook: str, data: Any) -> None:
        callback = getattr(self._client, hook, None)
        if callback is None:
            return
        try:
            callback(self, data)
        except Exception as e:
            logger.error(f"Error in client completion hook for {self!r}: {e}", exc_info=True)

    def _resolve_failure(self, error: MqttException) -> bool:
        """Fail the token locally (rejection, drop, drain). Returns False if already resolved."""
        def _store() -> None:
            self._return_code = error.return_code if error.return_code is not None else -1
            self._reason_code = error.reason_code or 0
            self._error_message = error.detail or str(error)

        return self._complete(error, _store)

    def _resolve_success(self) -> bool:
        """Succeed the token locally."""
        return self._complete(None)

    def _complete(self, error: MqttException | None, store: Callable[[], None] | None = None) -> bool:
        """Resolve once. ``store`` records the results, under the lock, only if still pending."""
        with self._cond:
            if self._state is not TokenState.PENDING:
                return False
            if store is not None:
                store()
            self._error = error
            self._state = TokenState.FAILED if error is not None else TokenState.SUCCEEDED
            if error is not None and not self._error_message:
                self._error_message = error.detail or str(error)
            self._cond.notify_all()
            listener = self._listener
            callbacks = list(self._done_callbacks)
            self._done_callbacks.clear()

        if listener is not None:
            self._notify_listener(listener)
        for callback in callbacks:
            try:
                callback(self)
            except Exception as e:
                logger.error(f"Error in token completion callback: {e}", exc_info=True)
        return True

    def _notify_listener(self, listener: "ActionListener") -> None:
        try:
            if self._state is TokenState.SUCCEEDED:
                listener.on_success(self)
            else:
                listener.on_failure(self)
        except Exception as e:
            logger.error(f"Action listener raised for {self!r}: {e}", exc_info=True)

    def _add_done_callback(self, callback: Callable[["Token"], None]) -> None:
        with self._lock:
            if self._state is TokenState.PENDING:
                self._done_callbacks.append(callback)
                return
        callback(self)

    def __repr__(self):
        return (
            f"{self.__class__.__name__}(handle={self.handle}, type={self._type.value}, "
            f"state={self._state.value}, message_id={self._message_id})"
        )


class DeliveryToken(Token):
    """
    Token for a single outbound publish.

    Resolves when the broker has acknowledged the message per its QoS: on
    network write for QoS 0, PUBACK for QoS 1, PUBCOMP for QoS 2.
    """

    def __init__(
        self,
        client: Any = None,
        message: Message | None = None,
        user_context: Any = None,
        listener: "ActionListener | None" = None,
    ):
        super().__init__(
            TokenType.PUBLISH,
            client=client,
            topics=[message.topic] if message is not None else None,
            user_context=user_context,
            listener=listener,
        )
        self._message = message

    def get_message(self) -> Message | None:
        return self._message

    def set_message(self, message: Message) -> None:
        self._message = message
        self._topics = [message.topic]


__all__ = [
    "TokenType",
    "TokenState",
    "SuccessData",
    "FailureData",
    "ConnectResponse",
    "SubscribeResponse",
    "UnsubscribeResponse",
    "Token",
    "DeliveryToken",
]
