"""
Outbound message buffer and its persistence.

``OfflineBuffer`` keeps publishes accepted while the client is not connected,
in submission order, and writes outbound messages to the client's persistence
store so they survive a crash:

    - QoS 1/2 messages are persisted from submission until their delivery
      token resolves (buffered or in flight)
    - QoS 0 messages are persisted only while buffered, and only with
      ``persist_qos0``

Persisted entry format:
    key   = "m-<sequence, 10 digits>"
    value = orjson header {"topic", "qos", "retained", "properties"} + b"\\n" + payload

Keys sort in submission order, so ``restore()`` returns messages in the order
they were originally published.
"""
import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

import orjson

from ..core.exceptions import PersistenceError
from ..core.message import Message
from ..core.persistence import ClientPersistence
from ..core.properties import Properties

if TYPE_CHECKING:
    from ..core.token import DeliveryToken

logger = logging.getLogger(__name__)

KEY_PREFIX = "m-"


def make_key(seq: int) -> str:
    return f"{KEY_PREFIX}{seq:010d}"


def encode_entry(msg: Message) -> list[bytes]:
    header = orjson.dumps({
        "topic": msg.topic,
        "qos": msg.qos,
        "retained": msg.retained,
        "properties": msg.properties.to_list(),
    })
    return [header, b"\n", msg.payload]


def decode_entry(data: bytes) -> Message:
    header, sep, payload = data.partition(b"\n")
    if not sep:
        raise PersistenceError("Corrupt persisted message: missing header separator")
    try:
        fields = orjson.loads(header)
        return Message(
            topic=fields["topic"],
            payload=payload,
            qos=fields.get("qos", 0),
            retained=fields.get("retained", False),
            properties=Properties.from_list(fields.get("properties", [])),
        )
    except (orjson.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        raise PersistenceError(f"Corrupt persisted message: {e}")


@dataclass
class BufferedMessage:
    token: "DeliveryToken"
    message: Message
    key: str | None = None


class OfflineBuffer:
    """
    Ordered, bounded store of publishes waiting for a connection.

    Args:
        persistence: An opened ClientPersistence
        capacity: Maximum buffered messages (0 disables buffering)
        delete_oldest: At capacity, drop the oldest (True) or refuse the new message (False)
        persist_qos0: Persist buffered QoS 0 messages
    """

    def __init__(
        self,
        persistence: ClientPersistence,
        capacity: int = 0,
        delete_oldest: bool = True,
        persist_qos0: bool = False,
        client_logger: logging.LoggerAdapter | None = None,
    ):
        self._persistence = persistence
        self._capacity = capacity
        self._delete_oldest = delete_oldest
        self._persist_qos0 = persist_qos0
        self._items: list[BufferedMessage] = []
        self._seq = 0
        self._lock = threading.Lock()
        self.logger = client_logger or logger

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def enabled(self) -> bool:
        return self._capacity > 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    # --- persistence -------------------------------------------------------

    def persist(self, msg: Message, buffered: bool = False) -> str | None:
        """
        Write ``msg`` to persistence if its QoS calls for it.

        Returns:
            The persistence key, or None if the message is not persisted
        """
        if msg.qos == 0 and not (buffered and self._persist_qos0):
            return None
        with self._lock:
            self._seq += 1
            key = make_key(self._seq)
            self._persistence.put(key, encode_entry(msg))
        return key

    def forget(self, key: str | None) -> None:
        """Remove a persisted entry. Errors are logged, not raised."""
        if key is None:
            return
        with self._lock:
            try:
                self._persistence.remove(key)
            except PersistenceError as e:
                self.logger.warning(f"Failed to remove persisted message '{key}': {e}")

    def restore(self) -> list[tuple[str, Message]]:
        """
        Load every persisted outbound message, oldest first.

        Corrupt entries are logged and removed.
        """
        restored = []
        with self._lock:
            keys = sorted(k for k in self._persistence.keys() if k.startswith(KEY_PREFIX))
            for key in keys:
                try:
                    msg = decode_entry(self._persistence.get(key))
                except PersistenceError as e:
                    self.logger.warning(f"Discarding persisted message '{key}': {e}")
                    self._persistence.remove(key)
                    continue
                restored.append((key, msg))
                try:
                    self._seq = max(self._seq, int(key[len(KEY_PREFIX):]))
                except ValueError:
                    pass
        return restored

    # --- buffering ---------------------------------------------------------

    def push(self, entry: BufferedMessage, bounded: bool = True) -> tuple[bool, BufferedMessage | None]:
        """
        Append ``entry``. With ``bounded=False`` the capacity is ignored.

        Returns:
            ``(accepted, dropped)``: ``accepted`` is False if the buffer is full
            and refuses new messages; ``dropped`` is the oldest entry evicted to
            make room, if any. The caller fails the refused or dropped token.
        """
        with self._lock:
            if not bounded or len(self._items) < self._capacity:
                self._items.append(entry)
                return True, None
            if not self._delete_oldest:
                return False, None
            dropped = self._items.pop(0) if self._items else None
            self._items.append(entry)
            return True, dropped

    def push_front(self, entries: list[BufferedMessage]) -> None:
        """Put entries back at the head, in order, ignoring the capacity."""
        with self._lock:
            self._items[:0] = entries

    def pop(self) -> BufferedMessage | None:
        with self._lock:
            return self._items.pop(0) if self._items else None

    def drain(self) -> list[BufferedMessage]:
        with self._lock:
            items, self._items = self._items, []
            return items

    def tokens(self) -> list["DeliveryToken"]:
        with self._lock:
            return [entry.token for entry in self._items]


__all__ = ["OfflineBuffer", "BufferedMessage", "encode_entry", "decode_entry", "make_key"]
