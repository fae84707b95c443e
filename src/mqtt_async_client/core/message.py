"""
MQTT Message model.

A ``Message`` is the immutable record of an application message: topic, payload
bytes, QoS, the retained and duplicate flags, and MQTT v5 properties. The same
instance is shared between the publishing path, delivery tokens, the offline
buffer and the event queue, so it is frozen once built.

Payload conversion:
    - bytes / bytearray / memoryview: stored as bytes
    - str: UTF-8 encoded
    - dict / list: JSON-encoded with orjson
    - None: empty payload

Example:
    >>> msg = Message(topic="data/rand", payload={"x": 42}, qos=1)
    >>> msg.payload
    b'{"x":42}'
    >>> msg.payload_json()
    {'x': 42}
"""
from typing import Any, ClassVar

import orjson
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .properties import Properties


def encode_payload(payload: Any) -> bytes:
    """Convert a user payload to bytes."""
    if payload is None:
        return b""
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, (bytearray, memoryview)):
        return bytes(payload)
    if isinstance(payload, str):
        return payload.encode("utf-8")
    if isinstance(payload, (dict, list)):
        return orjson.dumps(payload)
    if isinstance(payload, (int, float)) and not isinstance(payload, bool):
        return str(payload).encode("utf-8")
    raise TypeError(f"Unsupported payload type: {type(payload).__name__}")


class Message(BaseModel):
    """
    Immutable MQTT application message.

    Attributes:
        topic: Topic the message is published to / arrived on
        payload: Raw payload bytes
        qos: Quality of service (0, 1 or 2)
        retained: Retain flag
        duplicate: DUP flag (set on redelivery)
        properties: MQTT v5 properties. Copied on construction and shared by
            every holder of the message afterwards, so treat it as read-only;
            use get_properties() for a copy that may be modified
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    DEFAULT_QOS: ClassVar[int] = 0
    DEFAULT_RETAINED: ClassVar[bool] = False

    topic: str = ""
    payload: bytes = b""
    qos: int = Field(default=0, ge=0, le=2)
    retained: bool = False
    duplicate: bool = False
    properties: Properties = Field(default_factory=Properties)

    @field_validator("payload", mode="before")
    @classmethod
    def _encode_payload(cls, value: Any) -> bytes:
        return encode_payload(value)

    @field_validator("properties", mode="before")
    @classmethod
    def _copy_properties(cls, value: Any) -> Properties:
        if value is None:
            return Properties()
        return Properties(value)

    def get_properties(self) -> Properties:
        """Return a mutable copy of the message properties."""
        return self.properties.copy()

    def to_string(self, errors: str = "replace") -> str:
        """Decode the payload as UTF-8."""
        return self.payload.decode("utf-8", errors=errors)

    def payload_json(self) -> Any:
        """Decode the payload as JSON."""
        return orjson.loads(self.payload)

    def with_duplicate(self, duplicate: bool = True) -> "Message":
        """Return a copy with the DUP flag set."""
        return self.model_copy(update={"duplicate": duplicate})

    def __str__(self):
        return self.to_string()


__all__ = ["Message", "encode_payload"]
