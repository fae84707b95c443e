"""
MQTT v5 Properties.

Properties are typed metadata attached to most MQTT v5 packets. Each entry is
identified by a one-byte property identifier and carries a value whose wire type
is fixed by that identifier:

    - BYTE: unsigned 8-bit integer
    - TWO_BYTE_INT: unsigned 16-bit integer
    - FOUR_BYTE_INT: unsigned 32-bit integer
    - VARIABLE_BYTE_INT: 0..268,435,455
    - BINARY_DATA: bytes
    - UTF8_STRING: str
    - UTF8_STRING_PAIR: (name, value) tuple of str

The ``Properties`` container keeps entries in insertion order. An identifier may
appear more than once only where MQTT allows it (User Property and Subscription
Identifier); adding a second entry for any other identifier replaces the first.

Example:
    >>> props = Properties({PropertyCode.SESSION_EXPIRY_INTERVAL: 604800})
    >>> props.add(PropertyCode.USER_PROPERTY, ("site", "lab-3"))
    >>> props.add(PropertyCode.USER_PROPERTY, ("rack", "12"))
    >>> props.get_all(PropertyCode.USER_PROPERTY)
    [('site', 'lab-3'), ('rack', '12')]
"""
import base64
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Iterable, Iterator

from .exceptions import ArgumentError


class PropertyType(Enum):
    """Wire type of a property value."""
    BYTE = "byte"
    TWO_BYTE_INT = "two_byte_int"
    FOUR_BYTE_INT = "four_byte_int"
    VARIABLE_BYTE_INT = "variable_byte_int"
    BINARY_DATA = "binary_data"
    UTF8_STRING = "utf8_string"
    UTF8_STRING_PAIR = "utf8_string_pair"


class PropertyCode(IntEnum):
    """MQTT v5 property identifiers."""
    PAYLOAD_FORMAT_INDICATOR = 1
    MESSAGE_EXPIRY_INTERVAL = 2
    CONTENT_TYPE = 3
    RESPONSE_TOPIC = 8
    CORRELATION_DATA = 9
    SUBSCRIPTION_IDENTIFIER = 11
    SESSION_EXPIRY_INTERVAL = 17
    ASSIGNED_CLIENT_IDENTIFIER = 18
    SERVER_KEEP_ALIVE = 19
    AUTHENTICATION_METHOD = 21
    AUTHENTICATION_DATA = 22
    REQUEST_PROBLEM_INFORMATION = 23
    WILL_DELAY_INTERVAL = 24
    REQUEST_RESPONSE_INFORMATION = 25
    RESPONSE_INFORMATION = 26
    SERVER_REFERENCE = 28
    REASON_STRING = 31
    RECEIVE_MAXIMUM = 33
    TOPIC_ALIAS_MAXIMUM = 34
    TOPIC_ALIAS = 35
    MAXIMUM_QOS = 36
    RETAIN_AVAILABLE = 37
    USER_PROPERTY = 38
    MAXIMUM_PACKET_SIZE = 39
    WILDCARD_SUBSCRIPTION_AVAILABLE = 40
    SUBSCRIPTION_IDENTIFIERS_AVAILABLE = 41
    SHARED_SUBSCRIPTION_AVAILABLE = 42

    @property
    def type(self) -> PropertyType:
        return _PROPERTY_INFO[self][0]

    @property
    def display_name(self) -> str:
        return _PROPERTY_INFO[self][1]

    @property
    def allows_multiple(self) -> bool:
        return self in (PropertyCode.USER_PROPERTY, PropertyCode.SUBSCRIPTION_IDENTIFIER)

    def __str__(self):
        return self.display_name


_PROPERTY_INFO: dict[PropertyCode, tuple[PropertyType, str]] = {
    PropertyCode.PAYLOAD_FORMAT_INDICATOR: (PropertyType.BYTE, "Payload Format Indicator"),
    PropertyCode.MESSAGE_EXPIRY_INTERVAL: (PropertyType.FOUR_BYTE_INT, "Message Expiry Interval"),
    PropertyCode.CONTENT_TYPE: (PropertyType.UTF8_STRING, "Content Type"),
    PropertyCode.RESPONSE_TOPIC: (PropertyType.UTF8_STRING, "Response Topic"),
    PropertyCode.CORRELATION_DATA: (PropertyType.BINARY_DATA, "Correlation Data"),
    PropertyCode.SUBSCRIPTION_IDENTIFIER: (PropertyType.VARIABLE_BYTE_INT, "Subscription Identifier"),
    PropertyCode.SESSION_EXPIRY_INTERVAL: (PropertyType.FOUR_BYTE_INT, "Session Expiry Interval"),
    PropertyCode.ASSIGNED_CLIENT_IDENTIFIER: (PropertyType.UTF8_STRING, "Assigned Client Identifier"),
    PropertyCode.SERVER_KEEP_ALIVE: (PropertyType.TWO_BYTE_INT, "Server Keep Alive"),
    PropertyCode.AUTHENTICATION_METHOD: (PropertyType.UTF8_STRING, "Authentication Method"),
    PropertyCode.AUTHENTICATION_DATA: (PropertyType.BINARY_DATA, "Authentication Data"),
    PropertyCode.REQUEST_PROBLEM_INFORMATION: (PropertyType.BYTE, "Request Problem Information"),
    PropertyCode.WILL_DELAY_INTERVAL: (PropertyType.FOUR_BYTE_INT, "Will Delay Interval"),
    PropertyCode.REQUEST_RESPONSE_INFORMATION: (PropertyType.BYTE, "Request Response Information"),
    PropertyCode.RESPONSE_INFORMATION: (PropertyType.UTF8_STRING, "Response Information"),
    PropertyCode.SERVER_REFERENCE: (PropertyType.UTF8_STRING, "Server Reference"),
    PropertyCode.REASON_STRING: (PropertyType.UTF8_STRING, "Reason String"),
    PropertyCode.RECEIVE_MAXIMUM: (PropertyType.TWO_BYTE_INT, "Receive Maximum"),
    PropertyCode.TOPIC_ALIAS_MAXIMUM: (PropertyType.TWO_BYTE_INT, "Topic Alias Maximum"),
    PropertyCode.TOPIC_ALIAS: (PropertyType.TWO_BYTE_INT, "Topic Alias"),
    PropertyCode.MAXIMUM_QOS: (PropertyType.BYTE, "Maximum QoS"),
    PropertyCode.RETAIN_AVAILABLE: (PropertyType.BYTE, "Retain Available"),
    PropertyCode.USER_PROPERTY: (PropertyType.UTF8_STRING_PAIR, "User Property"),
    PropertyCode.MAXIMUM_PACKET_SIZE: (PropertyType.FOUR_BYTE_INT, "Maximum Packet Size"),
    PropertyCode.WILDCARD_SUBSCRIPTION_AVAILABLE: (PropertyType.BYTE, "Wildcard Subscription Available"),
    PropertyCode.SUBSCRIPTION_IDENTIFIERS_AVAILABLE: (PropertyType.BYTE, "Subscription Identifier Available"),
    PropertyCode.SHARED_SUBSCRIPTION_AVAILABLE: (PropertyType.BYTE, "Shared Subscription Available"),
}

_INT_LIMITS = {
    PropertyType.BYTE: 0xFF,
    PropertyType.TWO_BYTE_INT: 0xFFFF,
    PropertyType.FOUR_BYTE_INT: 0xFFFFFFFF,
    PropertyType.VARIABLE_BYTE_INT: 268_435_455,
}


def _coerce_value(code: PropertyCode, value: Any) -> Any:
    ptype = code.type

    if ptype in _INT_LIMITS:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ArgumentError(f"Property '{code}' requires an integer, got {type(value).__name__}")
        if not 0 <= value <= _INT_LIMITS[ptype]:
            raise ArgumentError(f"Property '{code}' value {value} out of range 0..{_INT_LIMITS[ptype]}")
        return value

    if ptype is PropertyType.BINARY_DATA:
        if isinstance(value, str):
            return value.encode("utf-8")
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value)
        raise ArgumentError(f"Property '{code}' requires bytes, got {type(value).__name__}")

    if ptype is PropertyType.UTF8_STRING:
        if not isinstance(value, str):
            raise ArgumentError(f"Property '{code}' requires a string, got {type(value).__name__}")
        return value

    # UTF8_STRING_PAIR
    if (
        not isinstance(value, (tuple, list))
        or len(value) != 2
        or not all(isinstance(v, str) for v in value)
    ):
        raise ArgumentError(f"Property '{code}' requires a (name, value) pair of strings")
    return (value[0], value[1])


@dataclass(frozen=True)
class Property:
    """A single typed MQTT v5 property."""
    code: PropertyCode
    value: Any

    def __post_init__(self):
        try:
            code = PropertyCode(self.code)
        except ValueError:
            raise ArgumentError(f"Unknown property identifier: {self.code}")
        object.__setattr__(self, "code", code)
        object.__setattr__(self, "value", _coerce_value(code, self.value))

    @property
    def type(self) -> PropertyType:
        return self.code.type


class Properties:
    """Ordered collection of MQTT v5 properties."""

    def __init__(self, props: "Iterable[Property | tuple[int, Any]] | dict[int, Any] | None" = None):
        self._props: list[Property] = []
        if props is None:
            return
        if isinstance(props, Properties):
            self._props = list(props._props)
            return
        items = props.items() if isinstance(props, dict) else props
        for item in items:
            if isinstance(item, Property):
                self.add(item)
            else:
                code, value = item
                self.add(code, value)

    def add(self, code: "PropertyCode | Property | int", value: Any = None) -> "Properties":
        """Add a property, replacing any existing entry unless the identifier allows repeats."""
        prop = code if isinstance(code, Property) else Property(code, value)
        if not prop.code.allows_multiple:
            self._props = [p for p in self._props if p.code != prop.code]
        self._props.append(prop)
        return self

    def get(self, code: "PropertyCode | int", default: Any = None) -> Any:
        """Return the value of the first entry with ``code``, or ``default``."""
        for prop in self._props:
            if prop.code == code:
                return prop.value
        return default

    def get_all(self, code: "PropertyCode | int") -> list[Any]:
        return [p.value for p in self._props if p.code == code]

    def count(self, code: "PropertyCode | int") -> int:
        return sum(1 for p in self._props if p.code == code)

    def contains(self, code: "PropertyCode | int") -> bool:
        return any(p.code == code for p in self._props)

    def remove(self, code: "PropertyCode | int") -> None:
        """Remove every entry with ``code``."""
        self._props = [p for p in self._props if p.code != code]

    def clear(self) -> None:
        self._props.clear()

    def empty(self) -> bool:
        return not self._props

    def copy(self) -> "Properties":
        return Properties(self)

    def to_list(self) -> list[list[Any]]:
        """
        Serialize to a JSON-friendly list of ``[code, value]`` pairs.

        Binary values are base64-encoded into ``{"b64": ...}`` and string pairs
        become two-element lists.
        """
        out = []
        for prop in self._props:
            value = prop.value
            if prop.type is PropertyType.BINARY_DATA:
                value = {"b64": base64.b64encode(value).decode("ascii")}
            elif prop.type is PropertyType.UTF8_STRING_PAIR:
                value = list(value)
            out.append([int(prop.code), value])
        return out

    @classmethod
    def from_list(cls, items: Iterable[list[Any]]) -> "Properties":
        """Inverse of ``to_list()``."""
        props = cls()
        for code, value in items:
            if isinstance(value, dict) and "b64" in value:
                value = base64.b64decode(value["b64"])
            props.add(code, value)
        return props

    def __getitem__(self, code: "PropertyCode | int") -> Any:
        for prop in self._props:
            if prop.code == code:
                return prop.value
        raise KeyError(code)

    def __contains__(self, code: object) -> bool:
        return any(p.code == code for p in self._props)

    def __iter__(self) -> Iterator[Property]:
        return iter(list(self._props))

    def __len__(self) -> int:
        return len(self._props)

    def __bool__(self) -> bool:
        return bool(self._props)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Properties):
            return NotImplemented
        return self._props == other._props

    def __repr__(self):
        inner = ", ".join(f"{p.code.name}={p.value!r}" for p in self._props)
        return f"Properties({inner})"


__all__ = ["PropertyType", "PropertyCode", "Property", "Properties"]
