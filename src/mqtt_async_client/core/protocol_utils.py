"""
Protocol Utilities for argument validation and time handling.

This module collects small helpers shared by the options, message, token and
client modules:

Functions:
    - validate_qos(): Check a QoS level is 0, 1 or 2
    - validate_topic_name(): Check a publish topic (non-empty, no wildcards)
    - validate_topic_filter(): Check a subscription filter ('#' must be terminal)
    - to_timeout(): Convert a relative duration to seconds
    - deadline_to_timeout(): Convert an absolute deadline to seconds from now
    - parse_server_uri(): Split a server URI into transport, host and port

Example:
    >>> parse_server_uri("mqtts://broker.example.com")
    ServerURI(scheme='mqtts', host='broker.example.com', port=8883, path='', transport='tcp', use_tls=True)
"""
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from urllib.parse import urlsplit

from .exceptions import ArgumentError

QOS_LEVELS = (0, 1, 2)

_DEFAULT_PORTS = {
    "mqtt": 1883,
    "tcp": 1883,
    "mqtts": 8883,
    "ssl": 8883,
    "ws": 80,
    "wss": 443,
}
_TLS_SCHEMES = {"mqtts", "ssl", "wss"}
_WS_SCHEMES = {"ws", "wss"}


def validate_qos(qos: int) -> int:
    """Return ``qos`` if it is a valid QoS level, else raise ArgumentError."""
    if isinstance(qos, bool) or not isinstance(qos, int) or qos not in QOS_LEVELS:
        raise ArgumentError(f"Invalid QoS: {qos!r}. Must be one of {QOS_LEVELS}")
    return qos


def validate_topic_name(topic: str) -> str:
    """Validate a topic used for publishing."""
    if not isinstance(topic, str) or not topic:
        raise ArgumentError("Topic must be a non-empty string")
    if "+" in topic or "#" in topic:
        raise ArgumentError("Wildcards are not allowed in a publish topic", topic=topic)
    if "\x00" in topic:
        raise ArgumentError("Topic must not contain NUL characters", topic=topic)
    return topic


def validate_topic_filter(topic_filter: str) -> str:
    """Validate a subscription topic filter."""
    if not isinstance(topic_filter, str) or not topic_filter:
        raise ArgumentError("Topic filter must be a non-empty string")
    levels = topic_filter.split("/")
    for i, level in enumerate(levels):
        if "#" in level and (level != "#" or i != len(levels) - 1):
            raise ArgumentError("'#' must occupy a whole, final level", topic=topic_filter)
        if "+" in level and level != "+":
            raise ArgumentError("'+' must occupy a whole level", topic=topic_filter)
    return topic_filter


def to_timeout(timeout: "float | int | timedelta | None") -> float | None:
    """Convert a relative duration (seconds or timedelta) to seconds, clamped at zero."""
    if timeout is None:
        return None
    if isinstance(timeout, timedelta):
        timeout = timeout.total_seconds()
    return max(0.0, float(timeout))


def deadline_to_timeout(deadline: "float | datetime") -> float:
    """
    Convert an absolute deadline into seconds remaining.

    Args:
        deadline: Either a ``time.monotonic()`` value or a ``datetime``
                  (naive values are taken as local wall-clock time)

    Returns:
        Seconds until the deadline, never negative
    """
    if isinstance(deadline, datetime):
        now = datetime.now(deadline.tzinfo) if deadline.tzinfo else datetime.now()
        return max(0.0, (deadline - now).total_seconds())
    return max(0.0, float(deadline) - time.monotonic())


@dataclass(frozen=True)
class ServerURI:
    scheme: str
    host: str
    port: int
    path: str = ""
    transport: str = "tcp"
    use_tls: bool = False


def parse_server_uri(uri: str) -> ServerURI:
    """
    Parse an MQTT server URI.

    Supported schemes: mqtt, tcp, mqtts, ssl, ws, wss and unix. A URI without a
    scheme is treated as ``mqtt://``.

    Raises:
        ArgumentError: If the URI is empty or uses an unknown scheme
    """
    if not uri:
        raise ArgumentError("Server URI must not be empty")
    if "://" not in uri:
        uri = f"mqtt://{uri}"

    parts = urlsplit(uri)
    scheme = parts.scheme.lower()

    if scheme == "unix":
        path = parts.netloc + parts.path
        return ServerURI(scheme=scheme, host=path, port=0, path=path, transport="unix")

    if scheme not in _DEFAULT_PORTS:
        raise ArgumentError(f"Unsupported server URI scheme: '{scheme}'")
    if not parts.hostname:
        raise ArgumentError(f"Server URI has no host: '{uri}'")

    try:
        port = parts.port or _DEFAULT_PORTS[scheme]
    except ValueError:
        raise ArgumentError(f"Invalid port in server URI: '{uri}'")
    return ServerURI(
        scheme=scheme,
        host=parts.hostname,
        port=port,
        path=parts.path or ("/mqtt" if scheme in _WS_SCHEMES else ""),
        transport="websockets" if scheme in _WS_SCHEMES else "tcp",
        use_tls=scheme in _TLS_SCHEMES,
    )
