"""
Topic helpers.

Key Components:
    - Topic: A topic name bound to a client with a default QoS and retain flag,
      so repeated publishes to the same topic don't repeat those arguments
    - TopicFilter: A subscription filter that can be matched against topic names

Matching rules (MQTT 3.1.1 section 4.7 / MQTT 5 section 4.7):
    - '+' matches exactly one level, which may be empty
    - '#' matches the parent level and any number of child levels; it must be last
    - Topics beginning with '$' are not matched by a filter whose first level
      is a wildcard

Example:
    >>> TopicFilter("sensors/+/temp").matches("sensors/kitchen/temp")
    True
    >>> TopicFilter("#").matches("$SYS/broker/uptime")
    False
    >>> top = Topic(client, "data/rand", qos=1)
    >>> top.publish("42").wait()
"""
from typing import TYPE_CHECKING, Any

from paho.mqtt.client import topic_matches_sub

from .exceptions import ArgumentError
from .protocol_utils import validate_qos, validate_topic_filter, validate_topic_name

if TYPE_CHECKING:
    from .options import SubscribeOptions
    from .properties import Properties
    from .token import DeliveryToken, Token


def split(topic: str) -> list[str]:
    """Split a topic name or filter into its levels. An empty string yields no levels."""
    if not topic:
        return []
    return topic.split("/")


class TopicFilter:
    """A validated MQTT subscription filter."""

    def __init__(self, topic_filter: str):
        self._filter = validate_topic_filter(topic_filter)

    @staticmethod
    def has_wildcards(topic_filter: str) -> bool:
        return "+" in topic_filter or "#" in topic_filter

    @property
    def filter(self) -> str:
        return self._filter

    def matches(self, topic: str) -> bool:
        """Return True if the concrete topic name ``topic`` matches this filter."""
        if not topic:
            return False
        return topic_matches_sub(self._filter, topic)

    def __eq__(self, other):
        if isinstance(other, TopicFilter):
            return self._filter == other._filter
        return NotImplemented

    def __hash__(self):
        return hash(self._filter)

    def __str__(self):
        return self._filter

    def __repr__(self):
        return f"TopicFilter({self._filter!r})"


class Topic:
    """
    A topic name bound to a client.

    Publishing and subscribing through a Topic uses its stored QoS and retain
    flag unless overridden per call.
    """

    def __init__(self, client: Any, name: str, qos: int = 0, retained: bool = False):
        if not isinstance(name, str) or not name:
            raise ArgumentError("Topic name must be a non-empty string")
        self._client = client
        self._name = name
        self._qos = validate_qos(qos)
        self._retained = bool(retained)

    @property
    def client(self) -> Any:
        return self._client

    @property
    def name(self) -> str:
        return self._name

    @property
    def qos(self) -> int:
        return self._qos

    @property
    def retained(self) -> bool:
        return self._retained

    def set_qos(self, qos: int) -> None:
        self._qos = validate_qos(qos)

    def set_retained(self, retained: bool) -> None:
        self._retained = bool(retained)

    def split(self) -> list[str]:
        return split(self._name)

    def publish(
        self,
        payload: Any,
        qos: int | None = None,
        retained: bool | None = None,
        properties: "Properties | None" = None,
    ) -> "DeliveryToken":
        """Publish ``payload`` to this topic. The name must not contain wildcards."""
        validate_topic_name(self._name)
        return self._client.publish(
            self._name,
            payload,
            qos=self._qos if qos is None else qos,
            retained=self._retained if retained is None else retained,
            properties=properties,
        )

    def subscribe(
        self,
        options: "SubscribeOptions | None" = None,
        properties: "Properties | None" = None,
    ) -> "Token":
        """Subscribe to this topic (treated as a filter) at the stored QoS."""
        return self._client.subscribe(self._name, self._qos, options=options, properties=properties)

    def __str__(self):
        return self._name

    def __repr__(self):
        return f"Topic(name={self._name!r}, qos={self._qos}, retained={self._retained})"


__all__ = ["Topic", "TopicFilter", "split"]
