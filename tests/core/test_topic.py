"""
Tests for topic filter matching and the Topic binding.
"""
from unittest.mock import Mock

import pytest

from mqtt_async_client import ArgumentError, Topic, TopicFilter
from mqtt_async_client.core.topic import split


# ============================================================================
# FILTER MATCHING
# ============================================================================


class TestTopicFilterMatching:
    """Wildcard and '$' topic rules."""

    @pytest.mark.parametrize("topic_filter,topic,expected", [
        ("foo/bar", "foo/bar", True),
        ("foo/bar", "foo/baz", False),
        ("foo/+/baz", "foo/bar/baz", True),
        ("foo/+/baz", "foo/$bar/baz", True),
        ("foo/+/#", "foo/bar/baz", True),
        ("foo/+/#", "foo/bar", True),
        ("#", "foo/bar", True),
        ("#", "$SYS/bar", False),
        ("$SYS/#", "$SYS/bar", True),
        ("/#", "/foo/bar", True),
        ("/#", "foo/bar", False),
        ("+/bar", "$SYS/bar", False),
        ("+/bar", "foo/bar", True),
        ("foo/#", "foo/$bar", True),
        ("foo/#", "foo", True),
        ("test/6/#", "test/3", False),
        ("+", "foo", True),
        ("+", "foo/bar", False),
        ("A/B/+/#", "A/B/B/C", True),
        ("#", "/foo/bar", True),
        ("$SYS/bar", "$SYS/bar", True),
        ("$BOB/bar", "$SYS/bar", False),
        ("foo/bar", "foo", False),
        ("foo/+", "foo/bar/baz", False),
        ("foo/+/baz", "foo/bar/bar", False),
        ("foo/+/#", "fo2/bar/baz", False),
        ("my/topic/#", "my/topic/name/and/id", True),
        ("sport/+", "sport/", True),
        ("+/+", "/finance", True),
    ])
    def test_matches(self, topic_filter, topic, expected):
        assert TopicFilter(topic_filter).matches(topic) is expected

    def test_empty_topic_never_matches(self):
        assert TopicFilter("#").matches("") is False

    @pytest.mark.parametrize("bad", ["", "foo/#/bar", "foo#", "foo/ba+r", "+foo"])
    def test_invalid_filters_rejected(self, bad):
        with pytest.raises(ArgumentError):
            TopicFilter(bad)

    @pytest.mark.parametrize("value,expected", [
        ("foo/bar", False),
        ("foo/+", True),
        ("#", True),
    ])
    def test_has_wildcards(self, value, expected):
        assert TopicFilter.has_wildcards(value) is expected

    def test_equality_and_hash(self):
        assert TopicFilter("a/+") == TopicFilter("a/+")
        assert len({TopicFilter("a/+"), TopicFilter("a/+"), TopicFilter("a/#")}) == 2
        assert str(TopicFilter("a/#")) == "a/#"


class TestSplit:

    @pytest.mark.parametrize("value,levels", [
        ("", []),
        ("a", ["a"]),
        ("a/b/c", ["a", "b", "c"]),
        ("/a", ["", "a"]),
        ("a/", ["a", ""]),
    ])
    def test_split(self, value, levels):
        assert split(value) == levels


# ============================================================================
# TOPIC BINDING
# ============================================================================


class TestTopic:
    """Topic forwards to its client with its stored QoS and retain flag."""

    def test_publish_uses_defaults(self):
        client = Mock()
        topic = Topic(client, "data/temp", qos=1, retained=True)

        topic.publish("21.5")

        client.publish.assert_called_once_with(
            "data/temp", "21.5", qos=1, retained=True, properties=None,
        )

    def test_publish_overrides(self):
        client = Mock()
        topic = Topic(client, "data/temp", qos=1)

        topic.publish(b"x", qos=0, retained=True)

        client.publish.assert_called_once_with("data/temp", b"x", qos=0, retained=True, properties=None)

    def test_subscribe_uses_qos(self):
        client = Mock()
        Topic(client, "cmd/#", qos=2).subscribe()
        client.subscribe.assert_called_once_with("cmd/#", 2, options=None, properties=None)

    def test_publish_to_wildcard_topic_rejected(self):
        topic = Topic(Mock(), "cmd/#")
        with pytest.raises(ArgumentError):
            topic.publish("x")

    def test_set_qos_validates(self):
        topic = Topic(Mock(), "a")
        topic.set_qos(2)
        assert topic.qos == 2
        with pytest.raises(ArgumentError):
            topic.set_qos(3)

    def test_empty_name_rejected(self):
        with pytest.raises(ArgumentError):
            Topic(Mock(), "")

    def test_accessors(self):
        client = Mock()
        topic = Topic(client, "a/b")
        topic.set_retained(True)
        assert topic.client is client
        assert topic.name == "a/b"
        assert topic.retained is True
        assert topic.split() == ["a", "b"]
        assert str(topic) == "a/b"
