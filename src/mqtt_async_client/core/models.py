"""
Configuration and state models.

Key Models:
    - ClientState: Connection lifecycle states of the client
    - MQTTBrokerConfig: Broker connection configuration, loadable from the environment

Example:
    >>> config = MQTTBrokerConfig.from_env()
    >>> client = AsyncClient(config.server_uri, "sensor-01")
    >>> client.connect(config.to_connect_options()).wait()
"""
import os
from enum import Enum
from typing import Optional

from pydantic import BaseModel, SecretStr, model_validator

from .options import ConnectOptions, ConnectOptionsBuilder, MQTTVersion


class ClientState(Enum):
    """
    Connection lifecycle of the client.

    DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTING -> DISCONNECTED.

    With automatic reconnect enabled, RECONNECTING is entered from CONNECTED
    when the connection is lost, or from CONNECTING when the connect attempt
    fails. It leaves to CONNECTED when a retry succeeds, or to DISCONNECTED
    through disconnect().
    """
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    DISCONNECTING = "disconnecting"


class MQTTBrokerConfig(BaseModel):
    """
    MQTT broker connection configuration.

    Attributes:
        hostname: MQTT broker hostname or IP address (default: "localhost")
        port: MQTT broker port (default: 1883, or 8883 with TLS)
        timeout: Connection timeout in seconds (default: 5)
        username: Optional MQTT username for authentication
        password: Optional MQTT password (stored as SecretStr)
        scheme: URI scheme (mqtt, mqtts, ws, wss)

    Example:
        >>> config = MQTTBrokerConfig(
        ...     hostname="mqtt.example.com",
        ...     port=8883,
        ...     scheme="mqtts",
        ...     username="device-001",
        ...     password="secret123"
        ... )
        >>> config.server_uri
        'mqtts://mqtt.example.com:8883'
    """
    hostname: str = "localhost"
    port: Optional[int] = None
    timeout: Optional[int] = 5
    username: Optional[str] = None
    password: Optional[SecretStr] = None
    scheme: str = "mqtt"

    @model_validator(mode="after")
    def set_defaults_if_none(self) -> "MQTTBrokerConfig":
        """Ensure port and timeout have default values even if explicitly set to None."""
        if self.port is None:
            self.port = 8883 if self.scheme in ("mqtts", "ssl") else 1883
        if self.timeout is None:
            self.timeout = 5
        return self

    @classmethod
    def from_env(cls, prefix: str = "MQTT_BROKER_") -> "MQTTBrokerConfig":
        """
        Build a config from ``<prefix>HOSTNAME``, ``PORT``, ``USERNAME``,
        ``PASSWORD``, ``TIMEOUT`` and ``SCHEME`` environment variables.
        Unset variables keep the model defaults.
        """
        fields = {}
        for name in ("hostname", "port", "timeout", "username", "password", "scheme"):
            value = os.getenv(f"{prefix}{name.upper()}")
            if value:
                fields[name] = value
        return cls(**fields)

    @property
    def server_uri(self) -> str:
        return f"{self.scheme}://{self.hostname}:{self.port}"

    def to_connect_options(self, mqtt_version: MQTTVersion | int = MQTTVersion.V3_1_1) -> ConnectOptions:
        """Connect options carrying this config's credentials and timeout."""
        builder = ConnectOptionsBuilder(mqtt_version)
        if int(mqtt_version) == MQTTVersion.V5:
            builder = ConnectOptionsBuilder.v5()
        builder.connect_timeout(self.timeout)
        if self.username:
            builder.user_name(self.username)
        if self.password is not None:
            builder.password(self.password)
        return builder.finalize()


__all__ = ["ClientState", "MQTTBrokerConfig"]
