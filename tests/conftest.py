import logging
import uuid

import pytest
from dotenv import load_dotenv
from pydantic_core import ValidationError

from mqtt_async_client import AsyncClient, MQTTBrokerConfig
from tests.fake_engine import FakeEngine

# === Load Environment and Configure Logging ===
load_dotenv()

logging.basicConfig(level=logging.INFO, format="%(levelname)-8s %(message)s")


# === Utility ===
def generate_uuid() -> str:
    return str(uuid.uuid4())


# === MQTT Broker Config ===
try:
    BROKER_CONFIG = MQTTBrokerConfig.from_env()
except ValidationError as e:
    logging.error(f"Invalid MQTT Broker configuration: {e.json()}")
    raise


SERVER_URI = "mqtt://fake-broker:1883"


# === Fixtures ===
@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def client(engine):
    client = AsyncClient(SERVER_URI, "test-client", engine=engine)
    yield client
    client.close(timeout=1)


@pytest.fixture
def make_client(engine):
    """Factory for clients on the shared fake engine; closes them afterwards."""
    created = []

    def _make(client_id="test-client", **kwargs):
        kwargs.setdefault("engine", engine)
        c = AsyncClient(SERVER_URI, client_id, **kwargs)
        created.append(c)
        return c

    yield _make
    for c in created:
        c.close(timeout=1)
