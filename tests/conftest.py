import logging
import threading

import pytest

from cls_shipper.config import AppConfig, CLSConfig, LoggingConfig, ServerConfig
from cls_shipper.errors import CLSTransportError
from cls_shipper.logger import CLSHandler
from cls_shipper.server import create_app
from cls_shipper.transport import CLSTransport

ENV_VARS = (
    "CLS_ENDPOINT",
    "CLS_TOPIC_ID",
    "CLS_MAX_COUNT",
    "CLS_MAX_SIZE",
    "CLS_REGION",
    "CLS_RETRY_COUNT",
    "CLS_FLUSH_INTERVAL",
    "CLS_SOURCE",
    "CLS_TIMEOUT",
    "APP_ID",
    "APP_VERSION",
    "APP_ENV",
    "LOG_LEVEL",
    "SERVER_HOST",
    "SERVER_PORT",
    "SERVER_DEBUG",
    "CONFIG_PATH",
)


class RecordingClient:
    """Stand-in for CLSClient that records submitted log groups.

    With ``fail=True`` every submission raises CLSTransportError. When a
    ``release`` event is given, ``put_logs`` signals ``started`` and blocks
    until the test sets ``release``.
    """

    def __init__(self, fail: bool = False, release: threading.Event | None = None):
        self.fail = fail
        self.release = release
        self.started = threading.Event()
        self.sent = threading.Event()
        self.groups = []
        self.topics = []
        self.calls = 0
        self.closed = False
        self._lock = threading.Lock()

    def put_logs(self, topic_id, log_group):
        with self._lock:
            self.calls += 1
            self.topics.append(topic_id)
        self.started.set()
        if self.release is not None:
            self.release.wait(timeout=5)
        if self.fail:
            raise CLSTransportError("simulated outage", status_code=503)
        with self._lock:
            self.groups.append(log_group)
        self.sent.set()

    def close(self):
        self.closed = True

    def batches(self) -> list[list[str]]:
        """Messages of every delivered batch, in delivery order."""
        with self._lock:
            return [[log.contents.get("message") for log in group.logs] for group in self.groups]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's environment out of config-dependent tests."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def make_config():
    def _make(**overrides) -> CLSConfig:
        values = {
            "endpoint": "ap-guangzhou.cls.tencentcs.com",
            "topic_id": "topic-123",
            "flush_interval": 60_000,
        }
        values.update(overrides)
        return CLSConfig(**values)

    return _make


@pytest.fixture
def make_transport(make_config):
    """Factory for transports that are always closed at teardown."""
    created: list[CLSTransport] = []

    def _make(client=None, append_fields_fn=None, **overrides):
        client = client if client is not None else RecordingClient()
        transport = CLSTransport(
            make_config(**overrides), client=client, append_fields_fn=append_fields_fn
        )
        created.append(transport)
        return transport, client

    yield _make

    for transport in created:
        transport.close(timeout=1.0)


@pytest.fixture
def restore_root_logger():
    """Remove CLS handlers and restore the root level after a test."""
    root = logging.getLogger()
    level = root.level
    yield root
    for handler in list(root.handlers):
        if isinstance(handler, CLSHandler):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


@pytest.fixture
def app_config(make_config):
    return AppConfig(
        server=ServerConfig(),
        logging=LoggingConfig(app_env="test"),
        cls=make_config(),
    )


@pytest.fixture
def transport(make_transport):
    transport, _client = make_transport()
    return transport


@pytest.fixture
def app(app_config, transport):
    application = create_app(app_config, transport)
    application.config["TESTING"] = True
    return application


@pytest.fixture
def client(app):
    """Create a Flask test client."""
    return app.test_client()
