"""Root test configuration."""

import logging

import pytest
import structlog
from groundplan.handlers import HandlerRegistry, InMemoryProvider
from groundplan.state import InMemoryStateStore


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


@pytest.fixture
def provider():
    return InMemoryProvider()


@pytest.fixture
def registry(provider):
    return provider.register(HandlerRegistry())


@pytest.fixture
def store():
    return InMemoryStateStore()


@pytest.fixture
def network_and_instance():
    """Instance ``web`` referencing network ``main``."""
    return {
        "resources": [
            {"type": "network", "name": "main", "attributes": {"cidr": "10.0.0.0/16"}},
            {
                "type": "instance",
                "name": "web",
                "attributes": {"size": "small", "network_id": "${network.main.id}"},
            },
        ]
    }
