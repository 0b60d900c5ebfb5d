"""Shared fixtures for the redirection tests."""

import logging

import pytest

from sdnredirect.config import set_config
from sdnredirect.redirection import RedirectionController
from sdnredirect.redirection.backends import InMemoryBackend

LEAF_PORTS = ["p1", "p2", "p3", "p4", "p5", "p6"]


@pytest.fixture(autouse=True)
def reset_package_state():
    yield
    logger = logging.getLogger("sdnredirect")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
    set_config(None)


@pytest.fixture
def backend() -> InMemoryBackend:
    return InMemoryBackend(ports=LEAF_PORTS)


@pytest.fixture
def controller(backend):
    with RedirectionController(backend) as ctl:
        yield ctl

