# -*- coding: utf-8 -*-

import logging
import threading
import unittest.mock as mock

import pytest

import palworld.testing


def pytest_configure():
    pytest.Mock = mock.Mock
    pytest.MagicMock = mock.MagicMock


@pytest.fixture(autouse=True)
def reenable_logging():
    # The CLI disables logging process-wide when no level is given.
    yield
    logging.disable(logging.NOTSET)


@pytest.fixture
def rcon_server():
    server = palworld.testing.TestRCONServer()
    thread = threading.Thread(target=server.serve_forever)
    thread.start()
    yield server
    server.shutdown()
    thread.join()
    server.server_close()
