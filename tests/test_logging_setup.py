"""
test_logging_setup.py
~~~~~~~~~~~~~~~~~~~~~

Tests for the shared logging configuration.
"""

import logging

import pytest

from digitnet import config
from digitnet.logging_setup import configure_logging

NOISY_LOGGERS = ['socketio', 'engineio', 'engineio.server', 'socketio.server',
                 'werkzeug', 'digitnet']


@pytest.fixture(autouse=True)
def restore_levels():
    """Put every touched logger back to its previous level."""
    levels = {name: logging.getLogger(name).level for name in NOISY_LOGGERS}
    yield
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)


@pytest.mark.unit
class TestConfigureLogging:
    """Tests for development and production logging."""

    def test_production_silences_server_loggers(self):
        configure_logging(level='debug', production=True)

        assert logging.getLogger('werkzeug').level == logging.WARNING
        assert logging.getLogger('socketio.server').level == logging.WARNING
        assert logging.getLogger('digitnet').level == logging.INFO

    def test_development_keeps_socketio_at_info(self):
        configure_logging(production=False)

        assert logging.getLogger('socketio').level == logging.INFO
        assert logging.getLogger('engineio').level == logging.INFO

    def test_defaults_come_from_config(self, monkeypatch):
        monkeypatch.setattr(config, 'IS_PRODUCTION', True)
        monkeypatch.setattr(config, 'LOG_LEVEL', 'not-a-level')

        configure_logging()

        assert logging.getLogger('werkzeug').level == logging.WARNING
