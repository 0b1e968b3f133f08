import logging

import pytest

from DAAS_Gateway.daas_shared.logging_setup import configure_logging


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    saved_level = root.level
    saved = [(h, h.level, h.formatter) for h in root.handlers]
    yield root
    root.setLevel(saved_level)
    for handler, level, formatter in saved:
        handler.setLevel(level)
        handler.setFormatter(formatter)


@pytest.mark.parametrize("name,level", [("debug", logging.DEBUG), ("WARNING", logging.WARNING),
                                        ("nonsense", logging.INFO)])
def test_level_from_environment(monkeypatch, root_logger, name, level):
    monkeypatch.setenv("LOG_LEVEL", name)
    configure_logging()
    assert root_logger.level == level
