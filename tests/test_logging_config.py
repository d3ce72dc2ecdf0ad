from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest

from skimmer.config import LoggingSettings
from skimmer.logging_config import configure_logging


@pytest.fixture
def restore_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    touched = ["skimmer.features.scenes", "skimmer.cache"]
    levels = {name: logging.getLogger(name).level for name in touched}
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    for name, previous in levels.items():
        logging.getLogger(name).setLevel(previous)


def test_configure_logging_sets_root_and_module_levels(restore_logging: None) -> None:
    configure_logging(
        LoggingSettings(level="debug", module_levels={"features.scenes": "WARNING", "skimmer.cache": "ERROR"})
    )

    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("skimmer.features.scenes").level == logging.WARNING
    assert logging.getLogger("skimmer.cache").level == logging.ERROR


def test_unknown_level_falls_back_to_info(restore_logging: None) -> None:
    configure_logging(LoggingSettings(level="chatty"))

    assert logging.getLogger().level == logging.INFO
