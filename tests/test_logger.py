from __future__ import annotations

import logging

from backend.utils.logger import configure_logging, get_logger


def test_get_logger_returns_module_logger_and_configures_once():
    logger = get_logger("backend.services.scheduling_service")
    handlers = list(logging.getLogger().handlers)

    configure_logging("DEBUG")

    assert logger.name == "backend.services.scheduling_service"
    assert logging.getLogger().handlers == handlers
