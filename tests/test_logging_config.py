import logging

from edilcheck.shared.logging_config import (EdilCheckFormatter,
                                             enable_debug_logging, get_logger,
                                             get_sync_logger, set_log_level)


def test_component_loggers_are_namespaced_and_reused():
    logger = get_sync_logger()

    assert logger.name == "edilcheck.sync"
    assert get_logger("SYNC") is logger
    assert len(logger.handlers) == 1


def test_formatter_tags_component_without_colors():
    formatter = EdilCheckFormatter("STORE", use_colors=False)
    record = logging.LogRecord("edilcheck.store", logging.WARNING, __file__, 1, "disk full", None, None)

    line = formatter.format(record)

    assert line.endswith("[STORE] [WARNING] disk full")


def test_set_log_level_applies_to_all_components():
    store = get_logger("STORE")
    server = get_logger("SERVER")

    enable_debug_logging()
    try:
        assert store.level == logging.DEBUG
        assert server.level == logging.DEBUG
    finally:
        set_log_level("INFO")

    assert store.level == logging.INFO
