import logging

from context_pipeline.config.logging import ROOT_LOGGER, get_logger, setup_logging


def test_loggers_live_under_the_package_namespace():
    """Stage loggers are children of the configured namespace logger."""
    logger = get_logger("context_pipeline.retrieval")
    assert logger.name.startswith(ROOT_LOGGER)
    root = logging.getLogger(ROOT_LOGGER)
    assert root.handlers
    assert root.propagate is False


def test_setup_is_idempotent_and_adjusts_level():
    """Repeated setup changes the level without stacking handlers."""
    root = logging.getLogger(ROOT_LOGGER)
    setup_logging("DEBUG")
    count = len(root.handlers)
    setup_logging("warning")
    assert len(root.handlers) == count
    assert root.level == logging.WARNING
    setup_logging("not-a-level")
    assert root.level == logging.INFO
