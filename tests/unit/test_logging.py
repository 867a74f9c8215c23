"""Unit tests for logging setup."""

import logging

import pytest

from loan_ensemble.utils.logging import ROOT_LOGGER_NAME, get_logger, setup_logging


@pytest.fixture
def package_logger():
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    saved_level, saved_handlers = logger.level, list(logger.handlers)
    yield logger
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for handler in saved_handlers:
        logger.addHandler(handler)
    logger.setLevel(saved_level)


class TestSetupLogging:

    def test_console_only(self, package_logger):
        logger = setup_logging(level='DEBUG')
        assert logger is package_logger
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1

    def test_repeated_setup_replaces_handlers(self, package_logger):
        setup_logging(level='INFO')
        setup_logging(level='WARNING')
        assert len(package_logger.handlers) == 1
        assert package_logger.level == logging.WARNING

    def test_file_handler_writes_records(self, package_logger, tmp_path):
        log_file = tmp_path / "logs" / "run.log"
        setup_logging(level='INFO', log_file=log_file, format_string='%(name)s|%(message)s')
        get_logger("train").info("forest trained")
        for handler in package_logger.handlers:
            handler.flush()
        assert log_file.read_text().strip() == "loan_ensemble.train|forest trained"

    def test_unknown_level(self, package_logger):
        with pytest.raises(ValueError):
            setup_logging(level='LOUD')


def test_get_logger_is_nested():
    assert get_logger("predict").name == "loan_ensemble.predict"
