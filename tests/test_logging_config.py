import logging
from logging.handlers import RotatingFileHandler

import pytest

from tunegrab.logging_config import configure_logging


@pytest.fixture
def fresh_logger():
    logger = logging.getLogger("tunegrab")
    saved = logger.handlers[:]
    saved_level = logger.level
    logger.handlers = []
    yield logger
    for handler in logger.handlers:
        handler.close()
    logger.handlers = saved
    logger.setLevel(saved_level)


def test_configure_logging_adds_rotating_file_once(fresh_logger, tmp_path):
    log_file = tmp_path / "logs" / "tunegrab.log"

    configure_logging("debug", str(log_file))
    configure_logging("debug", str(log_file))

    file_handlers = [h for h in fresh_logger.handlers if isinstance(h, RotatingFileHandler)]
    assert len(file_handlers) == 1
    assert len(fresh_logger.handlers) == 2
    assert fresh_logger.level == logging.DEBUG

    logging.getLogger("tunegrab.jobs.orchestrator").info("job_id=%s created", "abc")
    file_handlers[0].flush()
    assert "job_id=abc created" in log_file.read_text()
