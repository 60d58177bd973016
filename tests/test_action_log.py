from __future__ import annotations

import logging
from pathlib import Path

import pytest

from cardterm.core.action_log import configure_logging


@pytest.fixture(autouse=True)
def _restore_logging():
    yield
    for name in ("cardterm", "werkzeug"):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.propagate = True
        logger.setLevel(logging.NOTSET)


def test_action_log_written_under_log_dir(tmp_path: Path) -> None:
    log_dir = tmp_path / "ActionLog"

    action_log = configure_logging(log_dir)
    logging.getLogger("cardterm.core.session").info("Card 045678 staged")
    for handler in logging.getLogger("cardterm").handlers:
        handler.flush()

    assert action_log == log_dir / "actions.log"
    assert "Card 045678 staged" in action_log.read_text(encoding="utf-8")


def test_verbose_logs_protocol_bytes(tmp_path: Path) -> None:
    action_log = configure_logging(tmp_path, verbose=True)
    logging.getLogger("cardterm.core.protocol").debug("-> 02 44 43 03 06")
    for handler in logging.getLogger("cardterm").handlers:
        handler.flush()

    assert "-> 02 44 43 03 06" in action_log.read_text(encoding="utf-8")
