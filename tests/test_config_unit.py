"""Tests for solver settings and logging setup."""

import logging

import pytest

from reciplier.config import SOLVER_SETTINGS, solver_settings
from reciplier.logging_config import setup_logging


def test_defaults_are_a_copy() -> None:
    settings = solver_settings()
    assert settings == SOLVER_SETTINGS
    settings["learn_rate"] = 1.0
    assert SOLVER_SETTINGS["learn_rate"] == 0.02


def test_overrides() -> None:
    settings = solver_settings({"max_iterations": 10})
    assert settings["max_iterations"] == 10
    assert settings["decay"] == SOLVER_SETTINGS["decay"]


def test_unknown_override() -> None:
    with pytest.raises(ValueError, match="Unknown solver setting\\(s\\): bogus"):
        solver_settings({"bogus": 1})


# ── Logging ──────────────────────────────────────────────────────────────

@pytest.mark.parametrize("verbosity,level", [
    (0, logging.WARNING), (1, logging.INFO), (2, logging.DEBUG), (5, logging.DEBUG),
])
def test_verbosity_levels(verbosity: int, level: int) -> None:
    try:
        logger = setup_logging(verbosity)
        assert logger.name == "reciplier"
        assert logger.level == level
        assert [h.get_name() for h in logger.handlers] == ["reciplier.console"]
        assert logger.handlers[0].level == level
    finally:
        setup_logging(0)


def test_repeated_setup_replaces_own_handlers_only() -> None:
    logger = logging.getLogger("reciplier")
    foreign = logging.NullHandler()
    logger.addHandler(foreign)
    try:
        setup_logging(1)
        setup_logging(2)
        names = [h.get_name() for h in logger.handlers]
        assert names.count("reciplier.console") == 1
        assert foreign in logger.handlers
    finally:
        logger.removeHandler(foreign)
        setup_logging(0)


def test_log_file_receives_debug_trace(tmp_path) -> None:
    log_file = tmp_path / "reciplier.log"
    logger = setup_logging(0, str(log_file))
    try:
        assert logger.level == logging.DEBUG
        assert logger.handlers[0].level == logging.WARNING
        logging.getLogger("reciplier.engine").debug("hello from the engine")
        assert "DEBUG reciplier.engine: hello from the engine" in log_file.read_text(encoding="utf-8")
    finally:
        setup_logging(0)


def test_console_follows_redirected_stderr(capsys) -> None:
    try:
        setup_logging(0)
        logging.getLogger("reciplier.engine").warning("Failed solve: test")
        assert "WARNING reciplier.engine: Failed solve: test" in capsys.readouterr().err
    finally:
        setup_logging(0)
