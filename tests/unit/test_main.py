from __future__ import annotations

import logging

from codebattle.main import apply_overrides, build_parser
from codebattle.utils.config_manager import ConfigManager
from codebattle.utils.logger_config import ColoredFormatter, get_logger, setup_logging, setup_logging_from_config


def test_cli_flags_override_config(tmp_path) -> None:
    config = ConfigManager(str(tmp_path / "missing.json"), load_env=False)
    args = build_parser().parse_args([
        "--port", "8123", "--storage", "duckdb", "--db-path", "x.duckdb",
        "--judge", "oj", "--auto-finish", "--debug"
    ])

    apply_overrides(config, args)

    assert config.get("server.port") == 8123
    assert config.get("server.host") == "0.0.0.0"
    assert config.get("storage.backend") == "duckdb"
    assert config.get("storage.duckdb_path") == "x.duckdb"
    assert config.get("judge.backend") == "oj"
    assert config.get("contest.auto_finish_on_expiry") is True
    assert config.get("log.level") == "DEBUG"


def test_setup_logging_writes_file(tmp_path) -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    log_file = tmp_path / "logs" / "server.log"
    try:
        setup_logging(level="INFO", log_file=str(log_file), enable_colors=False)
        logger = get_logger("test")
        assert logger.name == "codebattle.test"
        logger.info("contest started")
        for handler in root.handlers:
            handler.flush()
    finally:
        for handler in root.handlers[:]:
            root.removeHandler(handler)
            handler.close()
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)

    assert "contest started" in log_file.read_text(encoding="utf-8")


def test_logging_from_config_uses_log_dir(tmp_path) -> None:
    config = ConfigManager(str(tmp_path / "missing.json"), load_env=False)
    config.set("log.dir", str(tmp_path / "server_logs"))
    config.set("log.enable_colors", False)
    config.set("server.port", 8123)
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        log_file = setup_logging_from_config(config)
        get_logger("main").debug("debug goes to the file only")
        for handler in root.handlers:
            handler.flush()
    finally:
        for handler in root.handlers[:]:
            root.removeHandler(handler)
            handler.close()
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)

    assert log_file.startswith(str(tmp_path / "server_logs" / "server_8123_"))
    content = open(log_file, encoding="utf-8").read()
    assert "debug goes to the file only" in content
    assert "\033[" not in content


def test_colored_formatter_restores_level_name() -> None:
    formatter = ColoredFormatter("%(levelname)s %(message)s")
    record = logging.LogRecord("codebattle.test", logging.WARNING, __file__, 1, "late join", None, None)

    line = formatter.format(record)

    assert line.startswith("\033[33mWARNING")
    assert line.endswith("late join")
    assert record.levelname == "WARNING"
