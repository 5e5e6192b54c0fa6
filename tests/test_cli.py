"""Tests for the command line entry point (no database required)."""

import logging

import pytest

import cli
from settings import settings


@pytest.fixture
def root_logger():
    """Restore the root logger after configure_logging replaces it."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    logging.disable(logging.NOTSET)
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


class TestParser:
    def test_defaults(self):
        args = cli.build_parser().parse_args([])
        assert args.verbose == 0
        assert args.quiet == 0

    def test_short_flags(self):
        args = cli.build_parser().parse_args(
            ["-s", "x.yaml", "-d", "postgresql://db", "-h", "0.0.0.0", "-p", "9000", "-vv"]
        )
        assert args.schema == "x.yaml"
        assert args.db_url == "postgresql://db"
        assert args.host == "0.0.0.0"
        assert args.port == 9000
        assert args.verbose == 2


class TestConfigureLogging:
    """Verbosity is 1 + verbose - quiet; no flags falls back to LOG_LEVEL."""

    @pytest.mark.parametrize(
        "verbose, quiet, expected",
        [
            (1, 0, logging.INFO),
            (2, 0, logging.DEBUG),
            (5, 0, logging.DEBUG),
            (1, 1, logging.WARNING),
        ],
    )
    def test_levels(self, root_logger, verbose, quiet, expected):
        cli.configure_logging(verbose, quiet)
        assert root_logger.level == expected
        assert logging.root.manager.disable == logging.NOTSET

    @pytest.mark.parametrize("verbose, quiet", [(0, 1), (0, 3), (1, 2)])
    def test_quiet_disables_logging(self, root_logger, verbose, quiet):
        cli.configure_logging(verbose, quiet)
        assert logging.root.manager.disable == logging.CRITICAL
        assert not root_logger.isEnabledFor(logging.CRITICAL)

    def test_no_flags_uses_log_level(self, root_logger, monkeypatch):
        monkeypatch.setattr(settings, "log_level", "info")
        cli.configure_logging(0, 0)
        assert root_logger.level == logging.INFO

    def test_invalid_log_level_falls_back_to_warning(self, root_logger, monkeypatch):
        monkeypatch.setattr(settings, "log_level", "LOUD")
        cli.configure_logging(0, 0)
        assert root_logger.level == logging.WARNING

    def test_reconfigure_after_quiet(self, root_logger):
        cli.configure_logging(0, 1)
        cli.configure_logging(1, 0)
        assert logging.root.manager.disable == logging.NOTSET
        assert root_logger.isEnabledFor(logging.INFO)


class TestMain:
    def test_missing_schema_file_exits_with_error(self, tmp_path, capsys, root_logger):
        code = cli.main(["-s", str(tmp_path / "missing.yaml"), "-d", "postgresql://unused"])
        assert code == 1
        assert capsys.readouterr().err.startswith("error: failed to read schema file")

    def test_invalid_schema_exits_with_error(self, tmp_path, capsys, root_logger):
        path = tmp_path / "schema.conf.yaml"
        path.write_text("apps:\n  - id: a\n    secret_key: k\n    tables: [missing]\n")
        code = cli.main(["-s", str(path)])
        assert code == 1
        assert "table 'missing' is not defined" in capsys.readouterr().err

    def test_invalid_port(self, capsys):
        assert cli.main(["-p", "0"]) == 1
        assert "invalid port" in capsys.readouterr().err
