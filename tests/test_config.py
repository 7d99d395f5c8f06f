"""
Tests for settings loading and logger setup.
"""

import logging
from datetime import date, timedelta

from fmtbridge.utils.config import CONFIG_PATH, load_settings, load_yaml_config, pool_config
from fmtbridge.utils.logger import DailyFileHandler, resolve_level, setup_logger


class TestSettings:
    def test_defaults_without_file(self, tmp_path):
        settings = load_settings(tmp_path / "missing.yaml")

        assert settings.MAX_INSTANCES_PER_PLUGIN == 4
        assert settings.MAX_NESTING_DEPTH == 8
        assert settings.PLUGINS_DIR == "plugins"

    def test_yaml_host_section(self, tmp_path):
        path = tmp_path / "hostconfig.yaml"
        path.write_text(
            "host:\n  max_instances_per_plugin: 2\n  log_level: DEBUG\n"
            "formatting:\n  lineWidth: 80\n"
            "plugins:\n  typescript:\n    semiColons: asi\n",
            encoding="utf-8",
        )

        settings = load_settings(path)
        config = pool_config(settings, load_yaml_config(path))

        assert settings.LOG_LEVEL == "DEBUG"
        assert config["max_instances_per_plugin"] == 2
        assert config["global_config"] == {"lineWidth": 80}
        assert config["plugin_configs"] == {"typescript": {"semiColons": "asi"}}

    def test_environment_variables(self, tmp_path, monkeypatch):
        monkeypatch.setenv("FMTBRIDGE_MAX_CRASHES", "7")

        settings = load_settings(tmp_path / "missing.yaml")

        assert settings.MAX_CRASHES == 7

    def test_non_mapping_yaml_is_ignored(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")

        assert load_yaml_config(path) == {}

    def test_packaged_config_loads(self):
        data = load_yaml_config(CONFIG_PATH)

        assert "host" in data and "formatting" in data


class TestLogger:
    def test_daily_file_handler(self, tmp_path):
        logger = setup_logger("fmtbridge.test_logger", with_console=False, level="DEBUG", log_dir=tmp_path)
        logger.debug("hello %s", "file")
        for handler in logger.handlers:
            handler.flush()

        files = list(tmp_path.glob("fmtbridge.test_logger-*.log"))
        assert len(files) == 1
        assert "hello file" in files[0].read_text(encoding="utf-8")
        assert isinstance(logger.handlers[0], DailyFileHandler)

        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()

    def test_records_carry_thread_name(self, tmp_path):
        logger = setup_logger("fmtbridge.test_thread", with_console=False, log_dir=tmp_path)
        logger.info("pooled call")
        handler = logger.handlers[0]
        handler.flush()

        text = handler.path_for(date.today()).read_text(encoding="utf-8")
        assert "| MainThread | fmtbridge.test_thread | pooled call" in text

        handler.close()
        logger.handlers.clear()

    def test_old_files_pruned_on_rollover(self, tmp_path):
        today = date.today()
        stale = tmp_path / f"fmtbridge-{today - timedelta(days=10):%Y-%m-%d}.log"
        recent = tmp_path / f"fmtbridge-{today - timedelta(days=2):%Y-%m-%d}.log"
        other = tmp_path / f"other-{today - timedelta(days=30):%Y-%m-%d}.log"
        for path in (stale, recent, other):
            path.write_text("old\n", encoding="utf-8")

        handler = DailyFileHandler(tmp_path, prefix="fmtbridge", retention_days=7)
        handler.emit(logging.makeLogRecord({"msg": "new day", "levelno": logging.INFO, "levelname": "INFO"}))
        handler.close()

        assert not stale.exists()
        assert recent.exists() and other.exists()
        assert "new day" in handler.path_for(today).read_text(encoding="utf-8")

    def test_zero_retention_keeps_everything(self, tmp_path):
        stale = tmp_path / f"fmtbridge-{date.today() - timedelta(days=400):%Y-%m-%d}.log"
        stale.write_text("old\n", encoding="utf-8")

        handler = DailyFileHandler(tmp_path, prefix="fmtbridge", retention_days=0)

        assert handler.prune(date.today()) == 0
        assert stale.exists()

    def test_resolve_level(self):
        assert resolve_level("warning") == logging.WARNING
        assert resolve_level(logging.ERROR) == logging.ERROR
        assert resolve_level("nonsense") == logging.INFO
