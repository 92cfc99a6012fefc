"""
Configuration, Logging and CLI Tests
"""

import json

import pytest


# =============================================================================
# Configuration Tests
# =============================================================================

class TestConfig:
    """Test settings loading."""

    def test_defaults(self):
        from tracewire.core.config import LogLevel, TracewireConfig

        config = TracewireConfig()

        assert config.log_level == LogLevel.INFO
        assert config.collector.port == 443
        assert config.collector.timeout == 120.0
        assert config.collector.marshal_format == "json"
        assert config.profiler.default_sample_period == 0.1
        assert config.profiler.count_total_samples is False
        assert config.agent.language == "python"

    def test_environment_overrides(self, monkeypatch):
        from tracewire.core.config import TracewireConfig

        monkeypatch.setenv("TRACEWIRE_LICENSE_KEY", "abc123")
        monkeypatch.setenv("TRACEWIRE_COLLECTOR__PORT", "8081")
        monkeypatch.setenv("TRACEWIRE_PROFILER__COUNT_TOTAL_SAMPLES", "true")

        config = TracewireConfig()

        assert config.license_key == "abc123"
        assert config.collector.port == 8081
        assert config.profiler.count_total_samples is True

    def test_file_round_trip(self, tmp_path):
        from tracewire.core.config import TracewireConfig

        path = tmp_path / "conf" / "tracewire.json"
        TracewireConfig(license_key="xyz", collector={"host": "staging-collector"}).to_file(path)

        config = TracewireConfig.from_file(path)

        assert config.license_key == "xyz"
        assert config.collector.host == "staging-collector"

    def test_missing_file(self, tmp_path):
        from tracewire.core.config import TracewireConfig

        with pytest.raises(FileNotFoundError):
            TracewireConfig.from_file(tmp_path / "absent.json")

    @pytest.mark.parametrize("timeout", [0, -1.5])
    def test_timeout_must_be_positive(self, timeout):
        from pydantic import ValidationError

        from tracewire.core.config import CollectorConfig

        with pytest.raises(ValidationError):
            CollectorConfig(timeout=timeout)

    def test_unknown_marshal_format_rejected(self):
        from pydantic import ValidationError

        from tracewire.core.config import CollectorConfig

        with pytest.raises(ValidationError):
            CollectorConfig(marshal_format="xml")

    def test_client_from_config(self):
        from tracewire.collector.client import CollectorClient
        from tracewire.collector.marshal import MsgpackMarshaller
        from tracewire.core.config import TracewireConfig

        config = TracewireConfig(
            license_key="k",
            collector={"host": "c.example.com", "port": 8443, "marshal_format": "msgpack"},
        )
        client = CollectorClient.from_config(config)

        assert isinstance(client.marshaller, MsgpackMarshaller)
        assert client.collector.base_url == "https://c.example.com:8443"

    def test_profiler_from_config(self):
        from tracewire.core.config import TracewireConfig
        from tracewire.profiling.profiler import ThreadProfiler

        config = TracewireConfig(profiler={"count_total_samples": True, "stop_join_timeout": 1.0})
        profiler = ThreadProfiler.from_config(config)

        assert profiler.count_total_samples is True
        assert profiler.stop_join_timeout == 1.0

    def test_global_config(self):
        from tracewire.core import config as config_module

        custom = config_module.TracewireConfig(license_key="global")
        previous = config_module._config
        try:
            config_module.set_config(custom)
            assert config_module.get_config() is custom
        finally:
            config_module._config = previous


# =============================================================================
# Logging Tests
# =============================================================================

class TestLogging:
    """Test structured logging setup."""

    @pytest.mark.parametrize("log_format", ["json", "console"])
    def test_setup_logging(self, log_format):
        import structlog

        from tracewire.core.logging import setup_logging

        setup_logging("DEBUG", log_format)

        logger = structlog.get_logger("tracewire.test")
        logger.info("logging_configured", log_format=log_format)

        assert structlog.is_configured()


# =============================================================================
# CLI Tests
# =============================================================================

class TestCLI:
    """Test the command line entry point."""

    def test_profile_json(self, capsys):
        from tracewire.cli import main

        assert main(["profile", "--duration", "0", "--format", "json"]) == 0

        output = json.loads(capsys.readouterr().out)
        assert list(output) == ["OTHER", "REQUEST", "AGENT", "BACKGROUND"]
        assert output["AGENT"]

    def test_profile_tree(self, capsys):
        from tracewire.cli import main

        assert main(["profile", "--duration", "0"]) == 0

        output = capsys.readouterr().out
        assert output.startswith("polls=1 ")
        assert "AGENT (1 roots)" in output

    def test_logging_follows_config(self, monkeypatch):
        from unittest.mock import patch

        from tracewire.cli import main

        monkeypatch.setenv("TRACEWIRE_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("TRACEWIRE_LOG_FORMAT", "console")

        with patch("tracewire.cli.setup_logging") as setup:
            main(["profile", "--duration", "0", "--format", "json"])

        setup.assert_called_once_with("DEBUG", "console")

    def test_log_level_flag_overrides_config(self, monkeypatch):
        from unittest.mock import patch

        from tracewire.cli import main

        monkeypatch.setenv("TRACEWIRE_LOG_LEVEL", "DEBUG")

        with patch("tracewire.cli.setup_logging") as setup:
            main(["--log-level", "ERROR", "profile", "--duration", "0", "--format", "json"])

        setup.assert_called_once_with("ERROR", "json")

    def test_no_command(self, capsys):
        from tracewire.cli import main

        assert main([]) == 1
        assert "usage" in capsys.readouterr().out
