"""Unit tests for clearnear/config_manager.py"""

import os
import tempfile
from unittest.mock import patch

import pytest
import yaml

from clearnear.config_manager import ConfigManager, ConfigValidationError
from clearnear.error_utils import ConfigurationError

ENV_VARS = ("CLEARNEAR_REGISTRY", "CLEARNEAR_CONFIG", "REGISTRY_USERNAME", "REGISTRY_PASSWORD")


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the caller's registry settings out of the tests"""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def write_config(data):
    f = tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False)
    with f:
        if isinstance(data, str):
            f.write(data)
        else:
            yaml.dump(data, f)
    return f.name


class TestConfigManagerInitialization:
    """Tests for ConfigManager initialization"""

    def test_loads_default_config_when_file_not_found(self):
        """Test that defaults are used when config file doesn't exist"""
        cm = ConfigManager(config_file="/nonexistent/config.yaml")

        assert cm.get_registry_url() == "http://localhost:5000"
        assert cm.get_max_workers() == 10
        assert cm.get_max_retries() == 3
        assert cm.get_registry_username() is None
        assert cm.requires_confirmation() is False

    def test_loads_config_from_yaml_file(self):
        """Test loading configuration from a YAML file"""
        path = write_config({
            "registry": {"url": "https://registry.example.com:5000", "timeout": 10},
            "resolver": {"max_workers": 4},
        })
        try:
            cm = ConfigManager(config_file=path)
            assert cm.get_registry_url() == "https://registry.example.com:5000"
            assert cm.get_request_timeout() == 10.0
            assert cm.get_max_workers() == 4
            # Untouched keys keep their defaults
            assert cm.get_verify_tls() is True
            assert cm.get_retry_max_delay() == 60.0
        finally:
            os.unlink(path)

    def test_config_file_from_environment(self):
        """Test that CLEARNEAR_CONFIG selects the config file"""
        path = write_config({"reports": {"output_dir": "/tmp/clearnear-reports"}})
        try:
            with patch.dict(os.environ, {"CLEARNEAR_CONFIG": path}):
                cm = ConfigManager()
            assert cm.get_output_dir() == "/tmp/clearnear-reports"
        finally:
            os.unlink(path)

    def test_invalid_yaml_raises(self):
        """Test that a broken YAML file is a validation error"""
        path = write_config("registry: [unclosed")
        try:
            with pytest.raises(ConfigValidationError, match="Could not read config file"):
                ConfigManager(config_file=path)
        finally:
            os.unlink(path)

    def test_non_mapping_yaml_raises(self):
        """Test that a YAML list at the top level is rejected"""
        path = write_config("- a\n- b\n")
        try:
            with pytest.raises(ConfigValidationError, match="mapping"):
                ConfigManager(config_file=path)
        finally:
            os.unlink(path)

    def test_missing_explicit_config_file_warns(self, caplog):
        """Test that a config path given by the user but absent is warned about"""
        cm = ConfigManager(config_file="/nonexistent/config.yaml")
        assert cm.get_registry_url() == "http://localhost:5000"
        warnings = [r for r in caplog.records if r.levelname == "WARNING"]
        assert any("/nonexistent/config.yaml not found" in r.getMessage() for r in warnings)

    def test_missing_environment_config_file_warns(self, caplog):
        """Test that a CLEARNEAR_CONFIG path that does not exist is warned about"""
        with patch.dict(os.environ, {"CLEARNEAR_CONFIG": "/nonexistent/env.yaml"}):
            ConfigManager()
        assert any(r.levelname == "WARNING" and "/nonexistent/env.yaml" in r.getMessage()
                   for r in caplog.records)

    def test_missing_default_config_file_is_quiet(self, caplog, monkeypatch, tmp_path):
        """Test that the absent default config.yaml is not warned about"""
        monkeypatch.chdir(tmp_path)
        cm = ConfigManager()
        assert cm.config_file == "config.yaml"
        assert not any(r.levelname == "WARNING" and "not found" in r.getMessage() for r in caplog.records)

    def test_validation_error_is_configuration_error(self):
        """Test that callers can catch every config problem as ConfigurationError"""
        assert issubclass(ConfigValidationError, ConfigurationError)


class TestRegistrySettingPriority:
    """Tests for override, environment and file precedence"""

    def test_environment_beats_file(self):
        """Test that CLEARNEAR_REGISTRY overrides the file"""
        path = write_config({"registry": {"url": "http://from-file:5000"}})
        try:
            with patch.dict(os.environ, {"CLEARNEAR_REGISTRY": "http://from-env:5000"}):
                cm = ConfigManager(config_file=path)
            assert cm.get_registry_url() == "http://from-env:5000"
        finally:
            os.unlink(path)

    def test_override_beats_environment(self):
        """Test that --registry overrides CLEARNEAR_REGISTRY"""
        with patch.dict(os.environ, {"CLEARNEAR_REGISTRY": "http://from-env:5000"}):
            cm = ConfigManager(config_file="/nonexistent/config.yaml",
                               overrides={"registry": {"url": "http://from-cli:5000"}})
            assert cm.get_registry_url() == "http://from-cli:5000"

    def test_trailing_slash_is_stripped(self):
        """Test that the registry URL loses its trailing slash"""
        cm = ConfigManager(config_file="/nonexistent/config.yaml",
                           overrides={"registry": {"url": "http://localhost:5000/"}})
        assert cm.get_registry_url() == "http://localhost:5000"

    def test_credentials_from_environment(self):
        """Test that credentials come from the environment"""
        with patch.dict(os.environ, {"REGISTRY_USERNAME": "robot", "REGISTRY_PASSWORD": "hunter2"}):
            cm = ConfigManager(config_file="/nonexistent/config.yaml")
            assert cm.get_registry_username() == "robot"
            assert cm.get_registry_password() == "hunter2"

    def test_override_keeps_other_sections(self):
        """Test that an override leaves other sections at their defaults"""
        cm = ConfigManager(config_file="/nonexistent/config.yaml",
                           overrides={"resolver": {"show_progress": False}})
        assert cm.get_show_progress() is False
        assert cm.get_max_workers() == 10


class TestConfigValidation:
    """Tests for validate_config"""

    @pytest.mark.parametrize("url", ["localhost:5000", "ftp://registry", "http://", "http://bad host"])
    def test_invalid_registry_url(self, url):
        """Test that malformed registry URLs are rejected"""
        with pytest.raises(ConfigValidationError, match="Registry URL"):
            ConfigManager(config_file="/nonexistent/config.yaml", overrides={"registry": {"url": url}})

    @pytest.mark.parametrize("url", ["http://localhost:5000", "https://registry.example.com",
                                     "http://10.0.0.5:5000/prefix"])
    def test_valid_registry_url(self, url):
        """Test that well-formed registry URLs are accepted"""
        ConfigManager(config_file="/nonexistent/config.yaml", overrides={"registry": {"url": url}})

    @pytest.mark.parametrize("workers", [0, 11, -3])
    def test_max_workers_out_of_range(self, workers):
        """Test that max_workers must be between 1 and 10"""
        with pytest.raises(ConfigValidationError, match="max_workers"):
            ConfigManager(config_file="/nonexistent/config.yaml", overrides={"resolver": {"max_workers": workers}})

    def test_non_numeric_value(self):
        """Test that a non-numeric value is a validation error"""
        with pytest.raises(ConfigValidationError, match="must be of type int"):
            ConfigManager(config_file="/nonexistent/config.yaml",
                          overrides={"resolver": {"max_workers": "many"}})

    def test_non_positive_timeout(self):
        """Test that the timeout must be positive"""
        with pytest.raises(ConfigValidationError, match="timeout"):
            ConfigManager(config_file="/nonexistent/config.yaml", overrides={"registry": {"timeout": 0}})

    def test_max_delay_below_initial_delay(self):
        """Test that max_delay must not be below initial_delay"""
        with pytest.raises(ConfigValidationError, match="max_delay"):
            ConfigManager(config_file="/nonexistent/config.yaml",
                          overrides={"retry": {"initial_delay": 10, "max_delay": 5}})

    def test_rate_limit_checked_only_when_enabled(self):
        """Test that rate limit values are validated only when enabled"""
        ConfigManager(config_file="/nonexistent/config.yaml",
                      overrides={"registry": {"rate_limit": {"requests_per_second": 0}}})
        with pytest.raises(ConfigValidationError, match="requests_per_second"):
            ConfigManager(config_file="/nonexistent/config.yaml",
                          overrides={"registry": {"rate_limit": {"enabled": True, "requests_per_second": 0}}})

    def test_collects_every_error(self):
        """Test that all problems are reported together"""
        with pytest.raises(ConfigValidationError) as exc_info:
            ConfigManager(config_file="/nonexistent/config.yaml",
                          overrides={"registry": {"timeout": -1}, "retry": {"max_retries": -1}})
        assert "timeout" in str(exc_info.value)
        assert "max_retries" in str(exc_info.value)

    def test_half_configured_credentials_only_warn(self, caplog):
        """Test that a username without password only warns"""
        with patch.dict(os.environ, {"REGISTRY_USERNAME": "robot"}):
            cm = ConfigManager(config_file="/nonexistent/config.yaml")
        assert cm.get_registry_username() == "robot"
        assert "username/password" in caplog.text

    def test_validate_false_skips_checks(self):
        """Test that validate=False skips validation"""
        cm = ConfigManager(config_file="/nonexistent/config.yaml", validate=False,
                           overrides={"resolver": {"max_workers": 50}})
        assert cm.get_max_workers() == 50
