#!/usr/bin/env python3
"""
Configuration Manager for clearnear

This module handles loading and managing configuration from config.yaml,
environment variables and command-line overrides.
"""

import logging
import os
import re
from typing import Any, Dict, Optional

import yaml

from clearnear.error_utils import ConfigurationError


MAX_RESOLVER_WORKERS = 10


class ConfigValidationError(ConfigurationError):
    """Raised when configuration validation fails"""

    def __init__(self, message: str):
        super().__init__(message, suggestions=["Check config-example.yaml for the expected format"])


def default_config() -> Dict[str, Any]:
    return {
        "registry": {
            "url": "http://localhost:5000",
            "username": None,
            "password": None,
            "verify_tls": True,
            "timeout": 30,
            "rate_limit": {
                "enabled": False,
                "requests_per_second": 20.0,
                "burst_size": 20,
            },
        },
        "resolver": {"max_workers": MAX_RESOLVER_WORKERS, "show_progress": True},
        "retry": {
            "max_retries": 3,
            "initial_delay": 1.0,
            "max_delay": 60.0,
            "exponential_base": 2.0,
            "jitter": True,
        },
        "reports": {"output_dir": "reports"},
        "security": {"require_confirmation": False},
    }


class ConfigManager:
    """Manages configuration for a clearnear run"""

    def __init__(self, config_file: Optional[str] = None, validate: bool = True,
                 overrides: Optional[Dict[str, Any]] = None):
        """Initialize ConfigManager

        Args:
            config_file: Path to configuration YAML file (defaults to CLEARNEAR_CONFIG env var or ./config.yaml)
            validate: If True, validate configuration on initialization
            overrides: Nested dict applied on top of file and defaults (used for CLI flags)
        """
        if config_file is None:
            config_file = os.environ.get("CLEARNEAR_CONFIG")
        self.explicit_config = bool(config_file)
        self.config_file = config_file or "config.yaml"
        self.overrides = overrides or {}
        self.config = self._merge_config(self._load_config(), self.overrides)

        if validate:
            self.validate_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file with defaults"""
        defaults = default_config()
        if not os.path.exists(self.config_file):
            if self.explicit_config:
                logging.warning(f"Config file {self.config_file} not found, using defaults")
            else:
                logging.debug(f"Config file {self.config_file} not found, using defaults")
            return defaults

        try:
            with open(self.config_file, "r") as f:
                user_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigValidationError(f"Could not read config file {self.config_file}: {e}")

        if not isinstance(user_config, dict):
            raise ConfigValidationError(f"Config file {self.config_file} must contain a mapping at the top level")
        return self._merge_config(defaults, user_config)

    def _merge_config(self, default: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge user config with defaults"""
        result = default.copy()
        for key, value in user.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value
        return result

    def _coerce(self, section: str, key: str, kind: type, fallback: Any) -> Any:
        value = self.config.get(section, {}).get(key, fallback)
        try:
            return kind(value)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"{section}.{key} must be of type {kind.__name__}, got: {value} (type: {type(value).__name__})"
            )

    def _registry_setting(self, key: str, env_var: str) -> Optional[str]:
        """Priority: command-line override -> environment -> config file -> default"""
        override = self.overrides.get("registry", {}).get(key)
        if override:
            return override
        return os.environ.get(env_var) or self.config["registry"].get(key)

    # Registry configuration
    def get_registry_url(self) -> str:
        """Get registry URL without trailing slash"""
        url = self._registry_setting("url", "CLEARNEAR_REGISTRY") or ""
        return str(url).rstrip("/")

    def get_registry_username(self) -> Optional[str]:
        return self._registry_setting("username", "REGISTRY_USERNAME")

    def get_registry_password(self) -> Optional[str]:
        return self._registry_setting("password", "REGISTRY_PASSWORD")

    def get_verify_tls(self) -> bool:
        return bool(self.config["registry"].get("verify_tls", True))

    def get_request_timeout(self) -> float:
        """Get per-request timeout in seconds"""
        return self._coerce("registry", "timeout", float, 30)

    def get_rate_limit_enabled(self) -> bool:
        return bool(self.config["registry"].get("rate_limit", {}).get("enabled", False))

    def get_rate_limit_rps(self) -> float:
        return float(self.config["registry"].get("rate_limit", {}).get("requests_per_second", 20.0))

    def get_rate_limit_burst(self) -> int:
        return int(self.config["registry"].get("rate_limit", {}).get("burst_size", 20))

    # Resolver configuration
    def get_max_workers(self) -> int:
        """Get resolver worker count, with type coercion"""
        return self._coerce("resolver", "max_workers", int, MAX_RESOLVER_WORKERS)

    def get_show_progress(self) -> bool:
        return bool(self.config.get("resolver", {}).get("show_progress", True))

    # Retry configuration
    def get_max_retries(self) -> int:
        return self._coerce("retry", "max_retries", int, 3)

    def get_retry_initial_delay(self) -> float:
        return self._coerce("retry", "initial_delay", float, 1.0)

    def get_retry_max_delay(self) -> float:
        return self._coerce("retry", "max_delay", float, 60.0)

    def get_retry_exponential_base(self) -> float:
        return self._coerce("retry", "exponential_base", float, 2.0)

    def get_retry_jitter(self) -> bool:
        return bool(self.config.get("retry", {}).get("jitter", True))

    # Reports and security
    def get_output_dir(self) -> str:
        return self.config.get("reports", {}).get("output_dir", "reports")

    def requires_confirmation(self) -> bool:
        return bool(self.config.get("security", {}).get("require_confirmation", False))

    def validate_config(self) -> None:
        """Validate configuration values

        Raises:
            ConfigValidationError: If configuration is invalid
        """
        errors = []
        warnings = []

        registry_url = self.get_registry_url()
        if not registry_url:
            errors.append("Registry URL is required and cannot be empty")
        elif not self._is_valid_registry_url(registry_url):
            errors.append(
                f"Registry URL '{registry_url}' is invalid (expected format: http(s)://hostname[:port][/path])"
            )

        if bool(self.get_registry_username()) != bool(self.get_registry_password()):
            warnings.append("Only one of registry username/password is set; requests will be sent without auth")

        timeout = self.get_request_timeout()
        if timeout <= 0:
            errors.append(f"registry.timeout must be a positive number (seconds), got: {timeout}")

        if self.get_rate_limit_enabled():
            if self.get_rate_limit_rps() <= 0:
                errors.append(f"registry.rate_limit.requests_per_second must be positive, got: {self.get_rate_limit_rps()}")
            if self.get_rate_limit_burst() < 1:
                errors.append(f"registry.rate_limit.burst_size must be >= 1, got: {self.get_rate_limit_burst()}")

        max_workers = self.get_max_workers()
        if max_workers < 1 or max_workers > MAX_RESOLVER_WORKERS:
            errors.append(f"resolver.max_workers must be between 1 and {MAX_RESOLVER_WORKERS}, got: {max_workers}")

        max_retries = self.get_max_retries()
        if max_retries < 0:
            errors.append(f"retry.max_retries must be a non-negative integer, got: {max_retries}")
        elif max_retries > 10:
            warnings.append(f"max_retries is very high ({max_retries}), operations may take a long time")

        initial_delay = self.get_retry_initial_delay()
        if initial_delay < 0:
            errors.append(f"retry.initial_delay must be a non-negative number, got: {initial_delay}")

        max_delay = self.get_retry_max_delay()
        if max_delay < 0:
            errors.append(f"retry.max_delay must be a non-negative number, got: {max_delay}")
        elif max_delay < initial_delay:
            errors.append(f"retry.max_delay ({max_delay}) must be >= retry.initial_delay ({initial_delay})")

        exponential_base = self.get_retry_exponential_base()
        if exponential_base < 1.0:
            errors.append(f"retry.exponential_base must be >= 1.0, got: {exponential_base}")

        for warning in warnings:
            logging.warning(f"Configuration warning: {warning}")

        if errors:
            error_msg = "Configuration validation failed:\n  " + "\n  ".join(errors)
            raise ConfigValidationError(error_msg)

    def _is_valid_registry_url(self, url: str) -> bool:
        """Validate registry URL format"""
        pattern = r"^https?://[a-zA-Z0-9]([a-zA-Z0-9\-\.]*[a-zA-Z0-9])?(:[0-9]{1,5})?(/[^\s]*)?$"
        return bool(re.match(pattern, url))
