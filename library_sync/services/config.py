"""Configuration service for managing application settings."""

import json
import os
from dataclasses import fields, replace
from pathlib import Path
from typing import Any

import structlog
from dotenv import load_dotenv

from ..models import AppConfig
from .errors import ConfigurationError

log = structlog.stdlib.get_logger()

DEFAULT_CACHE_DIRECTORY = Path("out")

# Environment variable -> AppConfig field
ENVIRONMENT_SETTINGS = {
    "STEAM_API_KEY": "steam_api_key",
    "DIRECTUS_API_ENDPOINT": "directus_endpoint",
    "DIRECTUS_API_TOKEN": "directus_token",
    "HLTB_AUTH_TOKEN": "hltb_auth_token",
    "LIBRARY_SYNC_CACHE_DIR": "cache_directory",
}

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class ValidationResult:
    """Result of configuration validation."""

    def __init__(self, is_valid: bool, errors: list[str] | None = None) -> None:
        self.is_valid: bool = is_valid
        self.errors: list[str] = errors or []


class ConfigurationService:
    """Builds the application configuration from defaults, an optional JSON file and the environment.

    Later sources override earlier ones. Credentials normally come from the
    environment or a ``.env`` file in the working directory.
    """

    def __init__(self, config_path: Path | None = None, environ: dict[str, str] | None = None) -> None:
        self.config_path: Path | None = config_path
        self._environ = environ
        log.info("Configuration service initialized", config_path=str(config_path) if config_path else None)

    def load_config(self) -> AppConfig:
        """Load the configuration.

        Raises:
            ConfigurationError: If the resulting configuration is invalid
        """
        config = self._get_default_config()

        if self.config_path is not None:
            config = self._overlay(config, self._read_config_file(self.config_path))

        config = self._overlay(config, self._read_environment())

        validation_result = self.validate_config(config)
        if not validation_result.is_valid:
            raise ConfigurationError(
                f"Invalid configuration: {'; '.join(validation_result.errors)}",
                setting=str(self.config_path) if self.config_path else None,
            )

        log.info(
            "Configuration loaded",
            cache_directory=str(config.cache_directory),
            language=config.language,
            has_steam_api_key=bool(config.steam_api_key),
            has_directus=bool(config.directus_endpoint and config.directus_token),
            has_hltb_token=bool(config.hltb_auth_token),
        )
        return config

    def validate_config(self, config: AppConfig) -> ValidationResult:
        """Validate configuration settings."""
        errors = []

        if not str(config.cache_directory):
            errors.append("cache_directory cannot be empty")

        if not config.language:
            errors.append("language cannot be empty")

        # Validate request delays
        for name in ("store_request_delay", "statistics_request_delay", "estimate_request_delay",
                     "estimate_failure_delay_step", "estimate_recapture_delay"):
            value = getattr(config, name)
            if not isinstance(value, (int, float)) or value < 0:
                errors.append(f"{name} must be a non-negative number")
            elif value > 60:
                errors.append(f"{name} should not exceed 60 seconds")

        if not isinstance(config.estimate_max_failures, int) or config.estimate_max_failures < 1:
            errors.append("estimate_max_failures must be a positive integer")

        if not isinstance(config.auth_capture_timeout, (int, float)) or config.auth_capture_timeout <= 0:
            errors.append("auth_capture_timeout must be a positive number")

        if config.log_level not in VALID_LOG_LEVELS:
            errors.append(f"log_level must be one of: {', '.join(sorted(VALID_LOG_LEVELS))}")

        if config.directus_endpoint and not config.directus_endpoint.startswith(("http://", "https://")):
            errors.append("directus_endpoint must be an http(s) URL")

        return ValidationResult(len(errors) == 0, errors)

    @staticmethod
    def require(config: AppConfig, *settings: str) -> None:
        """Fail unless every named setting has a value.

        Raises:
            ConfigurationError: For the first missing setting
        """
        environment_names = {field_name: env_name for env_name, field_name in ENVIRONMENT_SETTINGS.items()}
        for setting in settings:
            if not getattr(config, setting):
                env_name = environment_names.get(setting)
                raise ConfigurationError(
                    f"Missing required setting {setting}",
                    setting=env_name or setting,
                    expected=f"{env_name} in the environment" if env_name else None,
                )

    def _get_default_config(self) -> AppConfig:
        """Get default configuration."""
        return AppConfig(cache_directory=DEFAULT_CACHE_DIRECTORY)

    def _read_config_file(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            log.info("Configuration file not found, using defaults", config_path=str(path))
            return {}

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f"Failed to read configuration file: {e}",
                setting=str(path),
                expected="a JSON object",
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError("Configuration file must hold a JSON object", setting=str(path))

        known = {f.name for f in fields(AppConfig)}
        unknown = sorted(set(data) - known)
        if unknown:
            log.warning("Ignoring unknown configuration keys", keys=unknown)
        return {key: value for key, value in data.items() if key in known}

    def _read_environment(self) -> dict[str, Any]:
        if self._environ is None:
            load_dotenv()
            environ: dict[str, str] = dict(os.environ)
        else:
            environ = self._environ

        return {
            field_name: environ[env_name]
            for env_name, field_name in ENVIRONMENT_SETTINGS.items()
            if environ.get(env_name)
        }

    def _overlay(self, config: AppConfig, overrides: dict[str, Any]) -> AppConfig:
        if not overrides:
            return config
        values = dict(overrides)
        if "cache_directory" in values:
            values["cache_directory"] = Path(str(values["cache_directory"]))
        try:
            return replace(config, **values)
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration value: {e}") from e
