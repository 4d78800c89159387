"""Configuration management for uupd.

This module provides YAML-based configuration loading. The first existing
file of the search path wins; ``UUPD_*`` environment variables are layered
on top of it before validation.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
import yaml
from pydantic import BaseModel, ValidationError

from .interfaces import ConfigLoader
from .models import UupdConfig

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

logger = structlog.get_logger(__name__)

CONFIG_FILE_NAME = "uupd.yml"
SYSTEM_CONFIG_DIR = Path("/etc/uupd")
ENV_PREFIX = "UUPD_"

# Variable names that predate the UUPD_<SECTION>_<KEY> scheme
LEGACY_ENV_KEYS: dict[str, tuple[str, ...]] = {
    "UUPD_BOOTC_BINARY": ("modules", "system", "bootc-binary"),
    "UUPD_RPMOSTREE_BINARY": ("modules", "system", "rpm-ostree-binary"),
    "UUPD_SKOPEO_BINARY": ("modules", "system", "skopeo-binary"),
    "UUPD_FLATPAK_BINARY": ("modules", "flatpak", "flatpak-binary"),
    "UUPD_DISTROBOX_BINARY": ("modules", "distrobox", "distrobox-binary"),
}


class ConfigError(Exception):
    """Configuration file could not be read or validated."""


def get_config_search_paths(environ: Mapping[str, str] | None = None) -> list[Path]:
    """Return the configuration files to try, in priority order.

    Args:
        environ: Environment to read SUDO_HOME, XDG_CONFIG_HOME and HOME from.

    Returns:
        Candidate configuration file paths.
    """
    env = os.environ if environ is None else environ
    paths = [SYSTEM_CONFIG_DIR / CONFIG_FILE_NAME]

    if sudo_home := env.get("SUDO_HOME"):
        paths.append(Path(sudo_home) / ".config" / "uupd" / CONFIG_FILE_NAME)
    elif xdg_config := env.get("XDG_CONFIG_HOME"):
        paths.append(Path(xdg_config) / "uupd" / CONFIG_FILE_NAME)
    elif home := env.get("HOME"):
        paths.append(Path(home) / ".config" / "uupd" / CONFIG_FILE_NAME)

    return paths


def env_variable_for(path: tuple[str, ...]) -> str:
    """Return the environment variable overriding a configuration key.

    ``("modules", "system", "bootc-binary")`` maps to
    ``UUPD_MODULES_SYSTEM_BOOTC_BINARY``.
    """
    return ENV_PREFIX + "_".join(part.replace("-", "_").replace(".", "_").upper() for part in path)


def _leaf_keys(model: type[BaseModel], prefix: tuple[str, ...] = ()) -> Iterator[tuple[str, ...]]:
    for name, field in model.model_fields.items():
        path = (*prefix, field.alias or name)
        annotation = field.annotation
        if isinstance(annotation, type) and issubclass(annotation, BaseModel):
            yield from _leaf_keys(annotation, path)
        else:
            yield path


def _set_path(data: dict[str, Any], path: tuple[str, ...], value: str) -> None:
    node = data
    for part in path[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[path[-1]] = value


def apply_env_overrides(data: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    """Layer ``UUPD_*`` environment variables over raw configuration data.

    Args:
        data: Raw configuration dictionary (modified in place).
        environ: Environment to read overrides from.

    Returns:
        The updated dictionary.
    """
    for path in _leaf_keys(UupdConfig):
        value = environ.get(env_variable_for(path))
        if value:
            _set_path(data, path, value)

    for variable, path in LEGACY_ENV_KEYS.items():
        value = environ.get(variable)
        if value:
            _set_path(data, path, value)

    return data


class YamlConfigLoader(ConfigLoader):
    """YAML-based configuration loader."""

    def load(self, path: str) -> dict[str, Any]:
        """Load configuration from a YAML file.

        Args:
            path: Path to the configuration file.

        Returns:
            Configuration dictionary.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            ConfigError: If the file is not a valid YAML mapping.
        """
        config_path = Path(path)

        if not config_path.exists():
            logger.debug("config_file_not_found", path=path)
            raise FileNotFoundError(f"Configuration file not found: {path}")

        try:
            data = yaml.safe_load(config_path.read_text())
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration root must be a mapping: {path}")

        return data

    def save(self, config: dict[str, Any], path: str) -> None:
        """Save configuration to a YAML file.

        Args:
            config: Configuration dictionary.
            path: Path to save the configuration.
        """
        config_path = Path(path)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        content = yaml.dump(config, default_flow_style=False, sort_keys=False)
        config_path.write_text(content)

        logger.info("config_saved", path=path)


class ConfigManager:
    """Loads the effective uupd configuration.

    Provides the file lookup, environment layering and validation in one
    place so that the entry point builds a single immutable config value.
    """

    def __init__(
        self,
        config_path: Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize the configuration manager.

        Args:
            config_path: Explicit configuration file. Disables the search path.
            environ: Environment used for lookups and overrides.
        """
        self.config_path = config_path
        self.environ: Mapping[str, str] = os.environ if environ is None else environ
        self._loader = YamlConfigLoader()
        self._config: UupdConfig | None = None
        self.loaded_from: Path | None = None

    def _find_config_file(self) -> Path | None:
        if self.config_path is not None:
            return self.config_path
        for candidate in get_config_search_paths(self.environ):
            if candidate.is_file():
                return candidate
        return None

    def load(self) -> UupdConfig:
        """Load configuration from file and environment.

        Returns:
            UupdConfig with loaded values, or defaults if no file exists.

        Raises:
            ConfigError: If the file is malformed or fails validation.
        """
        data: dict[str, Any] = {}
        path = self._find_config_file()

        if path is not None:
            try:
                data = self._loader.load(str(path))
                self.loaded_from = path
                logger.debug("config_loaded", path=str(path))
            except FileNotFoundError:
                if self.config_path is not None:
                    raise ConfigError(f"Configuration file not found: {path}") from None
                logger.info("using_default_config")
        else:
            logger.debug("using_default_config")

        apply_env_overrides(data, self.environ)

        try:
            self._config = UupdConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

        return self._config

    def get_config(self) -> UupdConfig:
        """Get the current configuration, loading it if needed."""
        if self._config is None:
            return self.load()
        return self._config

    def dump(self) -> dict[str, Any]:
        """Return the effective configuration with YAML key names."""
        return self.get_config().model_dump(mode="json", by_alias=True)

    def save(self, path: Path) -> None:
        """Write the effective configuration to ``path``."""
        self._loader.save(self.dump(), str(path))
