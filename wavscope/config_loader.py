"""
Configuration loader for analysis settings.

Reads AnalysisConfig overrides from YAML or JSON files. Overrides are
layered on top of a base config (DEFAULT_CONFIG or the environment),
so a file only needs to mention the keys it changes:

    # wavscope.yaml
    analysis:
      window_size: 4096
      fft_size: 4096
      max_workers: 4
"""

from pathlib import Path
from typing import Any, Dict, Optional, Union
import json
import logging

import yaml

from .config import AnalysisConfig, DEFAULT_CONFIG

logger = logging.getLogger(__name__)


class ConfigLoadError(Exception):
    """Raised when configuration loading fails."""
    pass


class ConfigLoader:
    """
    Loads analysis config files with caching.

    Attributes:
        config_dir: Base directory used to resolve relative file names
    """

    def __init__(self, config_dir: Optional[Union[str, Path]] = None):
        """
        Initialize the configuration loader.

        Args:
            config_dir: Base directory for config files.
                       Defaults to the current working directory.
        """
        self.config_dir = Path(config_dir) if config_dir is not None else Path.cwd()
        self._cache: Dict[str, Dict[str, Any]] = {}

    def _resolve(self, name: Union[str, Path]) -> Path:
        path = Path(name)
        if not path.is_absolute():
            path = self.config_dir / path
        return path

    def _load_file(self, path: Path) -> Dict[str, Any]:
        """
        Load a YAML or JSON file and return its contents.

        Raises:
            ConfigLoadError: If the file cannot be loaded or parsed
        """
        if not path.exists():
            raise ConfigLoadError(f"Configuration file not found: {path}")

        try:
            with open(path, 'r', encoding='utf-8') as f:
                if path.suffix.lower() == ".json":
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigLoadError(f"Failed to parse YAML file {path}: {e}")
        except json.JSONDecodeError as e:
            raise ConfigLoadError(f"Failed to parse JSON file {path}: {e}")
        except OSError as e:
            raise ConfigLoadError(f"Failed to load configuration file {path}: {e}")

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigLoadError(f"Configuration file {path} must contain a mapping")
        return data

    def load_overrides(self, name: Union[str, Path]) -> Dict[str, Any]:
        """
        Load the override mapping from a config file.

        Keys may sit at the top level or under an ``analysis`` section.

        Raises:
            ConfigLoadError: If the configuration cannot be loaded
        """
        path = self._resolve(name)
        cache_key = str(path)
        if cache_key in self._cache:
            return self._cache[cache_key]

        data = self._load_file(path)
        overrides = data.get("analysis", data)
        if not isinstance(overrides, dict):
            raise ConfigLoadError(f"'analysis' section in {path} must be a mapping")

        self._cache[cache_key] = overrides
        logger.debug(f"Loaded {len(overrides)} config override(s) from {path}")
        return overrides

    def load(
        self,
        name: Union[str, Path],
        base: Optional[AnalysisConfig] = None,
    ) -> AnalysisConfig:
        """
        Build an AnalysisConfig from a file layered over ``base``.

        Raises:
            ConfigLoadError: If the file is missing, unparsable, names an
                unknown key or holds an invalid value
        """
        overrides = self.load_overrides(name)
        try:
            return (base or DEFAULT_CONFIG).with_overrides(overrides)
        except (TypeError, ValueError) as e:
            raise ConfigLoadError(f"Invalid configuration in {self._resolve(name)}: {e}")

    def reload(self) -> None:
        """Clear the cache so files are read again on next access."""
        self._cache.clear()
        logger.info("Configuration cache cleared")


def load_analysis_config(
    path: Union[str, Path],
    base: Optional[AnalysisConfig] = None,
) -> AnalysisConfig:
    """Convenience wrapper: load one config file over ``base``."""
    return ConfigLoader().load(path, base=base)
