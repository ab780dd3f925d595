"""
Configuration Loader for chart-releaser

Implements precedence: CLI args > Environment variables > Config file > Defaults

Supports:
- YAML and JSON configuration files
- Default config discovery (./cr.yaml, ~/.cr/cr.yaml, /etc/cr/cr.yaml)
- Environment variable mapping (CR_*)
- Schema validation via Pydantic
- Required option checks per command
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml
from pydantic import ValidationError

from ..errors import ConfigError
from .schema import Options

logger = logging.getLogger(__name__)

CONFIG_NAME = "cr"
CONFIG_EXTENSIONS = (".yaml", ".yml", ".json")
CONFIG_SEARCH_LOCATIONS: List[Path] = [
    Path("."),
    Path.home() / ".cr",
    Path("/etc/cr"),
]

INDEX_FILE_NAME = "index.yaml"

# Options each command cannot run without
REQUIRED_OPTIONS: Dict[str, Sequence[str]] = {
    "package": ("package_path",),
    "upload": ("owner", "git_repo", "token"),
    "index": ("owner", "git_repo"),
}


class ConfigLoader:
    """
    Option loader with multi-source precedence.

    Precedence order (highest to lowest):
    1. CLI arguments (passed as overrides)
    2. Environment variables (CR_*)
    3. Config file (YAML/JSON)
    4. Schema defaults
    """

    ENV_PREFIX = "CR_"

    def __init__(
        self,
        config_file: Optional[Path] = None,
        overrides: Optional[Dict[str, Any]] = None,
        search_locations: Optional[List[Path]] = None,
        environ: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize configuration loader.

        Args:
            config_file: Explicit path to YAML/JSON config file
            overrides: CLI argument overrides (highest precedence)
            search_locations: Directories searched for cr.yaml when no file is given
            environ: Environment mapping, defaults to os.environ
        """
        self.config_file = config_file
        self.overrides = {k: v for k, v in (overrides or {}).items() if v is not None}
        self.search_locations = search_locations if search_locations is not None else CONFIG_SEARCH_LOCATIONS
        self.environ = environ if environ is not None else os.environ

    def load(self, command: Optional[str] = None) -> Options:
        """
        Load options with full precedence chain.

        Args:
            command: Command name used to select required options

        Returns:
            Validated Options instance

        Raises:
            ConfigError: On unreadable files, invalid values, missing
                required options or a malformed index path
        """
        config_dict: Dict[str, Any] = {}

        config_path = self._resolve_config_file()
        if config_path is not None:
            logger.info(f"Using config file: {config_path}")
            config_dict.update(self._load_config_file(config_path))

        config_dict.update(self._load_from_environment())
        config_dict.update(self.overrides)

        try:
            options = Options(**config_dict)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

        if command is not None:
            self._check_required(command, options)
            if command == "index":
                options.index_path = normalize_index_path(options.index_path)

        return options

    def _resolve_config_file(self) -> Optional[Path]:
        """Return the explicit config file or the first one found in the search locations."""
        if self.config_file is not None:
            if not self.config_file.exists():
                raise ConfigError(f"Error loading config file: {self.config_file} not found")
            return self.config_file

        for location in self.search_locations:
            for extension in CONFIG_EXTENSIONS:
                candidate = location / f"{CONFIG_NAME}{extension}"
                if candidate.is_file():
                    return candidate
        return None

    def _load_config_file(self, config_file: Path) -> Dict[str, Any]:
        """
        Load configuration from YAML or JSON file.

        Keys may be written with hyphens, as on the command line.
        """
        suffix = config_file.suffix.lower()

        try:
            with open(config_file, "r", encoding="utf-8") as f:
                if suffix in [".yaml", ".yml"]:
                    data = yaml.safe_load(f) or {}
                elif suffix == ".json":
                    data = json.load(f)
                else:
                    raise ConfigError(
                        f"Unsupported config file format: {suffix}. "
                        "Use .yaml, .yml, or .json"
                    )
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigError(f"Error loading config file {config_file}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Error loading config file {config_file}: expected a mapping")

        return {str(key).replace("-", "_"): value for key, value in data.items()}

    def _load_from_environment(self) -> Dict[str, Any]:
        """
        Load options from environment variables.

        Environment variable mapping:
        - CR_OWNER -> owner
        - CR_GIT_REPO -> git_repo
        - CR_PACKAGES_WITH_INDEX -> packages_with_index
        - etc.

        Values are passed through as strings; the schema converts them.
        """
        config_dict: Dict[str, Any] = {}

        for field_name in Options.model_fields:
            env_key = f"{self.ENV_PREFIX}{field_name.upper()}"
            if env_key in self.environ:
                config_dict[field_name] = self.environ[env_key]

        return config_dict

    def _check_required(self, command: str, options: Options) -> None:
        """Fail on the first required option left empty."""
        for name in REQUIRED_OPTIONS.get(command, ()):
            value = getattr(options, name)
            if name == "token":
                value = options.token_value()
            if value in ("", None):
                raise ConfigError(f"'--{name.replace('_', '-')}' is required")


def normalize_index_path(index_path: str) -> str:
    """
    Make sure the index path points at an index.yaml file.

    A directory gets index.yaml appended; any other path not named
    index.yaml is rejected.
    """
    path = Path(index_path)
    if path.name == INDEX_FILE_NAME:
        return index_path
    if path.is_dir():
        return str(path / INDEX_FILE_NAME)
    raise ConfigError(f"path ({index_path}) should be a directory or a file called {INDEX_FILE_NAME}")


def load_config(
    command: Optional[str] = None,
    config_file: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> Options:
    """
    Convenience function to load chart-releaser options.

    Args:
        command: Command whose required options are checked
        config_file: Path to YAML/JSON config file
        overrides: CLI argument overrides

    Returns:
        Validated Options instance

    Example:
        >>> options = load_config(
        ...     command="upload",
        ...     overrides={"owner": "helm", "git_repo": "charts", "token": "ghp_x"},
        ... )
    """
    loader = ConfigLoader(config_file=config_file, overrides=overrides)
    return loader.load(command)
