"""
Configuration system for chart-releaser.

Provides unified option loading with:
- Environment variable mapping (CR_*)
- YAML & JSON config file support with default search locations
- Precedence rules (CLI > env > file > defaults)
- Schema validation via Pydantic
- Per-command required option checks
"""

from .loader import ConfigLoader, load_config, REQUIRED_OPTIONS
from .schema import Options, DEFAULT_RELEASE_NAME_TEMPLATE

__all__ = [
    "ConfigLoader",
    "load_config",
    "REQUIRED_OPTIONS",
    "Options",
    "DEFAULT_RELEASE_NAME_TEMPLATE",
]
