"""Version information for chart-releaser."""

import platform

__version__ = "1.6.1"

# Overridden by the release build
GIT_COMMIT = "unknown"
BUILD_DATE = "unknown"

MODULE_NAME = "chart-releaser"
MODULE_LICENSE = "Apache 2.0"


def get_version_string() -> str:
    """Get formatted version string."""
    return f"{MODULE_NAME} v{__version__}"


def get_full_version_info() -> dict:
    """Get complete version information."""
    return {
        "version": __version__,
        "git_commit": GIT_COMMIT,
        "build_date": BUILD_DATE,
        "python_version": platform.python_version(),
        "implementation": platform.python_implementation(),
        "platform": f"{platform.system().lower()}/{platform.machine().lower()}",
        "license": MODULE_LICENSE,
    }


if __name__ == "__main__":
    print(get_version_string())
    import json
    print(json.dumps(get_full_version_info(), indent=2))
