#!/usr/bin/env python3
"""
chart-releaser command line interface.

Commands:
  package       Package chart directories into versioned archives
  upload        Create a GitHub release for every packaged chart
  index         Update the chart repository index from the GitHub releases
                (also available as update-index)
  version       Print version information

Examples:
  cr package charts/my-chart --package-path .cr-release-packages
  cr upload --owner helm --git-repo charts --token "$CR_TOKEN"
  cr index --owner helm --git-repo charts --push
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .__version__ import get_full_version_info, get_version_string
from .config import ConfigLoader, Options
from .errors import ChartReleaserError
from .git import Git
from .github import GitHubClient
from .logging_config import configure_logging
from .packager import Packager
from .releaser import Releaser

logger = logging.getLogger("chart_releaser.cli")


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Option values given on the command line; unset flags are None and dropped later."""
    return {name: getattr(args, name) for name in Options.model_fields if hasattr(args, name)}


def _load_options(args: argparse.Namespace) -> Options:
    loader = ConfigLoader(config_file=args.config, overrides=_overrides(args))
    return loader.load(args.config_command)


def _new_releaser(options: Options) -> Releaser:
    github = GitHubClient(
        owner=options.owner,
        repo=options.git_repo,
        token=options.token_value(),
        base_url=options.git_base_url,
        upload_url=options.git_upload_url,
    )
    return Releaser(options, github, Git())


# ============================================================================
# COMMANDS
# ============================================================================

def run_package(args: argparse.Namespace) -> int:
    options = _load_options(args)
    packager = Packager(options, args.paths)
    packager.create_packages()
    return 0


def run_upload(args: argparse.Namespace) -> int:
    options = _load_options(args)
    releases = _new_releaser(options).create_releases()
    logger.info(f"Created {len(releases)} release(s)")
    return 0


def run_index(args: argparse.Namespace) -> int:
    options = _load_options(args)
    if _new_releaser(options).update_index_file():
        logger.info(f"Index {options.index_path} updated")
    return 0


def run_version(args: argparse.Namespace) -> int:
    if args.json:
        print(json.dumps(get_full_version_info(), indent=2))
    else:
        print(get_version_string())
    return 0


# ============================================================================
# PARSER
# ============================================================================

def _add_repo_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-o", "--owner", default=None, help="GitHub username or organization")
    parser.add_argument("-r", "--git-repo", default=None, help="GitHub repository")
    parser.add_argument("-t", "--token", default=None, help="GitHub Auth Token")
    parser.add_argument("-b", "--git-base-url", default=None, help="GitHub Base URL (only needed for private GitHub)")
    parser.add_argument(
        "-u", "--git-upload-url", default=None, help="GitHub Upload URL (only needed for private GitHub)"
    )
    parser.add_argument("-p", "--package-path", default=None, help="Path to directory with chart packages")
    parser.add_argument("--pages-branch", default=None, help="The GitHub pages branch")
    parser.add_argument("--remote", default=None, help="The Git remote used when creating a local worktree")
    parser.add_argument("--push", action="store_true", default=None, help="Push the pages branch")
    parser.add_argument(
        "--pr", action="store_true", default=None, help="Create a pull request against the pages branch"
    )
    parser.add_argument(
        "--release-name-template",
        default=None,
        help="Template for the release name, e.g. '{name}-{version}'",
    )
    parser.add_argument(
        "--packages-with-index",
        action="store_true",
        default=None,
        help="Host the package files in the GitHub Pages branch",
    )
    parser.add_argument(
        "--recursive", action="store_true", default=None, help="Search the package path recursively"
    )


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="cr",
        description="Host Helm Charts via GitHub Pages and Releases",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    # Global options
    parser.add_argument("--config", type=Path, default=None, help="Config file (YAML or JSON)")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Logging level",
    )
    parser.add_argument("--log-format", choices=["text", "json"], default="text", help="Log format")
    parser.add_argument("--log-file", type=Path, default=None, help="Also write logs to this file")

    subparsers = parser.add_subparsers(dest="command", help="Command")

    # package
    package_parser = subparsers.add_parser("package", help="Package Helm charts")
    package_parser.add_argument("paths", nargs="*", help="Chart directories, current directory when omitted")
    package_parser.add_argument("-p", "--package-path", default=None, help="Path to directory with chart packages")
    package_parser.add_argument("--sign", action="store_true", default=None, help="Use a PGP private key to sign")
    package_parser.add_argument("--key", default=None, help="Name of the key to use when signing")
    package_parser.add_argument("--keyring", default=None, help="Location of a public keyring")
    package_parser.add_argument("--passphrase-file", default=None, help="Location of a file with the key passphrase")
    package_parser.set_defaults(handler=run_package, config_command="package")

    # upload
    upload_parser = subparsers.add_parser("upload", help="Upload Helm chart packages to GitHub Releases")
    _add_repo_args(upload_parser)
    upload_parser.add_argument("-c", "--commit", default=None, help="Target commit for release")
    upload_parser.add_argument(
        "--release-notes-file", default=None, help="Markdown file inside the chart used as release notes"
    )
    upload_parser.add_argument(
        "--generate-release-notes",
        action="store_true",
        default=None,
        help="Let GitHub generate release notes for the newest chart version",
    )
    upload_parser.add_argument(
        "--make-release-latest",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Mark the created GitHub release as 'latest'",
    )
    upload_parser.add_argument(
        "--skip-existing", action="store_true", default=None, help="Skip charts already released"
    )
    upload_parser.set_defaults(handler=run_upload, config_command="upload")

    # index
    index_parser = subparsers.add_parser(
        "index",
        aliases=["update-index"],
        help="Update Helm repo index.yaml for the given GitHub repo",
    )
    _add_repo_args(index_parser)
    index_parser.add_argument("-i", "--index-path", default=None, help="Path to index file")
    index_parser.add_argument("--pages-index-path", default=None, help="The GitHub pages index path")
    index_parser.set_defaults(handler=run_index, config_command="index")

    # version
    version_parser = subparsers.add_parser("version", help="Print version information")
    version_parser.add_argument("--json", action="store_true", help="Print as JSON")
    version_parser.set_defaults(handler=run_version, config_command=None)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    configure_logging(level=args.log_level, format=args.log_format, log_file=args.log_file)

    try:
        return args.handler(args)
    except ChartReleaserError as e:
        logger.error(f"Error: {e}")
        return e.exit_code


if __name__ == "__main__":
    sys.exit(main())
