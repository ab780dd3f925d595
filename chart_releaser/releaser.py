#!/usr/bin/env python3
"""
Chart Releaser

Publishes packaged charts as GitHub releases and keeps the chart repository
index in step with what has been released.

Workflow:
    1. create_releases(): one tagged release per chart archive, with the
       archive, its provenance file and release notes attached
    2. update_index_file(): add every released chart version missing from
       the index, write it, and optionally push it (or open a pull request)
       to the pages branch
"""

import logging
import random
import shutil
import string
import time
from contextlib import contextmanager
from pathlib import Path, PurePosixPath
from typing import Callable, Iterator, List, Optional, Tuple
from urllib.parse import unquote, urlparse

from .config.schema import Options
from .errors import ChartError, GitError, GitHubError, NoPackagesFoundError, TemplateError
from .git import VersionControl
from .github import (
    RETRY_ATTEMPTS,
    RETRY_INTERVAL_SECONDS,
    Asset,
    Release,
    ReleaseRepository,
    retry,
)
from .index import IndexFile, load_index_file, new_index_file, now_timestamp, version_sort_key
from .packager import (
    CHART_ARCHIVE_EXTENSION,
    PROVENANCE_EXTENSION,
    Chart,
    digest_file,
    find_packages,
    load_chart,
)

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "chart-releaser-"
BRANCH_SUFFIX_LENGTH = 16
BRANCH_ALPHABET = string.ascii_lowercase + string.digits


def split_package_name_and_version(pkg: str) -> Tuple[str, str]:
    """
    Split ``<name>-<version>`` on its last hyphen.

    Chart names may contain hyphens, versions may not. A string without
    any hyphen raises ValueError.
    """
    delim = pkg.rindex("-")
    return pkg[:delim], pkg[delim + 1:]


class Releaser:
    """
    Release publisher and index reconciler.

    Collaborators are injected so they can be replaced in tests:
    the release repository (GitHub), the version control worktree (git)
    and the random source used for pull request branch names.
    """

    def __init__(
        self,
        options: Options,
        github: ReleaseRepository,
        git: VersionControl,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.options = options
        self.github = github
        self.git = git
        self.rng = rng or random.Random()
        self.sleep = sleep

    # ========================================================================
    # RELEASE PUBLISHING
    # ========================================================================

    def create_releases(self) -> List[Release]:
        """
        Create a GitHub release for every chart archive in the package path.

        Returns:
            The releases that were created

        Raises:
            NoPackagesFoundError: If the package path holds no archives
            ChartError: If an archive is not a chart package
            TemplateError: If the release name template cannot be rendered
            GitHubError: If creating a release fails
        """
        packages = self._list_packages()
        if not packages:
            raise NoPackagesFoundError(f"no charts found at {self.options.package_path}")

        created = []
        for package in packages:
            chart = load_chart(package)
            release_name = self.compute_release_name(chart)
            notes = self.compute_release_notes(chart)

            if self.options.skip_existing:
                existing = self.github.get_release(release_name)
                if existing is not None:
                    logger.info(
                        f"Release {release_name} already exists, skipping",
                        extra={"chart": chart.metadata.name, "release": release_name},
                    )
                    continue

            release = Release(
                name=release_name,
                description=notes,
                commit=self.options.commit,
                make_latest=self.options.make_release_latest,
                assets=[Asset(path=str(package))],
            )
            prov_file = Path(f"{package}{PROVENANCE_EXTENSION}")
            if prov_file.exists():
                release.assets.append(Asset(path=str(prov_file)))

            try:
                self.github.create_release(release)
            except GitHubError as e:
                raise GitHubError(f"error creating GitHub release {release_name}: {e}") from e
            logger.info(
                f"Released {package.name} as {release_name}",
                extra={"chart": chart.metadata.name, "version": chart.metadata.version, "release": release_name},
            )
            created.append(release)

            if self.options.packages_with_index:
                self._publish_package(package, release_name)

        return created

    def compute_release_name(self, chart: Chart) -> str:
        """Render the release name template against the chart metadata."""
        template = self.options.release_name_template
        try:
            name = template.format_map(chart.metadata.template_fields())
        except (KeyError, IndexError, ValueError, AttributeError) as e:
            raise TemplateError(f"invalid release name template {template!r}: {e}") from e
        if not name:
            raise TemplateError(f"release name template {template!r} rendered an empty name")
        return name

    def compute_release_notes(self, chart: Chart) -> str:
        """
        Release notes for a chart.

        Order of preference: the configured notes file from the chart,
        notes generated by GitHub when this is the newest version of the
        chart, the chart description.
        """
        notes_file = self.options.release_notes_file
        if notes_file:
            data = chart.get_file(notes_file)
            if data is not None:
                return data.decode("utf-8")
            logger.warning(f"The release note file {notes_file!r} is not present in the chart package")

        if self.options.generate_release_notes:
            metadata = chart.metadata
            prefix = f"{metadata.name}-"
            latest = self.github.get_latest_release(prefix)
            previous_tag = ""
            is_newest = True
            if latest is not None:
                previous_tag = latest.name
                # Prerelease versions carry hyphens of their own
                if latest.name.startswith(prefix):
                    previous_version = latest.name[len(prefix):]
                else:
                    previous_version = latest.name
                is_newest = version_sort_key(metadata.version) > version_sort_key(previous_version)

            if is_newest:
                return self.github.generate_release_notes(previous_tag, self.compute_release_name(chart))
            logger.info(
                f"{metadata.name} {metadata.version} is not newer than {previous_tag}, "
                "using the chart description as release notes"
            )

        return chart.metadata.description

    def _publish_package(self, package: Path, release_name: str) -> None:
        """Commit a chart archive to the pages branch and publish it."""
        with self._worktree() as worktree:
            target = Path(worktree) / package.name
            shutil.copyfile(package, target)
            self.git.add(worktree, str(target))
            self._commit_and_publish(worktree, f"Publishing chart package for {release_name}")

    # ========================================================================
    # INDEX RECONCILIATION
    # ========================================================================

    def update_index_file(self) -> bool:
        """
        Add released chart versions missing from the index.

        Returns:
            True when the index changed and was written, False otherwise

        Raises:
            ChartError: If a local archive is not a chart package
            TemplateError: If the release name template cannot be rendered
            GitHubError: If release lookups fail after retries
            GitError: If a git operation fails
            IndexFileError: If the index cannot be read or written
        """
        with self._worktree() as worktree:
            worktree_index = Path(worktree) / self.options.pages_index_path
            index_file = self._load_index(worktree_index)

            changed = False
            for package in self._list_packages():
                if self._reconcile_package(index_file, package):
                    changed = True

            if not changed:
                logger.info(f"Index {self.options.index_path} did not change")
                return False

            logger.info(f"Updating index {self.options.index_path}")
            index_file.sort_entries()
            index_file.generated = now_timestamp()
            index_file.write(self.options.index_path)

            if not self.options.push and not self.options.pr:
                return True

            self.git.pull(worktree, self.options.remote, self.options.pages_branch)
            worktree_index.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(self.options.index_path, worktree_index)
            self.git.add(worktree, str(worktree_index))
            self._commit_and_publish(worktree, f"Update {self.options.pages_index_path}")
            return True

    def _load_index(self, path: Path) -> IndexFile:
        if path.exists():
            logger.info(f"Using existing index at {path}")
            return load_index_file(path)
        logger.info(f"Creating new index, none found at {path}")
        return new_index_file()

    def _reconcile_package(self, index_file: IndexFile, package: Path) -> bool:
        """Add the released version of one local archive; True when added."""
        chart = load_chart(package)
        release_name = self.compute_release_name(chart)

        release = retry(
            RETRY_ATTEMPTS,
            RETRY_INTERVAL_SECONDS,
            lambda: self.github.get_release(release_name),
            sleep=self.sleep,
        )
        if release is None:
            logger.warning(
                f"No release {release_name} found for {package.name}, skipping",
                extra={"chart": chart.metadata.name, "release": release_name},
            )
            return False

        for asset in release.assets:
            name = PurePosixPath(unquote(urlparse(asset.url).path)).name
            # Other files attached to the release are not chart packages
            if not name.endswith(CHART_ARCHIVE_EXTENSION):
                continue

            metadata = chart.metadata
            if name == f"{metadata.name}-{metadata.version}{CHART_ARCHIVE_EXTENSION}":
                package_name, package_version = metadata.name, metadata.version
            else:
                package_name, package_version = split_package_name_and_version(
                    name[:-len(CHART_ARCHIVE_EXTENSION)]
                )
            logger.info(f"Found {package_name}-{package_version}{CHART_ARCHIVE_EXTENSION}")
            if index_file.has(package_name, package_version):
                return False
            self.add_to_index_file(index_file, asset.url, package)
            return True

        return False

    def add_to_index_file(self, index_file: IndexFile, url: str, package: Optional[Path] = None) -> None:
        """
        Add the local archive named by a release asset URL to the index.

        The archive is the discovered package when its file name matches the
        asset, otherwise the asset file name under the package path. The
        entry points at the asset URL, or at the bare file name when packages
        are published next to the index.
        """
        filename = PurePosixPath(unquote(urlparse(url).path)).name
        if package is not None and package.name == filename:
            archive = package
        else:
            archive = Path(self.options.package_path) / filename

        logger.info(f"Extracting chart metadata from {archive}")
        chart = load_chart(archive)

        logger.info(f"Calculating hash for {archive}")
        try:
            digest = digest_file(archive)
        except OSError as e:
            raise ChartError(f"failed to hash {archive}: {e}") from e

        base_url = "" if self.options.packages_with_index else url.rsplit("/", 1)[0]
        index_file.add(chart.metadata, filename, base_url, digest)

    # ========================================================================
    # PAGES BRANCH PUBLICATION
    # ========================================================================

    @contextmanager
    def _worktree(self) -> Iterator[str]:
        """Detached worktree of the pages branch, removed on exit."""
        committish = f"{self.options.remote}/{self.options.pages_branch}"
        worktree = self.git.add_worktree("", committish)
        try:
            yield worktree
        except BaseException:
            # A removal failure must not hide the error being raised
            try:
                self.git.remove_worktree("", worktree)
            except GitError as e:
                logger.error(f"Failed to remove worktree {worktree}: {e}")
            raise
        self.git.remove_worktree("", worktree)

    def _commit_and_publish(self, worktree: str, message: str) -> None:
        """Commit staged changes, then push or open a pull request."""
        self.git.commit(worktree, message)

        if not self.options.push and not self.options.pr:
            return

        pages_branch = self.options.pages_branch
        push_url = self.git.get_push_url(self.options.remote, self.options.token_value())

        if self.options.push:
            self.git.push(worktree, push_url, f"HEAD:refs/heads/{pages_branch}")
            logger.info(f"Pushed to {pages_branch}")
        else:
            branch = self.random_branch_name()
            self.git.push(worktree, push_url, f"HEAD:refs/heads/{branch}")
            logger.info(f"Creating pull request from {branch} against {pages_branch}")
            pr_url = self.github.create_pull_request(message, branch, pages_branch)
            logger.info(f"Pull request created: {pr_url}")

    def random_branch_name(self) -> str:
        suffix = "".join(self.rng.choice(BRANCH_ALPHABET) for _ in range(BRANCH_SUFFIX_LENGTH))
        return f"{BRANCH_PREFIX}{suffix}"

    def _list_packages(self) -> List[Path]:
        return find_packages(self.options.package_path, recursive=self.options.recursive)
