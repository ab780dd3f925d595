"""
GitHub Release Repository

Abstract release repository interface and its GitHub REST implementation:
release lookup/creation, asset upload, release notes generation and pull
requests.
"""

import logging
import mimetypes
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar
from urllib.parse import quote

import requests

from .errors import GitHubError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRY_ATTEMPTS = 3
RETRY_INTERVAL_SECONDS = 3.0
REQUEST_TIMEOUT_SECONDS = 60


def retry(attempts: int, interval: float, fn: Callable[[], T], sleep: Callable[[float], None] = time.sleep) -> T:
    """
    Call fn until it succeeds or the attempts run out.

    Sleeps a fixed interval between attempts and re-raises the last error.
    """
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except Exception as e:
            if attempt >= attempts:
                raise
            logger.warning(f"Attempt {attempt}/{attempts} failed: {e}; retrying in {interval}s")
            sleep(interval)
    raise ValueError("attempts must be at least 1")


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass
class Asset:
    """A release asset: local path when uploading, download URL when read back."""
    path: str = ""
    url: str = ""


@dataclass
class Release:
    """A tagged GitHub release."""
    name: str
    description: str = ""
    commit: str = ""
    make_latest: bool = True
    assets: List[Asset] = field(default_factory=list)
    created_at: str = ""
    id: Optional[int] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Release":
        return cls(
            name=data.get("tag_name") or data.get("name") or "",
            description=data.get("body") or "",
            commit=data.get("target_commitish") or "",
            assets=[
                Asset(url=a.get("browser_download_url") or "")
                for a in data.get("assets") or []
            ],
            created_at=data.get("created_at") or "",
            id=data.get("id"),
        )


# ============================================================================
# REPOSITORY ABSTRACTION
# ============================================================================

class ReleaseRepository(ABC):
    """Operations the releaser needs from a release hosting platform."""

    @abstractmethod
    def get_release(self, tag: str) -> Optional[Release]:
        """Return the release for a tag, or None when it does not exist."""

    @abstractmethod
    def list_releases(self) -> List[Release]:
        """List every release of the repository."""

    @abstractmethod
    def create_release(self, release: Release) -> None:
        """Create a release and upload its assets."""

    @abstractmethod
    def upload_asset(self, release_id: int, path: str) -> Asset:
        """Upload one file to an existing release."""

    @abstractmethod
    def get_latest_release(self, prefix: str) -> Optional[Release]:
        """Most recently created release whose tag starts with prefix."""

    @abstractmethod
    def generate_release_notes(self, previous_tag: str, tag: str) -> str:
        """Generate release notes for tag, starting from previous_tag when given."""

    @abstractmethod
    def create_pull_request(self, title: str, head: str, base: str, body: str = "") -> str:
        """Open a pull request and return its URL."""


class GitHubClient(ReleaseRepository):
    """
    GitHub REST API client.

    Works against github.com or a GitHub Enterprise instance through the
    configurable base and upload URLs.
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str = "",
        base_url: str = "https://api.github.com/",
        upload_url: str = "https://uploads.github.com/",
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.owner = owner
        self.repo = repo
        self.base_url = base_url.rstrip("/")
        self.upload_url = upload_url.rstrip("/")
        self.sleep = sleep

        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "chart-releaser",
        })
        if token:
            self.session.headers["Authorization"] = f"token {token}"

    def _repo_url(self, path: str) -> str:
        return f"{self.base_url}/repos/{self.owner}/{self.repo}/{path}"

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", REQUEST_TIMEOUT_SECONDS)
        try:
            return self.session.request(method, url, **kwargs)
        except requests.RequestException as e:
            raise GitHubError(f"{method} {url} failed: {e}") from e

    @staticmethod
    def _error_message(resp: requests.Response) -> str:
        try:
            return resp.json().get("message") or resp.reason
        except ValueError:
            return resp.reason or resp.text

    # ------------------------------------------------------------------
    # Releases
    # ------------------------------------------------------------------

    def get_release(self, tag: str) -> Optional[Release]:
        resp = self._request("GET", self._repo_url(f"releases/tags/{quote(tag, safe='')}"))
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise GitHubError(
                f"get release tag {tag}: invalid status: {resp.status_code} {self._error_message(resp)}"
            )
        return Release.from_api(resp.json())

    def list_releases(self) -> List[Release]:
        result: List[Release] = []
        url: Optional[str] = self._repo_url("releases")
        params: Optional[Dict[str, Any]] = {"per_page": 100}

        while url:
            resp = self._request("GET", url, params=params)
            if resp.status_code != 200:
                raise GitHubError(
                    f"list repository releases: invalid status code: {resp.status_code} {self._error_message(resp)}"
                )
            result.extend(Release.from_api(r) for r in resp.json())
            url = resp.links.get("next", {}).get("url")
            # The next link already carries the query string
            params = None

        return result

    def create_release(self, release: Release) -> None:
        payload: Dict[str, Any] = {
            "tag_name": release.name,
            "name": release.name,
            "body": release.description,
            "make_latest": "true" if release.make_latest else "false",
        }
        if release.commit:
            payload["target_commitish"] = release.commit

        resp = self._request("POST", self._repo_url("releases"), json=payload)
        if resp.status_code != 201:
            raise GitHubError(
                f"failed to create a release {release.name}: invalid status: "
                f"{resp.status_code} {self._error_message(resp)}"
            )
        release.id = resp.json().get("id")
        logger.info(f"Created release {release.name}")

        for asset in release.assets:
            uploaded = self.upload_asset(release.id, asset.path)
            asset.url = uploaded.url

    def upload_asset(self, release_id: int, path: str) -> Asset:
        file_path = Path(path).resolve()
        name = file_path.name
        url = (
            f"{self.upload_url}/repos/{self.owner}/{self.repo}/releases/{release_id}/assets"
            f"?name={quote(name)}"
        )
        content_type = mimetypes.guess_type(name)[0] or "application/octet-stream"

        def attempt() -> Asset:
            try:
                data = file_path.read_bytes()
            except OSError as e:
                raise GitHubError(f"failed to open file {file_path}: {e}") from e

            resp = self._request("POST", url, data=data, headers={"Content-Type": content_type})
            if resp.status_code == 201:
                return Asset(path=str(file_path), url=resp.json().get("browser_download_url") or "")
            if resp.status_code == 422:
                raise GitHubError(
                    "upload release asset: invalid status code: "
                    "422 (this is probably because the asset already uploaded)"
                )
            raise GitHubError(
                f"upload release asset {name}: invalid status code: {resp.status_code} {self._error_message(resp)}"
            )

        asset = retry(RETRY_ATTEMPTS, RETRY_INTERVAL_SECONDS, attempt, sleep=self.sleep)
        logger.info(f"Uploaded asset {name}")
        return asset

    def get_latest_release(self, prefix: str) -> Optional[Release]:
        latest: Optional[Release] = None
        for release in self.list_releases():
            if not release.name.startswith(prefix):
                continue
            # ISO 8601 timestamps from the API compare correctly as strings
            if latest is None or release.created_at > latest.created_at:
                latest = release
        return latest

    def generate_release_notes(self, previous_tag: str, tag: str) -> str:
        payload = {"tag_name": tag}
        if previous_tag:
            payload["previous_tag_name"] = previous_tag

        resp = self._request("POST", self._repo_url("releases/generate-notes"), json=payload)
        if resp.status_code != 200:
            raise GitHubError(
                f"failed to generate release notes for {tag}: invalid status: "
                f"{resp.status_code} {self._error_message(resp)}"
            )
        return resp.json().get("body") or ""

    # ------------------------------------------------------------------
    # Pull requests
    # ------------------------------------------------------------------

    def create_pull_request(self, title: str, head: str, base: str, body: str = "") -> str:
        payload = {
            "title": title,
            "head": head,
            "base": base,
            "body": body or f"Automated pull request created by chart-releaser for {head}",
        }
        resp = self._request("POST", self._repo_url("pulls"), json=payload)
        if resp.status_code != 201:
            raise GitHubError(
                f"failed to create pull request from {head} into {base}: invalid status: "
                f"{resp.status_code} {self._error_message(resp)}"
            )
        return resp.json().get("html_url") or ""
