"""
Chart Packager

Loads chart metadata from chart directories and packaged archives, and builds
versioned chart archives (``<name>-<version>.tgz``) ready for release.
"""

import fnmatch
import hashlib
import io
import logging
import subprocess
import tarfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

from .config.schema import Options
from .errors import ChartError

logger = logging.getLogger(__name__)

CHART_FILE = "Chart.yaml"
HELMIGNORE_FILE = ".helmignore"
CHART_ARCHIVE_EXTENSION = ".tgz"
PROVENANCE_EXTENSION = ".prov"

# Always left out of packages, on top of .helmignore
DEFAULT_IGNORE = [".git", ".git/*"]


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass
class ChartMetadata:
    """Contents of Chart.yaml."""
    name: str
    version: str
    description: str = ""
    api_version: str = ""
    app_version: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChartMetadata":
        extra = {
            k: v for k, v in data.items()
            if k not in ("name", "version", "description", "apiVersion", "appVersion")
        }
        return cls(
            name=str(data.get("name") or ""),
            version=str(data.get("version") or ""),
            description=str(data.get("description") or ""),
            api_version=str(data.get("apiVersion") or ""),
            app_version=str(data.get("appVersion") or ""),
            extra=extra,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Chart.yaml keys, as stored in index entries."""
        data: Dict[str, Any] = dict(self.extra)
        data["name"] = self.name
        data["version"] = self.version
        if self.description:
            data["description"] = self.description
        if self.api_version:
            data["apiVersion"] = self.api_version
        if self.app_version:
            data["appVersion"] = self.app_version
        return data

    def template_fields(self) -> Dict[str, str]:
        """Fields available to the release name template."""
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "api_version": self.api_version,
            "app_version": self.app_version,
        }


@dataclass
class Chart:
    """A loaded chart: its metadata plus every file keyed by chart-relative path."""
    metadata: ChartMetadata
    files: Dict[str, bytes] = field(default_factory=dict)

    def get_file(self, name: str) -> Optional[bytes]:
        return self.files.get(name)


# ============================================================================
# LOADING
# ============================================================================

def _parse_metadata(raw: bytes, source: Path) -> ChartMetadata:
    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError as e:
        raise ChartError(f"{source} is not a helm chart package: invalid {CHART_FILE}: {e}") from e

    if not isinstance(data, dict):
        raise ChartError(f"{source} is not a helm chart package: {CHART_FILE} is not a mapping")

    metadata = ChartMetadata.from_dict(data)
    if not metadata.name:
        raise ChartError(f"{source} is not a helm chart package: chart name is required")
    if not metadata.version:
        raise ChartError(f"{source} is not a helm chart package: chart version is required")
    return metadata


def _load_archive(path: Path) -> Chart:
    files: Dict[str, bytes] = {}
    try:
        with tarfile.open(path, "r:gz") as tf:
            for member in tf.getmembers():
                if not member.isfile():
                    continue
                # Members are stored as <chart-name>/<relative path>
                parts = member.name.split("/", 1)
                if len(parts) != 2:
                    continue
                extracted = tf.extractfile(member)
                if extracted is None:
                    continue
                files[parts[1]] = extracted.read()
    except (OSError, tarfile.TarError) as e:
        raise ChartError(f"{path} is not a helm chart package: {e}") from e

    raw = files.pop(CHART_FILE, None)
    if raw is None:
        raise ChartError(f"{path} is not a helm chart package: {CHART_FILE} file is missing")
    return Chart(metadata=_parse_metadata(raw, path), files=files)


def _load_directory(path: Path) -> Chart:
    chart_file = path / CHART_FILE
    if not chart_file.is_file():
        raise ChartError(f"{path} is not a helm chart: {CHART_FILE} file is missing")

    metadata = _parse_metadata(chart_file.read_bytes(), path)
    files = {
        rel: (path / rel).read_bytes()
        for rel in _chart_files(path)
        if rel != CHART_FILE
    }
    return Chart(metadata=metadata, files=files)


def load_chart(path) -> Chart:
    """
    Load a chart from a packaged archive or a chart directory.

    Raises:
        ChartError: If the path holds no valid chart
    """
    path = Path(path)
    if path.is_dir():
        return _load_directory(path)
    if not path.exists():
        raise ChartError(f"{path} is not a helm chart package: file not found")
    return _load_archive(path)


def digest_file(path) -> str:
    """Calculate SHA256 digest of a file."""
    sha256_hash = hashlib.sha256()

    with open(path, "rb") as f:
        for byte_block in iter(lambda: f.read(4096), b""):
            sha256_hash.update(byte_block)

    return sha256_hash.hexdigest()


def find_packages(directory, recursive: bool = False) -> List[Path]:
    """
    List chart archives in a directory.

    Signature files never match since they end in .prov.
    """
    directory = Path(directory)
    pattern = f"*{CHART_ARCHIVE_EXTENSION}"
    archives = sorted(directory.glob(pattern))
    if recursive:
        archives.extend(sorted(p for p in directory.glob(f"*/**/{pattern}") if p.is_file()))
    return archives


# ============================================================================
# PACKAGING
# ============================================================================

def _read_ignore_patterns(chart_dir: Path) -> List[str]:
    patterns = list(DEFAULT_IGNORE)
    ignore_file = chart_dir / HELMIGNORE_FILE
    if ignore_file.is_file():
        for line in ignore_file.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                patterns.append(line.rstrip("/"))
    return patterns


def _is_ignored(rel: str, patterns: Sequence[str]) -> bool:
    parts = rel.split("/")
    for pattern in patterns:
        if fnmatch.fnmatch(rel, pattern):
            return True
        # A pattern matching any directory component excludes its contents
        if any(fnmatch.fnmatch(part, pattern) for part in parts[:-1]):
            return True
        if "/" not in pattern and fnmatch.fnmatch(parts[-1], pattern):
            return True
    return False


def _chart_files(chart_dir: Path) -> List[str]:
    patterns = _read_ignore_patterns(chart_dir)
    files = []
    for p in sorted(chart_dir.rglob("*")):
        if not p.is_file():
            continue
        rel = p.relative_to(chart_dir).as_posix()
        if _is_ignored(rel, patterns):
            continue
        files.append(rel)
    return files


def write_archive(chart_dir: Path, destination: Path) -> Path:
    """
    Package a chart directory into ``<destination>/<name>-<version>.tgz``.

    Returns:
        Path of the written archive
    """
    chart = load_chart(chart_dir)
    name = chart.metadata.name
    archive = destination / f"{name}-{chart.metadata.version}{CHART_ARCHIVE_EXTENSION}"

    with tarfile.open(archive, "w:gz") as tf:
        # Chart.yaml is always the first member
        members = [CHART_FILE] + [rel for rel in _chart_files(chart_dir) if rel != CHART_FILE]
        for rel in members:
            data = (chart_dir / rel).read_bytes()
            info = tarfile.TarInfo(name=f"{name}/{rel}")
            info.size = len(data)
            info.mode = 0o644
            tf.addfile(info, io.BytesIO(data))

    return archive


class Packager:
    """
    Builds chart archives from chart directories.

    Signed packages are delegated to the helm binary, which writes the
    provenance file next to the archive.
    """

    def __init__(self, options: Options, paths: Sequence[str]):
        self.options = options
        self.paths = list(paths) or ["."]

    def _destination(self) -> Path:
        destination = Path(self.options.package_path or ".")
        if destination.exists() and not destination.is_dir():
            raise ChartError(f"package path {destination} is not a directory")
        destination.mkdir(parents=True, exist_ok=True)
        return destination

    def _sign_command(self, chart_dir: Path, destination: Path) -> List[str]:
        cmd = [
            "helm", "package", str(chart_dir),
            "--destination", str(destination),
            "--sign",
            "--key", self.options.key,
            "--keyring", str(Path(self.options.keyring).expanduser()),
        ]
        if self.options.passphrase_file:
            cmd.extend(["--passphrase-file", self.options.passphrase_file])
        return cmd

    def create_packages(self) -> List[Path]:
        """
        Package every configured chart path.

        Returns:
            Paths of the written archives

        Raises:
            ChartError: If a path is missing, holds no valid chart or
                the package path is unusable
        """
        destination = self._destination()
        written = []

        for raw_path in self.paths:
            chart_dir = Path(raw_path).resolve()
            if not chart_dir.exists():
                raise ChartError(f"chart path {raw_path} does not exist")

            try:
                if self.options.sign:
                    chart = load_chart(chart_dir)
                    subprocess.run(
                        self._sign_command(chart_dir, destination),
                        check=True,
                        capture_output=True,
                        text=True,
                    )
                    archive = destination / (
                        f"{chart.metadata.name}-{chart.metadata.version}{CHART_ARCHIVE_EXTENSION}"
                    )
                else:
                    archive = write_archive(chart_dir, destination)
            except ChartError:
                logger.error(f"Failed to package chart in {chart_dir}")
                raise
            except subprocess.CalledProcessError as e:
                raise ChartError(f"Failed to package chart in {chart_dir}: {e.stderr}") from e
            except OSError as e:
                raise ChartError(f"Failed to package chart in {chart_dir}: {e}") from e

            logger.info(f"Successfully packaged chart in {chart_dir} and saved it to: {archive}")
            written.append(archive)

        return written
