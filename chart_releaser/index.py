"""
Chart Repository Index

Reads and writes the Helm ``index.yaml`` document: a generation timestamp and
a mapping from chart name to its published versions. Unknown keys at the top
level and inside entries are kept as they were read.
"""

import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
import semver

from .errors import IndexFileError
from .packager import ChartMetadata

logger = logging.getLogger(__name__)

INDEX_API_VERSION = "v1"


def now_timestamp() -> str:
    """Current UTC time in RFC 3339 form."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _as_timestamp(value: Any) -> Optional[str]:
    # Unquoted timestamps come back from PyYAML as datetime objects
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def version_sort_key(version: str) -> Tuple[int, Any]:
    """
    Sort key ordering versions by SemVer 2.0.0 precedence.

    A leading ``v`` and missing minor or patch parts are accepted, as Helm
    does. Build metadata does not take part in the ordering. Strings that
    are not semantic versions sort below every one that is and are compared
    as strings among themselves.
    """
    text = version[1:] if version.startswith("v") else version
    try:
        return (1, semver.Version.parse(text, optional_minor_and_patch=True))
    except ValueError:
        return (0, version)


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass
class ChartVersion:
    """One published version of a chart."""
    name: str
    version: str
    urls: List[str] = field(default_factory=list)
    digest: str = ""
    created: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChartVersion":
        metadata = {
            k: v for k, v in data.items()
            if k not in ("name", "version", "urls", "digest", "created")
        }
        return cls(
            name=str(data.get("name") or ""),
            version=str(data.get("version") or ""),
            urls=[str(u) for u in data.get("urls") or []],
            digest=str(data.get("digest") or ""),
            created=_as_timestamp(data.get("created")),
            metadata=metadata,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.metadata)
        data["name"] = self.name
        data["version"] = self.version
        data["urls"] = list(self.urls)
        if self.digest:
            data["digest"] = self.digest
        if self.created:
            data["created"] = self.created
        return data


@dataclass
class IndexFile:
    """The repository index document."""
    api_version: str = INDEX_API_VERSION
    generated: Optional[str] = None
    entries: Dict[str, List[ChartVersion]] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, name: str, version: str) -> Optional[ChartVersion]:
        for entry in self.entries.get(name, []):
            if entry.version == version:
                return entry
        return None

    def has(self, name: str, version: str) -> bool:
        return self.get(name, version) is not None

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add(self, metadata: ChartMetadata, filename: str, base_url: str, digest: str) -> ChartVersion:
        """
        Add a chart version.

        The download URL is ``<base_url>/<filename>``, or the bare filename
        when base_url is empty (package hosted next to the index).

        Raises:
            IndexFileError: If the (name, version) pair is already present
        """
        if self.has(metadata.name, metadata.version):
            raise IndexFileError(
                f"index already contains {metadata.name} version {metadata.version}"
            )

        url = filename
        if base_url:
            url = f"{base_url.rstrip('/')}/{filename}"

        meta = metadata.to_dict()
        meta.pop("name", None)
        meta.pop("version", None)
        entry = ChartVersion(
            name=metadata.name,
            version=metadata.version,
            urls=[url],
            digest=digest,
            created=now_timestamp(),
            metadata=meta,
        )
        self.entries.setdefault(metadata.name, []).append(entry)
        return entry

    def sort_entries(self) -> None:
        """Order names ascending and each chart's versions descending."""
        self.entries = {
            name: sorted(self.entries[name], key=lambda e: version_sort_key(e.version), reverse=True)
            for name in sorted(self.entries)
        }

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IndexFile":
        entries: Dict[str, List[ChartVersion]] = {}
        for name, versions in (data.get("entries") or {}).items():
            entries[str(name)] = [ChartVersion.from_dict(v) for v in versions or []]
        extra = {
            k: v for k, v in data.items()
            if k not in ("apiVersion", "generated", "entries")
        }
        return cls(
            api_version=str(data.get("apiVersion") or INDEX_API_VERSION),
            generated=_as_timestamp(data.get("generated")),
            entries=entries,
            extra=extra,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data["apiVersion"] = self.api_version
        data["entries"] = {
            name: [entry.to_dict() for entry in versions]
            for name, versions in self.entries.items()
        }
        if self.generated:
            data["generated"] = self.generated
        return data

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=True, default_flow_style=False)

    def write(self, path) -> None:
        """
        Write the index, replacing the file in one rename.

        Parent directories are created when missing.
        """
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".index-", suffix=".yaml")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(self.to_yaml())
                os.chmod(tmp_name, 0o644)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise IndexFileError(f"failed to write index {path}: {e}") from e
        logger.debug(f"Index written to {path}")


def load_index_file(path) -> IndexFile:
    """
    Load an index document.

    Raises:
        IndexFileError: If the file cannot be read or is not an index
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise IndexFileError(f"failed to load index {path}: {e}") from e

    if not isinstance(data, dict):
        raise IndexFileError(f"failed to load index {path}: not a mapping")
    return IndexFile.from_dict(data)


def new_index_file() -> IndexFile:
    return IndexFile()
