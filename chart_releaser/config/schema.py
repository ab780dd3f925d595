"""
Configuration schema for chart-releaser.

Uses Pydantic for validation and type safety.
"""

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator


DEFAULT_RELEASE_NAME_TEMPLATE = "{name}-{version}"


class Options(BaseModel):
    """Merged options for every chart-releaser command."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    # GitHub repository
    owner: str = Field(default="", description="GitHub username or organization")
    git_repo: str = Field(default="", description="GitHub repository")
    token: SecretStr = Field(
        default=SecretStr(""),
        description="GitHub Auth Token"
    )
    git_base_url: str = Field(
        default="https://api.github.com/",
        description="GitHub Base URL (only needed for private GitHub)"
    )
    git_upload_url: str = Field(
        default="https://uploads.github.com/",
        description="GitHub Upload URL (only needed for private GitHub)"
    )
    commit: str = Field(
        default="",
        description="Target commit for release"
    )

    # Local paths
    index_path: str = Field(default=".cr-index/index.yaml", description="Path to index file")
    package_path: str = Field(
        default=".cr-release-packages",
        description="Path to directory with chart packages"
    )

    # Pages branch publication
    pages_branch: str = Field(default="gh-pages", description="The GitHub pages branch")
    pages_index_path: str = Field(
        default="index.yaml",
        description="The GitHub pages index path"
    )
    remote: str = Field(
        default="origin",
        description="The Git remote used when creating a local worktree for the GitHub Pages branch"
    )
    push: bool = Field(
        default=False,
        description="Push index.yaml to the GitHub Pages branch (must not be set if pr is set)"
    )
    pr: bool = Field(
        default=False,
        description="Create a pull request for index.yaml against the GitHub Pages branch (must not be set if push is set)"
    )
    packages_with_index: bool = Field(
        default=False,
        description="Save a copy of the package files to the GitHub Pages branch and reference them in the index"
    )

    # Releases
    release_name_template: str = Field(
        default=DEFAULT_RELEASE_NAME_TEMPLATE,
        description="Template for the release name, rendered against the chart metadata"
    )
    release_notes_file: str = Field(
        default="",
        description="Markdown file with chart release notes, relative to the chart root"
    )
    generate_release_notes: bool = Field(
        default=False,
        description="Whether to automatically generate the name and body for this release"
    )
    make_release_latest: bool = Field(
        default=True,
        description="Mark the created GitHub release as 'latest'"
    )
    skip_existing: bool = Field(
        default=False,
        description="Skip upload if release exists"
    )
    recursive: bool = Field(
        default=False,
        description="Also look for chart packages in subdirectories of the package path"
    )

    # Package signing
    sign: bool = Field(default=False, description="Use a PGP private key to sign this package")
    key: str = Field(default="", description="Name of the key to use when signing")
    keyring: str = Field(default="~/.gnupg/pubring.gpg", description="Location of a public keyring")
    passphrase_file: str = Field(
        default="",
        description="Location of a file which contains the passphrase for the signing key"
    )

    @field_validator("token", mode="before")
    @classmethod
    def coerce_token(cls, v):
        """Accept a missing token from file or env."""
        if v is None:
            return SecretStr("")
        return v

    @model_validator(mode="after")
    def check_publish_mode(self) -> "Options":
        """Push and pull request are alternative publish modes."""
        if self.push and self.pr:
            raise ValueError("specify either push or pr, but not both")
        return self

    def token_value(self) -> str:
        """Return the plain GitHub token."""
        return self.token.get_secret_value()

    def to_dict(self) -> Dict[str, Any]:
        """Export options as dictionary with the token masked."""
        return self.model_dump(mode="json")
