"""Dependency specifier - Parse descriptor strings into structured values.

Recognized forms:
- ``<path>.git@<commit>``: git repository pinned to a commit
- ``<path>[@<version>]``: generic path with optional version
- ``[<name>@][ipfs://]Qm...``: IPFS content hash
"""

import logging
import re
from enum import Enum

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import model_validator

from .exceptions import DependencyParseError
from .exceptions import MissingVersionError

logger = logging.getLogger(__name__)

_GIT_FORM = re.compile(r"(.+\.git)@([a-z0-9]+)", re.IGNORECASE)
_GENERIC_FORM = re.compile(r"([^@#]+)?(?:@(.+)?)?")
_IPFS_REFERENCE = re.compile(r"@?(ipfs://)?Qm[A-Za-z0-9]+", re.IGNORECASE)
_IPFS_PREFIX = re.compile(r"^@?(ipfs://)?", re.IGNORECASE)

_GIT_SOURCE = re.compile(r".*\.git", re.IGNORECASE | re.DOTALL)
_IPFS_SOURCE = re.compile(r"ipfs://[A-Za-z0-9]+", re.IGNORECASE)


def is_package_name(name: str) -> bool:
    """True when name is usable as one directory under the package directory."""
    return bool(name) and name not in (".", "..") and "/" not in name and "\\" not in name


class SourceKind(str, Enum):
    """Which fetch strategy a source location calls for."""

    GIT = "git"
    IPFS = "ipfs"
    UNKNOWN = "unknown"


class DependencySpecifier(BaseModel):
    """
    A single dependency: where it lives, which version, and (maybe) its name.

    Immutable. When ``name`` is empty the installer discovers it from the
    fetched manifest and reports it on the InstallationRecord instead.
    """

    model_config = ConfigDict(frozen=True)

    source_location: str
    pinned_version: str = ""
    name: str = ""

    @model_validator(mode="after")
    def _require_git_commit(self) -> "DependencySpecifier":
        # Reject before anything can touch the network
        if self.has_git_source and not self.pinned_version:
            raise MissingVersionError(self.source_location)
        return self

    @model_validator(mode="after")
    def _require_package_name(self) -> "DependencySpecifier":
        # The name becomes a directory under dapple_packages
        if self.name and not is_package_name(self.name):
            raise DependencyParseError(
                f"Dependency name \"{self.name}\" is not usable as a directory name",
                context={"name": self.name, "source_location": self.source_location},
            )
        return self

    @property
    def has_git_source(self) -> bool:
        return _GIT_SOURCE.fullmatch(self.source_location) is not None

    @property
    def has_ipfs_source(self) -> bool:
        return _IPFS_SOURCE.fullmatch(self.source_location) is not None

    @property
    def has_version(self) -> bool:
        return self.pinned_version != ""

    @property
    def kind(self) -> SourceKind:
        if self.has_git_source:
            return SourceKind.GIT
        if self.has_ipfs_source:
            return SourceKind.IPFS
        return SourceKind.UNKNOWN

    @property
    def ipfs_hash(self) -> str:
        """Root content hash for IPFS sources, empty string otherwise."""
        if not self.has_ipfs_source:
            return ""
        return self.source_location[len("ipfs://") :]

    def to_display_string(self) -> str:
        """Render back into descriptor form.

        Reparsing the result yields the same source location and version.
        """
        if self.kind == SourceKind.IPFS or not self.pinned_version:
            return self.source_location
        return f"{self.source_location}@{self.pinned_version}"


def parse_specifier(raw: str, name: str | None = None) -> DependencySpecifier:
    """
    Parse a descriptor string into a DependencySpecifier.

    Args:
        raw: Descriptor such as ``lib.git@1a2b3c``, ``lib@QmHash`` or ``QmHash``
        name: Explicit package name; overrides any name inferred from ``raw``

    Returns:
        DependencySpecifier

    Raises:
        DependencyParseError: If ``raw`` matches none of the recognized forms
        MissingVersionError: If ``raw`` names a git source without a commit

    Example:
        >>> spec = parse_specifier("https://github.com/org/lib.git@1a2b3c")
        >>> spec.source_location, spec.pinned_version
        ('https://github.com/org/lib.git', '1a2b3c')
    """
    name = name or ""

    git_match = _GIT_FORM.fullmatch(raw)
    if git_match:
        return DependencySpecifier(
            source_location=git_match.group(1),
            pinned_version=git_match.group(2),
            name=name,
        )

    generic_match = _GENERIC_FORM.fullmatch(raw)
    if generic_match is None:
        raise DependencyParseError(f'Could not parse dependency "{raw}"', context={"raw": raw})

    path = generic_match.group(1) or ""
    version = generic_match.group(2) or ""

    if _IPFS_REFERENCE.fullmatch(version or path):
        if not name:
            name = path if version else ""
        version = _IPFS_PREFIX.sub("", version or path)
        path = f"ipfs://{version}"
        logger.debug(f"Parsed IPFS dependency {raw!r} as {path}")

    if not path:
        raise DependencyParseError(
            f'Dependency "{raw}" has no source location',
            context={"raw": raw},
        )

    return DependencySpecifier(source_location=path, pinned_version=version, name=name)
