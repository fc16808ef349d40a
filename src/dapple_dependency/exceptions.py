"""Dependency installation exceptions.

Every failure is a hard stop for the current install attempt. Messages are
meant to be shown to the user as-is.
"""

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .installer import InstallationRecord


class DependencyError(Exception):
    """Base exception for dependency operations."""

    def __init__(self, message: str, context: dict | None = None):
        """Initialize with message and optional context.

        Args:
            message: Human-readable error message
            context: Optional dict with additional context (paths, hashes, etc.)
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}


class DependencyParseError(DependencyError):
    """Descriptor string matches none of the recognized forms."""


class MissingVersionError(DependencyError):
    """Git source given without a pinned commit."""

    def __init__(self, source_location: str):
        super().__init__(
            f"Git paths must include an exact commit hash: {source_location}",
            context={"source_location": source_location},
        )


class InvalidCommitError(DependencyError):
    """Pinned version of a git source is not a hexadecimal commit hash."""

    def __init__(self, commit: str, source_location: str = ""):
        super().__init__(
            f"Invalid commit hash: {commit}",
            context={"commit": commit, "source_location": source_location},
        )


class UnrecognizedSourceError(DependencyError):
    """Source location is neither a git repository nor an IPFS hash."""

    def __init__(self, source_location: str):
        super().__init__(
            f'Could not make sense of "{source_location}"',
            context={"source_location": source_location},
        )


class AlreadyInstalledError(DependencyError):
    """A package with the same name is already in the package directory."""

    def __init__(self, name: str, path: Path):
        super().__init__(
            f"{name} is already installed.",
            context={"name": name, "path": str(path)},
        )


class PathAccessError(DependencyError):
    """Package directory is neither writable nor creatable."""


class FetchError(DependencyError):
    """A fetch step failed (git command, IPFS read, unsafe tree entry)."""


class IPFSConnectionError(FetchError):
    """Connectivity probe against the configured IPFS endpoint failed."""

    def __init__(self, root_hash: str, base_url: str):
        super().__init__(
            "Unable to retrieve directory from IPFS! "
            "Please make sure your IPFS connection settings in ~/.dapplerc "
            f"are correct (currently {base_url}) and that you have supplied "
            f"the correct IPFS hash ({root_hash}).",
            context={"root_hash": root_hash, "base_url": base_url},
        )


class UnknownNodeTypeError(FetchError):
    """IPFS node has a type other than dir or file."""

    def __init__(self, node_type: object, node_hash: str, root_hash: str):
        super().__init__(
            f'Unknown IPFS type "{node_type}" at {node_hash} while pulling {root_hash}',
            context={"node_type": node_type, "node_hash": node_hash, "root_hash": root_hash},
        )


class ManifestError(DependencyError):
    """Manifest missing, unreadable or without a usable name."""


class ConfigError(DependencyError):
    """RC file unreadable or malformed."""


class DependencyInstallError(DependencyError):
    """Uninstall or placement failed."""


class CleanupError(DependencyError):
    """Scratch directory could not be removed after a successful install.

    The package itself is installed and usable; only the scratch path needs
    manual attention. ``record`` holds the completed installation.
    """

    def __init__(self, record: "InstallationRecord", scratch_dir: Path):
        super().__init__(
            f"{record.name} installed at {record.installed_at}, but cleanup failed. "
            f"Please manually delete {scratch_dir}",
            context={
                "name": record.name,
                "installed_at": str(record.installed_at),
                "scratch_dir": str(scratch_dir),
            },
        )
        self.record = record
        self.scratch_dir = scratch_dir
