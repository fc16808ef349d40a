"""Protocols for the collaborators the installer depends on.

Fetch strategies, configuration and manifest reading are injected; the
installer only requires these interfaces.
"""

from pathlib import Path
from typing import TYPE_CHECKING
from typing import Protocol
from typing import runtime_checkable

if TYPE_CHECKING:
    from .config import IPFSSettings


class FetchStrategyProtocol(Protocol):
    """Protocol for fetching a dependency's source tree.

    Implementations:
    - GitFetch: git repository pinned to a commit
    - IPFSFetch: content-addressed IPFS directory
    """

    async def pull(self, destination: Path) -> None:
        """Materialize the dependency at destination.

        Args:
            destination: Empty or not yet existing directory

        Raises:
            DependencyError: If any step fails. Partial content may be left behind.
        """
        ...


@runtime_checkable
class SettingsProviderProtocol(Protocol):
    """Provides IPFS connection settings for a named environment."""

    def ipfs_settings(self, environment: str) -> "IPFSSettings": ...


@runtime_checkable
class ManifestReaderProtocol(Protocol):
    """Reads the canonical package name from a fetched package root."""

    def read_name(self, package_root: Path) -> str:
        """Return the name declared by the manifest at package_root.

        Raises:
            ManifestError: If the manifest is missing or has no usable name
        """
        ...
