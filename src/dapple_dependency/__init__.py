"""dapple-dependency - Fetch and install a single package dependency.

A descriptor string is parsed into a DependencySpecifier, a fetch strategy
(git or IPFS) pulls it, and DependencyInstaller places it under the package
directory.

Configuration and manifest reading are injected; defaults read ~/.dapplerc and
the package's dappfile.
"""

from .config import DappleRC
from .config import EnvironmentSettings
from .config import IPFSSettings
from .exceptions import AlreadyInstalledError
from .exceptions import CleanupError
from .exceptions import ConfigError
from .exceptions import DependencyError
from .exceptions import DependencyInstallError
from .exceptions import DependencyParseError
from .exceptions import FetchError
from .exceptions import InvalidCommitError
from .exceptions import IPFSConnectionError
from .exceptions import ManifestError
from .exceptions import MissingVersionError
from .exceptions import PathAccessError
from .exceptions import UnknownNodeTypeError
from .exceptions import UnrecognizedSourceError
from .git import GitFetch
from .installer import DependencyInstaller
from .installer import InstallationRecord
from .installer import InstallState
from .installer import uninstall_dependency
from .ipfs import IPFSFetch
from .manifest import DappfileReader
from .manifest import PackageManifest
from .protocols import FetchStrategyProtocol
from .protocols import ManifestReaderProtocol
from .protocols import SettingsProviderProtocol
from .sources import fetcher_for
from .specifier import DependencySpecifier
from .specifier import SourceKind
from .specifier import parse_specifier

__all__ = [
    # Specifiers
    "DependencySpecifier",
    "SourceKind",
    "parse_specifier",
    # Fetching
    "FetchStrategyProtocol",
    "GitFetch",
    "IPFSFetch",
    "fetcher_for",
    # Installation
    "DependencyInstaller",
    "InstallationRecord",
    "InstallState",
    "uninstall_dependency",
    # Collaborators
    "DappleRC",
    "EnvironmentSettings",
    "IPFSSettings",
    "SettingsProviderProtocol",
    "DappfileReader",
    "ManifestReaderProtocol",
    "PackageManifest",
    # Exceptions
    "DependencyError",
    "DependencyParseError",
    "MissingVersionError",
    "InvalidCommitError",
    "UnrecognizedSourceError",
    "AlreadyInstalledError",
    "PathAccessError",
    "FetchError",
    "IPFSConnectionError",
    "UnknownNodeTypeError",
    "ManifestError",
    "ConfigError",
    "DependencyInstallError",
    "CleanupError",
]

__version__ = "0.1.0"
