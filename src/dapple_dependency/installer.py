"""Dependency installation - Fetch one dependency into the package directory.

Apps inject policy (package directory, settings, manifest reader); the
installer owns the sequencing:

1. Refuse names that are already installed (before any network activity)
2. Make sure the package directory exists and is writable
3. Pull straight to a staging path when the name is known, otherwise pull into
   a scratch directory and read the name from the fetched manifest
4. Rename the staging path onto ``<package_directory>/<name>``
5. Remove the scratch directory

Not safe for concurrent installs of the same name: the "already installed"
check and the final rename are not one transaction, so two installers can both
pass the check. Unnamed installs on different installer instances use
different scratch directories.
"""

import logging
import os
import secrets
import shutil
import tempfile
from collections.abc import Callable
from enum import Enum
from pathlib import Path

from pydantic import BaseModel
from pydantic import ConfigDict

from .config import DEFAULT_ENVIRONMENT
from .exceptions import AlreadyInstalledError
from .exceptions import CleanupError
from .exceptions import DependencyInstallError
from .exceptions import PathAccessError
from .manifest import DappfileReader
from .protocols import FetchStrategyProtocol
from .protocols import ManifestReaderProtocol
from .protocols import SettingsProviderProtocol
from .sources import fetcher_for
from .specifier import DependencySpecifier
from .specifier import is_package_name

logger = logging.getLogger(__name__)

PACKAGES_DIRNAME = "dapple_packages"

FetcherFactory = Callable[[DependencySpecifier], FetchStrategyProtocol]


class InstallState(str, Enum):
    NOT_STARTED = "not_started"
    PACKAGE_DIRECTORY_READY = "package_directory_ready"
    DIRECT_INSTALL = "direct_install"
    SCRATCH_INSTALL = "scratch_install"
    INSTALLED = "installed"
    FAILED = "failed"


class InstallationRecord(BaseModel):
    """Result of a successful install. Not persisted."""

    model_config = ConfigDict(frozen=True)

    name: str
    installed_at: Path
    specifier: DependencySpecifier
    used_scratch: bool = False


class DependencyInstaller:
    """
    Install dependencies into a package directory (with injected collaborators).

    Args:
        package_directory: Where installed packages live
                           (defaults to ``./dapple_packages`` at construction time)
        settings: IPFS settings provider (defaults to the user's RC file)
        manifest_reader: Reads the name of packages installed without one (defaults to dappfile)
        environment: Settings environment for IPFS host/port
        fetcher_factory: Builds the fetch strategy for a specifier (defaults to fetcher_for)
        scratch_root: Base for scratch directories (defaults to the system temp dir)

    Example:
        >>> installer = DependencyInstaller(package_directory=Path("dapple_packages"))
        >>> record = await installer.install(parse_specifier("lib@QmHash"))
        >>> print(f"Installed {record.name} at {record.installed_at}")
    """

    def __init__(
        self,
        package_directory: Path | None = None,
        settings: SettingsProviderProtocol | None = None,
        manifest_reader: ManifestReaderProtocol | None = None,
        environment: str = DEFAULT_ENVIRONMENT,
        fetcher_factory: FetcherFactory | None = None,
        scratch_root: Path | None = None,
    ):
        self.package_directory = package_directory if package_directory is not None else Path.cwd() / PACKAGES_DIRNAME
        self.settings = settings
        self.manifest_reader = manifest_reader if manifest_reader is not None else DappfileReader()
        self.environment = environment
        self.fetcher_factory = fetcher_factory if fetcher_factory is not None else self._default_fetcher
        self.scratch_root = scratch_root if scratch_root is not None else Path(tempfile.gettempdir())

        self.state = InstallState.NOT_STARTED
        self._token = str(secrets.randbelow(10**16))
        self._scratch_dir: Path | None = None

    async def install(self, specifier: DependencySpecifier) -> InstallationRecord:
        """
        Install a dependency.

        Args:
            specifier: Parsed dependency

        Returns:
            InstallationRecord with the resolved name and final path

        Raises:
            AlreadyInstalledError: If the name is already present
            PathAccessError: If the package directory can't be used
            UnrecognizedSourceError: If no fetch strategy fits the source
            CleanupError: If the package was installed but the scratch directory survived
            DependencyError: Any other fetch, manifest or placement failure
        """
        self._transition(InstallState.NOT_STARTED)
        try:
            record = await self._install(specifier)
        except CleanupError:
            self._transition(InstallState.INSTALLED)
            raise
        except Exception:
            self._transition(InstallState.FAILED)
            raise

        self._transition(InstallState.INSTALLED)
        logger.info(f"Successfully installed {record.name} at {record.installed_at}")
        return record

    def is_installed(self, name: str) -> bool:
        return os.access(self.package_directory / name, os.R_OK)

    async def _install(self, specifier: DependencySpecifier) -> InstallationRecord:
        if specifier.name:
            self._raise_if_installed(specifier.name)

        fetcher = self.fetcher_factory(specifier)

        self._ensure_package_directory()
        self._transition(InstallState.PACKAGE_DIRECTORY_READY)

        logger.info(f"Installing {specifier.to_display_string()}")
        if specifier.name:
            return await self._direct_install(specifier, fetcher)
        return await self._scratch_install(specifier, fetcher)

    async def _direct_install(
        self, specifier: DependencySpecifier, fetcher: FetchStrategyProtocol
    ) -> InstallationRecord:
        self._transition(InstallState.DIRECT_INSTALL)
        installed_at = self.package_directory / specifier.name
        staging = self._staging_path(specifier.name)

        try:
            await fetcher.pull(staging)
        except Exception as e:
            self._discard(staging, e)
            raise

        self._place(staging, installed_at, specifier.name)
        return InstallationRecord(name=specifier.name, installed_at=installed_at, specifier=specifier)

    async def _scratch_install(
        self, specifier: DependencySpecifier, fetcher: FetchStrategyProtocol
    ) -> InstallationRecord:
        self._transition(InstallState.SCRATCH_INSTALL)
        scratch_dir = self._get_scratch_dir()

        try:
            await fetcher.pull(scratch_dir)

            name = self.manifest_reader.read_name(scratch_dir)
            logger.debug(f"Resolved name from manifest: {name}")
            self._raise_if_installed(name)

            installed_at = self.package_directory / name
            staging = self._staging_path(name)
            try:
                shutil.copytree(scratch_dir, staging, symlinks=True)
            except OSError as e:
                self._discard(staging, e)
                raise DependencyInstallError(
                    f"Failed to copy {scratch_dir} to {staging}: {e}",
                    context={"scratch_dir": str(scratch_dir), "name": name},
                ) from e
            self._place(staging, installed_at, name)
        except Exception as e:
            self._discard(scratch_dir, e)
            raise

        record = InstallationRecord(name=name, installed_at=installed_at, specifier=specifier, used_scratch=True)

        try:
            shutil.rmtree(scratch_dir)
        except OSError as e:
            logger.error(f"Could not remove scratch directory {scratch_dir}: {e}")
            raise CleanupError(record, scratch_dir) from e

        return record

    def _default_fetcher(self, specifier: DependencySpecifier) -> FetchStrategyProtocol:
        return fetcher_for(specifier, settings=self.settings, environment=self.environment)

    def _transition(self, state: InstallState) -> None:
        logger.debug(f"Install state: {self.state.value} -> {state.value}")
        self.state = state

    def _raise_if_installed(self, name: str) -> None:
        if self.is_installed(name):
            raise AlreadyInstalledError(name, self.package_directory / name)

    def _ensure_package_directory(self) -> None:
        if self.package_directory.is_dir() and os.access(self.package_directory, os.W_OK):
            return

        if self.package_directory.exists():
            raise PathAccessError(
                f"Could not access {self.package_directory}: not a writable directory",
                context={"package_directory": str(self.package_directory)},
            )

        try:
            self.package_directory.mkdir(parents=True)
            logger.debug(f"Created package directory {self.package_directory}")
        except OSError as e:
            raise PathAccessError(
                f"Could not access or create {self.package_directory}: {e}",
                context={"package_directory": str(self.package_directory)},
            ) from e

    def _get_scratch_dir(self) -> Path:
        """Scratch directory for this installer, created once and emptied on reuse."""
        if self._scratch_dir is None:
            self._scratch_dir = self.scratch_root / "dapple" / "packages" / self._token

        try:
            if self._scratch_dir.exists():
                shutil.rmtree(self._scratch_dir)
            self._scratch_dir.mkdir(parents=True)
        except OSError as e:
            raise DependencyInstallError(
                f"Could not prepare scratch directory {self._scratch_dir}: {e}",
                context={"scratch_dir": str(self._scratch_dir)},
            ) from e
        logger.debug(f"Using scratch directory {self._scratch_dir}")
        return self._scratch_dir

    def _staging_path(self, name: str) -> Path:
        return self.package_directory / f".{name}.partial-{self._token}"

    def _place(self, staging: Path, installed_at: Path, name: str) -> None:
        """Rename a fully populated staging path onto its final location."""
        if installed_at.exists() or installed_at.is_symlink():
            error = AlreadyInstalledError(name, installed_at)
            self._discard(staging, error)
            raise error

        try:
            os.rename(staging, installed_at)
        except OSError as e:
            self._discard(staging, e)
            raise DependencyInstallError(
                f"Failed to move {staging} to {installed_at}: {e}",
                context={"staging": str(staging), "installed_at": str(installed_at)},
            ) from e

    @staticmethod
    def _discard(path: Path, error: BaseException) -> None:
        """Remove partial state after a failure; report rather than hide removal problems."""
        if not path.exists():
            return
        try:
            shutil.rmtree(path)
            logger.debug(f"Removed partial state at {path}")
        except OSError as e:
            logger.error(f"Could not remove {path}: {e}")
            error.add_note(f"Partial state left at {path}; please delete it manually")


async def uninstall_dependency(name: str, package_directory: Path) -> None:
    """
    Remove an installed dependency.

    Args:
        name: Installed package name
        package_directory: Directory holding installed packages

    Raises:
        DependencyInstallError: If the package isn't installed or removal failed
    """
    package_path = package_directory / name

    if not is_package_name(name) or not package_path.is_dir():
        raise DependencyInstallError(
            f"Dependency '{name}' not found at {package_path}",
            context={"name": name, "package_directory": str(package_directory)},
        )

    try:
        logger.info(f"Uninstalling dependency: {name}")
        shutil.rmtree(package_path)
        logger.info(f"Successfully uninstalled: {name}")
    except OSError as e:
        raise DependencyInstallError(f"Failed to uninstall dependency '{name}': {e}") from e
