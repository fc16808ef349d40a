"""Fetch strategy selection by source kind."""

import logging

import httpx

from .config import DEFAULT_ENVIRONMENT
from .config import DappleRC
from .exceptions import UnrecognizedSourceError
from .git import GitFetch
from .ipfs import IPFSFetch
from .protocols import FetchStrategyProtocol
from .protocols import SettingsProviderProtocol
from .specifier import DependencySpecifier
from .specifier import SourceKind

logger = logging.getLogger(__name__)


def fetcher_for(
    specifier: DependencySpecifier,
    settings: SettingsProviderProtocol | None = None,
    environment: str = DEFAULT_ENVIRONMENT,
    ipfs_client: httpx.AsyncClient | None = None,
) -> FetchStrategyProtocol:
    """
    Build the fetch strategy for a specifier.

    Args:
        specifier: Parsed dependency
        settings: Provider of IPFS settings (defaults to the user's RC file, read lazily
                  and only for IPFS sources)
        environment: Settings environment to read IPFS host/port from
        ipfs_client: Optional httpx client handed to IPFSFetch

    Returns:
        GitFetch or IPFSFetch

    Raises:
        UnrecognizedSourceError: If the source is neither git nor IPFS
    """
    kind = specifier.kind

    if kind == SourceKind.GIT:
        return GitFetch(specifier)

    if kind == SourceKind.IPFS:
        provider = settings if settings is not None else DappleRC.load()
        ipfs_settings = provider.ipfs_settings(environment)
        logger.debug(f"Using IPFS API at {ipfs_settings.base_url} ({environment})")
        return IPFSFetch(specifier, ipfs_settings, client=ipfs_client)

    raise UnrecognizedSourceError(specifier.source_location)
