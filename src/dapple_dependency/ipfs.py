"""IPFS fetch strategy - Rebuild a content-addressed directory tree on disk.

Talks to the IPFS HTTP API (``/api/v0/ls`` and ``/api/v0/cat``). The walk is
depth-first and strictly sequential; a failure part way through leaves a
partially populated destination.
"""

import logging
from pathlib import Path

import httpx
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

from .config import IPFSSettings
from .exceptions import FetchError
from .exceptions import IPFSConnectionError
from .exceptions import UnknownNodeTypeError
from .specifier import DependencySpecifier

logger = logging.getLogger(__name__)

DIR = "dir"
FILE = "file"

# The HTTP API reports unixfs types as integers
_NODE_TYPES: dict[int | str, str] = {1: DIR, 2: FILE, DIR: DIR, FILE: FILE}


class IPFSLink(BaseModel):
    """A named child reference inside an IPFS directory listing."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(alias="Name")
    hash: str = Field(alias="Hash")
    type: int | str = Field(alias="Type")
    size: int = Field(default=0, alias="Size")

    @property
    def kind(self) -> str | None:
        """``"dir"``, ``"file"`` or None for anything else."""
        return _NODE_TYPES.get(self.type)


class IPFSObject(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    hash: str = Field(alias="Hash")
    links: list[IPFSLink] = Field(default_factory=list, alias="Links")


class IPFSClient:
    """Minimal async client for the two IPFS API calls the walk needs."""

    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    async def ls(self, node_hash: str) -> list[IPFSLink]:
        response = await self._client.post("/api/v0/ls", params={"arg": node_hash})
        response.raise_for_status()
        objects = [IPFSObject.model_validate(obj) for obj in response.json().get("Objects") or []]
        if not objects:
            raise ValueError(f"Empty listing for {node_hash}")
        return objects[0].links

    async def cat(self, node_hash: str) -> bytes:
        response = await self._client.post("/api/v0/cat", params={"arg": node_hash})
        response.raise_for_status()
        return response.content


class IPFSFetch:
    """
    Fetch an IPFS dependency by reconstructing its directory tree.

    Args:
        specifier: Dependency with an ``ipfs://<hash>`` source location
        settings: IPFS API host and port
        client: Optional preconfigured httpx.AsyncClient (base_url must point at the API).
                When omitted a client is created per pull and closed afterwards.
        timeout: Request timeout in seconds for the internally created client
    """

    def __init__(
        self,
        specifier: DependencySpecifier,
        settings: IPFSSettings,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        self.specifier = specifier
        self.settings = settings
        self._client = client
        self.timeout = timeout

    @property
    def uri(self) -> str:
        return self.specifier.source_location

    @property
    def root_hash(self) -> str:
        return self.specifier.ipfs_hash

    async def pull(self, destination: Path) -> None:
        if self._client is not None:
            await self._pull(IPFSClient(self._client), destination)
            return

        async with httpx.AsyncClient(base_url=self.settings.base_url, timeout=self.timeout) as client:
            await self._pull(IPFSClient(client), destination)

    async def _pull(self, ipfs: IPFSClient, destination: Path) -> None:
        root_hash = self.root_hash

        # Probe the connection before writing anything
        try:
            root_links = await ipfs.ls(root_hash)
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"IPFS probe for {root_hash} at {self.settings.base_url} failed: {e}")
            raise IPFSConnectionError(root_hash, self.settings.base_url) from e

        logger.info(f"Pulling {root_hash} from IPFS into {destination}")
        await self._pull_dir(ipfs, root_hash, destination, root_links)

    async def _pull_node(self, ipfs: IPFSClient, link: IPFSLink, target: Path) -> None:
        if link.kind == DIR:
            try:
                links = await ipfs.ls(link.hash)
            except (httpx.HTTPError, ValueError) as e:
                raise self._node_error("list", link.hash, e) from e
            await self._pull_dir(ipfs, link.hash, target, links)
        elif link.kind == FILE:
            try:
                content = await ipfs.cat(link.hash)
            except httpx.HTTPError as e:
                raise self._node_error("read", link.hash, e) from e
            target.write_bytes(content)
            logger.debug(f"Wrote {target} ({len(content)} bytes)")
        else:
            raise UnknownNodeTypeError(link.type, link.hash, self.root_hash)

    async def _pull_dir(self, ipfs: IPFSClient, node_hash: str, target: Path, links: list[IPFSLink]) -> None:
        target.mkdir(parents=True, exist_ok=True)
        for link in links:
            if link.name in ("", ".", "..") or "/" in link.name or "\\" in link.name:
                raise FetchError(
                    f'Refusing IPFS entry "{link.name}" in {node_hash} while pulling {self.root_hash}',
                    context={"name": link.name, "node_hash": node_hash, "root_hash": self.root_hash},
                )
            await self._pull_node(ipfs, link, target / link.name)

    def _node_error(self, action: str, node_hash: str, cause: Exception) -> FetchError:
        return FetchError(
            f"Failed to {action} {node_hash} while pulling {self.root_hash}: {cause}",
            context={"node_hash": node_hash, "root_hash": self.root_hash},
        )
