"""Package manifest - Read a dependency's dappfile.

Only the name matters to installation; version and dependencies are parsed
so callers get a complete picture of the fetched package.
"""

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import ValidationError
from pydantic import field_validator

from .exceptions import ManifestError
from .specifier import is_package_name

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "dappfile"


class PackageManifest(BaseModel):
    """Manifest declared at a package root."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str = ""
    dependencies: dict[str, str] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def _single_path_component(cls, value: str) -> str:
        # The name becomes a directory under dapple_packages
        if not is_package_name(value):
            raise ValueError(f"not usable as a directory name: {value!r}")
        return value

    @classmethod
    def from_dappfile(cls, dappfile_path: Path) -> "PackageManifest":
        """
        Load manifest from a dappfile.

        Args:
            dappfile_path: Path to the dappfile

        Returns:
            PackageManifest instance

        Raises:
            ManifestError: If the file is missing, not valid YAML, or lacks a usable name
        """
        if not dappfile_path.exists():
            raise ManifestError(f"dappfile not found: {dappfile_path}", context={"path": str(dappfile_path)})

        try:
            with open(dappfile_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ManifestError(f"Could not read {dappfile_path}: {e}", context={"path": str(dappfile_path)}) from e

        if not isinstance(data, dict):
            raise ManifestError(f"Expected a mapping in {dappfile_path}", context={"path": str(dappfile_path)})

        try:
            return cls(
                name=data.get("name", ""),
                version=str(data.get("version", "")),
                dependencies=data.get("dependencies") or {},
            )
        except ValidationError as e:
            raise ManifestError(f"Invalid dappfile {dappfile_path}: {e}", context={"path": str(dappfile_path)}) from e


class DappfileReader:
    """Default ManifestReaderProtocol implementation."""

    def read_name(self, package_root: Path) -> str:
        manifest = PackageManifest.from_dappfile(package_root / MANIFEST_FILENAME)
        logger.debug(f"Manifest at {package_root} declares name: {manifest.name}")
        return manifest.name
