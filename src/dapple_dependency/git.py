"""Git fetch strategy - Clone a repository and pin it to a commit."""

import asyncio
import logging
import re
from pathlib import Path

from .exceptions import FetchError
from .exceptions import InvalidCommitError
from .exceptions import MissingVersionError
from .specifier import DependencySpecifier

logger = logging.getLogger(__name__)

_COMMIT_HASH = re.compile(r"[a-f0-9]+", re.IGNORECASE)


class GitFetch:
    """
    Fetch a git dependency pinned to an exact commit.

    Steps run one after another, each must succeed before the next starts:
    clone, hard reset to the commit, submodule init, recursive submodule update.
    A failing step leaves the destination as the previous step left it.
    """

    def __init__(self, specifier: DependencySpecifier, git_executable: str = "git"):
        self.specifier = specifier
        self.git_executable = git_executable

    @property
    def uri(self) -> str:
        return self.specifier.source_location

    @property
    def commit_sha(self) -> str:
        """Validated commit the checkout is pinned to."""
        if not self.specifier.has_version:
            raise MissingVersionError(self.specifier.source_location)

        commit = self.specifier.pinned_version.removeprefix("@")
        if not _COMMIT_HASH.fullmatch(commit):
            raise InvalidCommitError(commit, self.specifier.source_location)
        return commit

    async def pull(self, destination: Path) -> None:
        commit = self.commit_sha

        logger.info(f"Cloning {self.uri} at {commit}")
        await self._git("clone", "--", self.uri, str(destination))
        await self._git("reset", "--hard", commit, cwd=destination)
        await self._git("submodule", "init", cwd=destination)
        await self._git("submodule", "update", "--init", "--recursive", cwd=destination)
        logger.debug(f"Checked out {self.uri}@{commit} into {destination}")

    async def _git(self, *args: str, cwd: Path | None = None) -> None:
        command = [self.git_executable, *args]
        logger.debug(f"Running {' '.join(command)}" + (f" in {cwd}" if cwd else ""))

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise FetchError(
                f"Could not run {self.git_executable}: {e}",
                context={"command": command},
            ) from e

        _, stderr = await process.communicate()
        if process.returncode != 0:
            raise FetchError(
                f"{' '.join(command)} failed with exit code {process.returncode}: "
                f"{stderr.decode(errors='replace').strip()}",
                context={
                    "command": command,
                    "returncode": process.returncode,
                    "cwd": str(cwd) if cwd else None,
                },
            )
