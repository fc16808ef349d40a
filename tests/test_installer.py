"""Tests for dependency installation orchestration."""

import shutil
import tempfile
from pathlib import Path

import httpx
import pytest
from dapple_dependency import AlreadyInstalledError
from dapple_dependency import CleanupError
from dapple_dependency import DependencyInstaller
from dapple_dependency import DependencyInstallError
from dapple_dependency import DependencyParseError
from dapple_dependency import FetchError
from dapple_dependency import InstallState
from dapple_dependency import IPFSFetch
from dapple_dependency import IPFSSettings
from dapple_dependency import ManifestError
from dapple_dependency import PathAccessError
from dapple_dependency import UnrecognizedSourceError
from dapple_dependency import parse_specifier
from dapple_dependency import uninstall_dependency


class MockFetch:
    """Mock fetch strategy - writes a small package tree."""

    def __init__(self, manifest_name: str | None = None, fail: bool = False):
        self.manifest_name = manifest_name
        self.fail = fail
        self.pulled_into: list[Path] = []

    async def pull(self, destination: Path) -> None:
        self.pulled_into.append(destination)
        destination.mkdir(parents=True, exist_ok=True)
        (destination / "src").mkdir(exist_ok=True)
        (destination / "src" / "token.sol").write_text("contract Token {}")

        if self.manifest_name is not None:
            (destination / "dappfile").write_text(f"name: {self.manifest_name}\n")

        if self.fail:
            raise FetchError("pull interrupted")


class CountingFactory:
    """Fetcher factory that hands out one MockFetch and counts calls."""

    def __init__(self, fetch: MockFetch):
        self.fetch = fetch
        self.calls = 0

    def __call__(self, specifier):
        self.calls += 1
        return self.fetch


def make_installer(root: Path, fetch: MockFetch) -> tuple[DependencyInstaller, CountingFactory]:
    factory = CountingFactory(fetch)
    installer = DependencyInstaller(
        package_directory=root / "dapple_packages",
        fetcher_factory=factory,
        scratch_root=root / "tmp",
    )
    return installer, factory


@pytest.mark.asyncio
async def test_install_named_dependency():
    """Known names are pulled straight into the package directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        installer, _ = make_installer(Path(tmpdir), MockFetch())
        package_dir = Path(tmpdir) / "dapple_packages"

        record = await installer.install(parse_specifier("token@QmToken"))

        assert record.name == "token"
        assert record.installed_at == package_dir / "token"
        assert not record.used_scratch
        assert (package_dir / "token" / "src" / "token.sol").read_text() == "contract Token {}"
        assert [p.name for p in package_dir.iterdir()] == ["token"]
        assert installer.state == InstallState.INSTALLED
        assert installer.is_installed("token")


@pytest.mark.asyncio
async def test_named_install_pulls_into_staging_path():
    with tempfile.TemporaryDirectory() as tmpdir:
        fetch = MockFetch()
        installer, _ = make_installer(Path(tmpdir), fetch)

        await installer.install(parse_specifier("token@QmToken"))

        staging = fetch.pulled_into[0]
        assert staging.parent == Path(tmpdir) / "dapple_packages"
        assert staging.name.startswith(".token.partial-")
        assert not staging.exists()


@pytest.mark.asyncio
async def test_second_install_of_same_name_fails_without_fetching():
    with tempfile.TemporaryDirectory() as tmpdir:
        installer, factory = make_installer(Path(tmpdir), MockFetch())
        spec = parse_specifier("token@QmToken")

        await installer.install(spec)
        assert factory.calls == 1

        with pytest.raises(AlreadyInstalledError, match="token is already installed"):
            await installer.install(spec)

        assert factory.calls == 1
        assert len(installer.fetcher_factory.fetch.pulled_into) == 1
        assert installer.state == InstallState.FAILED


@pytest.mark.asyncio
async def test_install_creates_package_directory():
    with tempfile.TemporaryDirectory() as tmpdir:
        package_dir = Path(tmpdir) / "nested" / "dapple_packages"
        installer = DependencyInstaller(
            package_directory=package_dir,
            fetcher_factory=CountingFactory(MockFetch()),
        )

        await installer.install(parse_specifier("token@QmToken"))

        assert (package_dir / "token").is_dir()


@pytest.mark.asyncio
async def test_unusable_package_directory():
    """A package directory under a regular file can be neither used nor created."""
    with tempfile.TemporaryDirectory() as tmpdir:
        blocker = Path(tmpdir) / "blocker"
        blocker.write_text("not a directory")
        installer = DependencyInstaller(
            package_directory=blocker / "dapple_packages",
            fetcher_factory=CountingFactory(MockFetch()),
        )

        with pytest.raises(PathAccessError, match="Could not access or create") as exc_info:
            await installer.install(parse_specifier("token@QmToken"))

        assert isinstance(exc_info.value.__cause__, OSError)
        assert installer.fetcher_factory.fetch.pulled_into == []


@pytest.mark.asyncio
async def test_package_directory_that_is_a_file(tmp_path):
    """A regular file where the package directory should be is refused up front."""
    blocker = tmp_path / "dapple_packages"
    blocker.write_text("not a directory")
    installer = DependencyInstaller(package_directory=blocker, fetcher_factory=CountingFactory(MockFetch()))

    with pytest.raises(PathAccessError, match="not a writable directory"):
        await installer.install(parse_specifier("token@QmToken"))

    assert blocker.read_text() == "not a directory"
    assert installer.fetcher_factory.fetch.pulled_into == []
    assert installer.state == InstallState.FAILED


@pytest.mark.asyncio
async def test_unusable_scratch_directory(tmp_path):
    """Scratch setup failures name the scratch path."""
    scratch_root = tmp_path / "tmp"
    scratch_root.write_text("not a directory")
    fetch = MockFetch(manifest_name="lib")
    installer = DependencyInstaller(
        package_directory=tmp_path / "dapple_packages",
        fetcher_factory=CountingFactory(fetch),
        scratch_root=scratch_root,
    )

    with pytest.raises(DependencyInstallError, match="Could not prepare scratch directory") as exc_info:
        await installer.install(parse_specifier("@QmLib"))

    assert exc_info.value.context["scratch_dir"].startswith(str(scratch_root))
    assert isinstance(exc_info.value.__cause__, OSError)
    assert fetch.pulled_into == []
    assert installer.state == InstallState.FAILED


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("raw", "name"),
    [("org/lib@QmPkg", None), ("lib@QmPkg", "../escaped"), ("lib@QmPkg", "nested/name")],
)
async def test_names_that_are_not_one_directory_never_install(tmp_path, raw, name):
    installer, factory = make_installer(tmp_path, MockFetch())

    with pytest.raises(DependencyParseError, match="not usable as a directory name"):
        await installer.install(parse_specifier(raw, name=name))

    assert factory.calls == 0
    assert not (tmp_path / "dapple_packages").exists()
    assert not (tmp_path / "escaped").exists()


@pytest.mark.asyncio
async def test_unrecognized_source_fails_before_touching_disk(tmp_path):
    installer = DependencyInstaller(package_directory=tmp_path / "dapple_packages")

    with pytest.raises(UnrecognizedSourceError):
        await installer.install(parse_specifier("some/local/path@1.0.0", name="local"))

    assert not (tmp_path / "dapple_packages").exists()
    assert installer.state == InstallState.FAILED


@pytest.mark.asyncio
async def test_failed_named_pull_leaves_nothing_behind():
    with tempfile.TemporaryDirectory() as tmpdir:
        installer, _ = make_installer(Path(tmpdir), MockFetch(fail=True))
        package_dir = Path(tmpdir) / "dapple_packages"

        with pytest.raises(FetchError, match="pull interrupted"):
            await installer.install(parse_specifier("token@QmToken"))

        assert list(package_dir.iterdir()) == []
        assert not installer.is_installed("token")
        assert installer.state == InstallState.FAILED


@pytest.mark.asyncio
async def test_install_unnamed_dependency_resolves_name_from_manifest():
    """Unnamed dependencies go through scratch and take the manifest name."""
    with tempfile.TemporaryDirectory() as tmpdir:
        fetch = MockFetch(manifest_name="resolved-lib")
        installer, _ = make_installer(Path(tmpdir), fetch)
        package_dir = Path(tmpdir) / "dapple_packages"

        record = await installer.install(parse_specifier("@QmLib"))

        assert record.name == "resolved-lib"
        assert record.used_scratch
        assert record.installed_at == package_dir / "resolved-lib"
        assert record.specifier.name == ""
        assert (package_dir / "resolved-lib" / "dappfile").read_text() == "name: resolved-lib\n"
        assert (package_dir / "resolved-lib" / "src" / "token.sol").exists()
        assert [p.name for p in package_dir.iterdir()] == ["resolved-lib"]

        scratch_dir = fetch.pulled_into[0]
        assert scratch_dir.parent == Path(tmpdir) / "tmp" / "dapple" / "packages"
        assert scratch_dir.name.isdigit()
        assert not scratch_dir.exists()


@pytest.mark.asyncio
async def test_scratch_directory_reused_by_same_installer():
    with tempfile.TemporaryDirectory() as tmpdir:
        fetch = MockFetch(manifest_name="first")
        installer, _ = make_installer(Path(tmpdir), fetch)

        await installer.install(parse_specifier("@QmFirst"))
        fetch.manifest_name = "second"
        await installer.install(parse_specifier("@QmSecond"))

        assert fetch.pulled_into[0] == fetch.pulled_into[1]
        assert installer.is_installed("first")
        assert installer.is_installed("second")


@pytest.mark.asyncio
async def test_scratch_directories_differ_between_installers():
    with tempfile.TemporaryDirectory() as tmpdir:
        first_fetch = MockFetch(manifest_name="first")
        second_fetch = MockFetch(manifest_name="second")
        first, _ = make_installer(Path(tmpdir), first_fetch)
        second, _ = make_installer(Path(tmpdir), second_fetch)

        await first.install(parse_specifier("@QmFirst"))
        await second.install(parse_specifier("@QmSecond"))

        assert first_fetch.pulled_into[0] != second_fetch.pulled_into[0]


@pytest.mark.asyncio
async def test_unnamed_install_colliding_with_installed_name():
    with tempfile.TemporaryDirectory() as tmpdir:
        fetch = MockFetch(manifest_name="taken")
        installer, _ = make_installer(Path(tmpdir), fetch)
        existing = Path(tmpdir) / "dapple_packages" / "taken"
        existing.mkdir(parents=True)
        (existing / "marker").write_text("original")

        with pytest.raises(AlreadyInstalledError, match="taken"):
            await installer.install(parse_specifier("@QmTaken"))

        assert (existing / "marker").read_text() == "original"
        assert not (existing / "src").exists()
        assert not fetch.pulled_into[0].exists()


@pytest.mark.asyncio
async def test_unnamed_install_without_manifest():
    with tempfile.TemporaryDirectory() as tmpdir:
        fetch = MockFetch(manifest_name=None)
        installer, _ = make_installer(Path(tmpdir), fetch)

        with pytest.raises(ManifestError, match="dappfile not found"):
            await installer.install(parse_specifier("@QmNoManifest"))

        assert list((Path(tmpdir) / "dapple_packages").iterdir()) == []
        assert not fetch.pulled_into[0].exists()


@pytest.mark.asyncio
async def test_cleanup_failure_reports_installed_package(monkeypatch):
    """A surviving scratch directory is reported, but the install stands."""
    with tempfile.TemporaryDirectory() as tmpdir:
        scratch_root = Path(tmpdir) / "tmp"
        installer, _ = make_installer(Path(tmpdir), MockFetch(manifest_name="stubborn"))
        real_rmtree = shutil.rmtree

        def rmtree(path, *args, **kwargs):
            if Path(path).is_relative_to(scratch_root):
                raise OSError("device busy")
            return real_rmtree(path, *args, **kwargs)

        monkeypatch.setattr(shutil, "rmtree", rmtree)

        with pytest.raises(CleanupError) as exc_info:
            await installer.install(parse_specifier("@QmStubborn"))

        error = exc_info.value
        installed_at = Path(tmpdir) / "dapple_packages" / "stubborn"
        assert error.record.name == "stubborn"
        assert error.record.installed_at == installed_at
        assert f"installed at {installed_at}" in error.message
        assert f"manually delete {error.scratch_dir}" in error.message
        assert error.scratch_dir.exists()
        assert (installed_at / "dappfile").exists()
        assert installer.state == InstallState.INSTALLED


@pytest.mark.asyncio
async def test_discard_failure_is_attached_to_error(tmp_path, monkeypatch):
    installer, _ = make_installer(tmp_path, MockFetch(fail=True))

    def rmtree(path, *args, **kwargs):
        raise OSError("read-only")

    monkeypatch.setattr(shutil, "rmtree", rmtree)

    with pytest.raises(FetchError) as exc_info:
        await installer.install(parse_specifier("token@QmToken"))

    assert any("delete it manually" in note for note in exc_info.value.__notes__)


@pytest.mark.asyncio
async def test_install_from_ipfs_end_to_end(tmp_path):
    """Unnamed IPFS dependency: pulled, named from its dappfile, placed."""
    tree = {
        "QmPkg": [("dappfile", "QmManifest", 2), ("contracts", "QmContracts", 1)],
        "QmManifest": b"name: ipfs-lib\n",
        "QmContracts": [("lib.sol", "QmSol", 2)],
        "QmSol": b"contract Lib {}",
    }

    def handler(request: httpx.Request) -> httpx.Response:
        node = tree[request.url.params["arg"]]
        if request.url.path == "/api/v0/ls":
            links = [{"Name": n, "Hash": h, "Type": t} for n, h, t in node]
            return httpx.Response(200, json={"Objects": [{"Hash": "x", "Links": links}]})
        return httpx.Response(200, content=node)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://ipfs.test") as client:
        installer = DependencyInstaller(
            package_directory=tmp_path / "dapple_packages",
            fetcher_factory=lambda spec: IPFSFetch(spec, IPFSSettings(), client=client),
            scratch_root=tmp_path / "tmp",
        )

        record = await installer.install(parse_specifier("QmPkg"))

    assert record.name == "ipfs-lib"
    assert (tmp_path / "dapple_packages" / "ipfs-lib" / "contracts" / "lib.sol").read_bytes() == b"contract Lib {}"


def test_default_package_directory_is_cwd(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    installer = DependencyInstaller()

    assert installer.package_directory.resolve() == (tmp_path / "dapple_packages").resolve()
    assert installer.state == InstallState.NOT_STARTED


@pytest.mark.asyncio
async def test_uninstall_dependency():
    with tempfile.TemporaryDirectory() as tmpdir:
        package_dir = Path(tmpdir) / "dapple_packages"
        (package_dir / "token").mkdir(parents=True)
        (package_dir / "token" / "dappfile").write_text("name: token\n")

        await uninstall_dependency(name="token", package_directory=package_dir)

        assert not (package_dir / "token").exists()


@pytest.mark.asyncio
@pytest.mark.parametrize("name", ["nonexistent", "..", ""])
async def test_uninstall_missing_dependency(name):
    with tempfile.TemporaryDirectory() as tmpdir:
        package_dir = Path(tmpdir) / "dapple_packages"
        package_dir.mkdir()

        with pytest.raises(DependencyInstallError, match="not found"):
            await uninstall_dependency(name=name, package_directory=package_dir)
