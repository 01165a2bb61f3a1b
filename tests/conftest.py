"""Shared fixtures: package archives built on the fly and a throwaway store."""

import io
import tarfile
from pathlib import Path

import pytest

from package_installer.config import InstallerConfig
from package_installer.core.installer import PackageInstallation
from package_installer.storage.sqlite import SQLitePackageStore

BASE = "com.woltlab.wcf"


def manifest(
    name: str = "com.example.plugin",
    version: str = "1.2.0",
    requirements: str = "",
    excluded: str = "",
    instructions: str = '<instructions type="install"><instruction type="file">files.tar</instruction></instructions>',
    extra_info: str = "",
) -> str:
    return f"""<?xml version="1.0"?>
<package name="{name}" xmlns="http://www.woltlab.com">
    <packageinformation>
        <packagename>Example Plugin</packagename>
        <packagename language="de">Beispiel-Plugin</packagename>
        <packagedescription>An example</packagedescription>
        <version>{version}</version>
        <date>2024-01-31</date>
        {extra_info}
    </packageinformation>
    <authorinformation>
        <author>Jane Doe</author>
        <authorurl>https://example.com</authorurl>
    </authorinformation>
    <requiredpackages>{requirements}</requiredpackages>
    <excludedpackages>{excluded}</excludedpackages>
    {instructions}
</package>"""


def _tar_bytes(files: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        for filename, data in files.items():
            info = tarfile.TarInfo(filename)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def build_archive(path: Path, package_xml: str | None, files: dict[str, bytes] | None = None) -> Path:
    """Write a tar archive with a manifest and extra members to ``path``."""
    members = {}
    if package_xml is not None:
        members["package.xml"] = package_xml.encode("utf-8")
    for filename, data in (files or {}).items():
        members[filename] = data
    path.write_bytes(_tar_bytes(members))
    return path


def files_tar(files: dict[str, str]) -> bytes:
    """A nested files.tar payload."""
    return _tar_bytes({name: content.encode("utf-8") for name, content in files.items()})


@pytest.fixture
def store(tmp_path):
    store = SQLitePackageStore(tmp_path / "packages.db")
    yield store
    store.close()


@pytest.fixture
def base_installed(store):
    """The framework package every package implicitly requires."""
    return store.add_package(package=BASE, package_version="2.0.0", package_name="Framework")


@pytest.fixture
def config(tmp_path):
    return InstallerConfig(
        db_path=tmp_path / "packages.db",
        install_dir=tmp_path / "install",
        work_dir=tmp_path / "work",
    )


@pytest.fixture
def installation(store, config):
    config.install_dir.mkdir(parents=True, exist_ok=True)
    config.work_dir.mkdir(parents=True, exist_ok=True)
    return PackageInstallation(store, config=config)


@pytest.fixture
def plugin_archive(tmp_path):
    return build_archive(
        tmp_path / "com.example.plugin.tar",
        manifest(),
        {"files.tar": files_tar({"lib/plugin.py": "print('hi')\n", "README": "plugin\n"})},
    )
