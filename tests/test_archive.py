"""Tests for PackageArchive: extraction and applicability checks."""

import gzip

import pytest

from conftest import build_archive, files_tar, manifest

from package_installer.core.archive import PackageArchive
from package_installer.core.errors import (
    ArchiveEntryMissing,
    ArchiveNotFound,
    MalformedManifest,
    ManifestMissing,
    NoApplicableUpdatePath,
)
from package_installer.models.package import InstalledPackage

UPDATE_FROM_1_0 = (
    '<instructions type="install"><instruction type="file">files.tar</instruction></instructions>'
    '<instructions type="update" fromversion="1.0.*"><instruction type="file">files.tar</instruction></instructions>'
)


def installed(version, name="com.example.plugin"):
    return InstalledPackage(package_id=7, package=name, package_version=version)


# ═══════════════════════════════════════════
# Opening & Extraction Tests
# ═══════════════════════════════════════════


class TestOpenArchive:
    def test_open(self, plugin_archive):
        archive = PackageArchive(plugin_archive)
        descriptor = archive.open_archive()
        assert descriptor.name == "com.example.plugin"
        assert archive.version == "1.2.0"
        assert archive.get_localized_package_info("packageName", "de") == "Beispiel-Plugin"
        archive.close()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ArchiveNotFound):
            PackageArchive(tmp_path / "nope.tar").open_archive()

    def test_not_a_tar(self, tmp_path):
        path = tmp_path / "broken.tar"
        path.write_bytes(b"definitely not a tar archive" * 40)
        with pytest.raises(MalformedManifest):
            PackageArchive(path).open_archive()

    def test_missing_manifest(self, tmp_path):
        path = build_archive(tmp_path / "empty.tar", None, {"files.tar": files_tar({"a": "b"})})
        with pytest.raises(ManifestMissing):
            PackageArchive(path).open_archive()

    def test_gzipped_archive(self, tmp_path, plugin_archive):
        gz = tmp_path / "plugin.tar.gz"
        gz.write_bytes(gzip.compress(plugin_archive.read_bytes()))
        archive = PackageArchive(gz)
        assert archive.open_archive().name == "com.example.plugin"
        archive.close()

    def test_unzip_package_archive(self, tmp_path, plugin_archive):
        gz = tmp_path / "plugin.tar.gz"
        gz.write_bytes(gzip.compress(plugin_archive.read_bytes()))
        plain = PackageArchive.unzip_package_archive(str(gz), tmp_path)
        assert plain.endswith(".tar")
        assert not gz.exists()
        assert PackageArchive(plain).open_archive().name == "com.example.plugin"

    def test_unzip_leaves_plain_tar_alone(self, plugin_archive):
        assert PackageArchive.unzip_package_archive(str(plugin_archive)) == str(plugin_archive)

    def test_extract_tar(self, tmp_path, plugin_archive):
        archive = PackageArchive(plugin_archive, work_dir=tmp_path / "work")
        archive.open_archive()
        path = archive.extract_tar("files.tar")
        assert path.parent == tmp_path / "work"
        assert path.name.endswith(".tar")
        assert path.stat().st_size > 0
        archive.close()

    def test_extract_missing_entry(self, plugin_archive):
        archive = PackageArchive(plugin_archive)
        archive.open_archive()
        assert not archive.has_file("other.tar")
        with pytest.raises(ArchiveEntryMissing):
            archive.extract_tar("other.tar")
        archive.close()


# ═══════════════════════════════════════════
# Applicability Tests
# ═══════════════════════════════════════════


class TestApplicability:
    def test_valid_install(self, plugin_archive):
        archive = PackageArchive(plugin_archive)
        archive.open_archive()
        assert archive.is_valid_install()

    def test_no_install_block(self, tmp_path):
        path = build_archive(
            tmp_path / "u.tar",
            manifest(
                instructions='<instructions type="update" fromversion="*"><instruction type="file">files.tar</instruction></instructions>'
            ),
        )
        archive = PackageArchive(path)
        archive.open_archive()
        assert not archive.is_valid_install()

    def test_valid_update(self, tmp_path):
        path = build_archive(tmp_path / "p.tar", manifest(instructions=UPDATE_FROM_1_0))
        archive = PackageArchive(path, package=installed("1.0.4"))
        archive.open_archive()
        archive.validate_update()
        assert [i.pip for i in archive.get_update_instructions()] == ["file"]
        assert archive.get_instructions("update") == archive.get_update_instructions()

    def test_update_requires_newer_version(self, tmp_path):
        path = build_archive(tmp_path / "p.tar", manifest(version="1.0.2", instructions=UPDATE_FROM_1_0))
        archive = PackageArchive(path)
        archive.open_archive()
        with pytest.raises(NoApplicableUpdatePath):
            archive.validate_update(installed("1.0.4"))

    def test_update_without_matching_block(self, tmp_path):
        path = build_archive(tmp_path / "p.tar", manifest(instructions=UPDATE_FROM_1_0))
        archive = PackageArchive(path)
        archive.open_archive()
        assert not archive.is_valid_update(installed("1.1.0"))

    def test_update_for_other_package(self, tmp_path):
        path = build_archive(tmp_path / "p.tar", manifest(instructions=UPDATE_FROM_1_0))
        archive = PackageArchive(path)
        archive.open_archive()
        with pytest.raises(NoApplicableUpdatePath):
            archive.validate_update(installed("1.0.0", name="com.example.other"))

    def test_update_instructions_empty_without_package(self, plugin_archive):
        archive = PackageArchive(plugin_archive)
        archive.open_archive()
        assert archive.get_update_instructions() == []
        assert archive.get_instructions("unknown") is None

    def test_unique_abbreviation(self, tmp_path, store):
        path = build_archive(
            tmp_path / "app.tar",
            manifest(name="com.example.blog", extra_info="<isapplication>1</isapplication>"),
        )
        archive = PackageArchive(path)
        archive.open_archive()
        assert archive.has_unique_abbreviation(store)

        store.add_package(package="org.other.blog", package_version="1.0.0", is_application=1)
        assert not archive.has_unique_abbreviation(store)

    def test_is_already_installed(self, store, plugin_archive):
        archive = PackageArchive(plugin_archive)
        archive.open_archive()
        assert not archive.is_already_installed(store)
        store.add_package(package="com.example.plugin", package_version="1.0.0")
        assert archive.is_already_installed(store)
