"""
Package Archive — a tar(.gz) file carrying a package.xml manifest.

Opens local archives, downloads remote ones, extracts nested sub-archives on
demand and answers the applicability questions asked before an
installation or update is queued.
"""

import gzip
import logging
import os
import shutil
import tarfile
import tempfile
from pathlib import Path

from package_installer.core.download import ExponentialBackoff, download_archive
from package_installer.core.errors import (
    ArchiveEntryMissing,
    ArchiveNotFound,
    MalformedManifest,
    ManifestMissing,
    NoApplicableUpdatePath,
)
from package_installer.core.version import compare_versions, get_abbreviation
from package_installer.models.package import (
    BASE_PACKAGE,
    ExcludedPackage,
    InstalledPackage,
    Instruction,
    OptionalPackage,
    PackageDescriptor,
    Requirement,
)
from package_installer.parsers.manifest import MANIFEST_FILE, filter_update_instructions, parse_manifest
from package_installer.storage.base import PackageStorage

logger = logging.getLogger(__name__)

_ARCHIVE_SUFFIXES = (".tar.gz", ".tgz", ".tar")


def _normalize_member_name(name: str) -> str:
    while name.startswith("./"):
        name = name[2:]
    return name


class PackageArchive:
    """
    Represents the archive of a package.

    ``package`` is the installed package this archive would update, if any;
    it decides which update instruction block is selected.
    """

    INFO_FILE = MANIFEST_FILE

    def __init__(
        self,
        archive: str | Path,
        package: InstalledPackage | None = None,
        base_package: str = BASE_PACKAGE,
        work_dir: Path | None = None,
    ):
        self.archive = str(archive)
        self.package = package
        self.base_package = base_package
        self.work_dir = work_dir or Path(tempfile.gettempdir())
        self.tar: tarfile.TarFile | None = None
        self.descriptor: PackageDescriptor | None = None
        self._update_instructions: list[Instruction] = []

    # ──────────────────────────────────────────────
    # Opening & extraction
    # ──────────────────────────────────────────────

    def open_archive(self) -> PackageDescriptor:
        """Open the archive and parse its manifest."""
        if not os.path.isfile(self.archive):
            raise ArchiveNotFound(self.archive)

        try:
            self.tar = tarfile.open(self.archive, "r:*")
        except (tarfile.TarError, OSError) as e:
            raise MalformedManifest(f"'{self.archive}' is not a tar archive ({e})") from e

        self._read_package_info()
        return self.descriptor

    def _read_package_info(self) -> None:
        try:
            content = self.extract_to_string(self.INFO_FILE)
        except ArchiveEntryMissing:
            raise ManifestMissing(self.INFO_FILE, self.archive) from None

        self.descriptor = parse_manifest(content, base_package=self.base_package)
        if self.package is not None:
            self._filter_update_instructions()

    def _filter_update_instructions(self) -> None:
        self._update_instructions = filter_update_instructions(
            self.descriptor, self.package.package_version
        )

    def _get_member(self, filename: str) -> tarfile.TarInfo:
        wanted = _normalize_member_name(filename)
        for member in self.tar.getmembers():
            if _normalize_member_name(member.name) == wanted and member.isfile():
                return member
        raise ArchiveEntryMissing(filename, self.archive)

    def has_file(self, filename: str) -> bool:
        try:
            self._get_member(filename)
        except ArchiveEntryMissing:
            return False
        return True

    def extract_to_string(self, filename: str) -> bytes:
        member = self._get_member(filename)
        with self.tar.extractfile(member) as f:
            return f.read()

    def extract_tar(self, filename: str, temp_prefix: str = "package_") -> Path:
        """
        Extract a nested archive to a temporary file and return its path.

        Raises:
            ArchiveEntryMissing: If the archive does not contain ``filename``.
        """
        member = self._get_member(filename)
        suffix = next((s for s in _ARCHIVE_SUFFIXES if member.name.lower().endswith(s)), "")

        self.work_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=temp_prefix, suffix=suffix, dir=self.work_dir)
        with os.fdopen(fd, "wb") as out, self.tar.extractfile(member) as src:
            shutil.copyfileobj(src, out)

        logger.debug(f"Extracted {filename} from {self.archive} to {tmp_name}")
        return Path(tmp_name)

    async def download_archive(
        self,
        timeout: float | None = None,
        backoff: ExponentialBackoff | None = None,
        client=None,
    ) -> str:
        """Download a remote archive; ``self.archive`` becomes the local path."""
        logger.info(f"Downloading '{self.archive}'")
        path = await download_archive(
            self.archive, self.work_dir, timeout=timeout, backoff=backoff, client=client
        )
        self.archive = self.unzip_package_archive(str(path), self.work_dir)
        return self.archive

    @staticmethod
    def unzip_package_archive(archive: str, work_dir: Path | None = None) -> str:
        """Decompress a gzipped archive into a plain tar file and return its path."""
        with open(archive, "rb") as f:
            if f.read(2) != b"\x1f\x8b":
                return archive

        directory = work_dir or Path(tempfile.gettempdir())
        fd, tmp_name = tempfile.mkstemp(prefix="package_", suffix=".tar", dir=directory)
        with os.fdopen(fd, "wb") as out, gzip.open(archive, "rb") as src:
            shutil.copyfileobj(src, out)
        os.unlink(archive)
        return tmp_name

    def close(self) -> None:
        if self.tar is not None:
            self.tar.close()
            self.tar = None

    def delete_archive(self) -> None:
        """Close and delete the archive file."""
        self.close()
        try:
            os.unlink(self.archive)
        except FileNotFoundError:
            pass

    # ──────────────────────────────────────────────
    # Applicability
    # ──────────────────────────────────────────────

    def set_package(self, package: InstalledPackage) -> None:
        self.package = package
        if self.descriptor is not None:
            self._filter_update_instructions()

    def is_valid_install(self) -> bool:
        """True if the archive supports a new installation."""
        return bool(self.descriptor.install_instructions)

    def validate_update(self, package: InstalledPackage | None = None) -> None:
        """
        Check the archive can update the installed package.

        Raises:
            NoApplicableUpdatePath: With the reason the update is refused.
        """
        if package is not None and self.package is None:
            self.set_package(package)

        installed = self.package
        name, version = self.descriptor.name, self.descriptor.version
        if installed is None:
            raise NoApplicableUpdatePath(name, "", version, "package is not installed")

        if name != installed.package:
            raise NoApplicableUpdatePath(
                name, installed.package_version, version, f"archive is for '{name}', not '{installed.package}'"
            )

        if compare_versions(version, installed.package_version) != 1:
            raise NoApplicableUpdatePath(
                name, installed.package_version, version, "archive version is not newer"
            )

        if not self._update_instructions:
            raise NoApplicableUpdatePath(
                name, installed.package_version, version, "no update instructions for installed version"
            )

    def is_valid_update(self, package: InstalledPackage | None = None) -> bool:
        try:
            self.validate_update(package)
        except NoApplicableUpdatePath:
            return False
        return True

    def is_already_installed(self, store: PackageStorage) -> bool:
        return bool(store.get_packages_by_name(self.descriptor.name))

    def has_unique_abbreviation(self, store: PackageStorage) -> bool:
        """True unless another installed application uses the same abbreviation."""
        if not self.descriptor.is_application:
            return True
        return store.count_applications(get_abbreviation(self.descriptor.name)) == 0

    # ──────────────────────────────────────────────
    # Accessors
    # ──────────────────────────────────────────────

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def version(self) -> str:
        return self.descriptor.version

    def get_package_info(self, name: str):
        mapping = {
            "name": self.descriptor.name,
            "version": self.descriptor.version,
            "isApplication": self.descriptor.is_application,
            "packageURL": self.descriptor.package_url,
            "date": self.descriptor.date,
        }
        return mapping.get(name)

    def get_localized_package_info(self, name: str, language: str | None = None) -> str:
        return self.descriptor.localized(name, language)

    def get_author_info(self, name: str) -> str | None:
        return self.descriptor.get_author_info(name)

    def get_requirements(self) -> dict[str, Requirement]:
        return dict(self.descriptor.requirements)

    def get_optionals(self) -> list[OptionalPackage]:
        return list(self.descriptor.optionals)

    def get_excluded_packages(self) -> list[ExcludedPackage]:
        return list(self.descriptor.excluded_packages)

    def get_install_instructions(self) -> list[Instruction]:
        return list(self.descriptor.install_instructions)

    def get_update_instructions(self) -> list[Instruction]:
        """The selected update block (empty until an installed package is set)."""
        return list(self._update_instructions)

    def get_instructions(self, type_: str) -> list[Instruction] | None:
        if type_ == "install":
            return self.get_install_instructions()
        if type_ == "update":
            return self.get_update_instructions()
        return None
