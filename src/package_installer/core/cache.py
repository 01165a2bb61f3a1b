"""
Derived package cache.

Maps package identifiers to installed records so repeated lookups skip the
store. Finalizing an installation or uninstallation flushes it.
"""

import logging

from package_installer.models.package import InstalledPackage
from package_installer.storage.base import PackageStorage

logger = logging.getLogger(__name__)


class PackageCache:
    def __init__(self, store: PackageStorage):
        self.store = store
        self._packages: dict[str, InstalledPackage] | None = None

    def _load(self) -> dict[str, InstalledPackage]:
        if self._packages is None:
            self._packages = {}
            for package in self.store.list_packages():
                current = self._packages.get(package.package)
                # Keep the first record; duplicates only exist for multi-version installs.
                if current is None:
                    self._packages[package.package] = package
        return self._packages

    def get_package(self, name: str) -> InstalledPackage | None:
        return self._load().get(name)

    def get_package_id(self, name: str) -> int | None:
        package = self.get_package(name)
        return package.package_id if package else None

    def flush_all(self) -> None:
        """Invalidate every derived entry."""
        if self._packages is not None:
            logger.debug(f"Flushing package cache ({len(self._packages)} entries)")
        self._packages = None
