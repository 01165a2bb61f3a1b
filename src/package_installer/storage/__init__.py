"""Storage backends for package records, queues and node positions."""

from package_installer.storage.base import PackageStorage
from package_installer.storage.sqlite import SQLitePackageStore


def get_store(db_path: str) -> PackageStorage:
    """Factory function to open the store for a database path."""
    return SQLitePackageStore(db_path=db_path)


__all__ = ["PackageStorage", "SQLitePackageStore", "get_store"]
