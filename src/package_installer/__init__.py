"""
Package Installer - Archive-driven package installation engine.

Validates package archives against installed state, resolves requirements
and exclusions, and runs installations, updates and uninstallations as
resumable, node-by-node processes.
"""

__version__ = "1.0.0"


def __getattr__(name: str):
    """Lazy import for heavy dependencies."""
    if name == "PackageInstallation":
        from package_installer.core.installer import PackageInstallation

        return PackageInstallation
    if name == "PackageArchive":
        from package_installer.core.archive import PackageArchive

        return PackageArchive
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["PackageInstallation", "PackageArchive", "__version__"]
