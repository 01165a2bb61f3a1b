"""
Error taxonomy for the installation engine.

Every error carries a machine-readable ``code`` and a ``to_dict()`` payload so
the CLI (or any other frontend) can render localized, parameterized messages
instead of parsing exception strings.
"""

from __future__ import annotations

from typing import Any


class PackageInstallerError(Exception):
    """Base class for all installer errors."""

    code = "packageInstallerError"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible error payload."""
        return {"error": self.code, "message": self.message, **self.details}


# ──────────────────────────────────────────────
# Archive / manifest errors
# ──────────────────────────────────────────────


class ArchiveNotFound(PackageInstallerError):
    code = "notFound"

    def __init__(self, archive: str):
        super().__init__(f"unable to find package file '{archive}'", file=archive)


class ArchiveDownloadError(PackageInstallerError):
    code = "downloadFailed"

    def __init__(self, url: str, reason: str):
        super().__init__(f"unable to download '{url}': {reason}", url=url, reason=reason)


class ArchiveEntryMissing(PackageInstallerError):
    code = "archiveEntryMissing"

    def __init__(self, filename: str, archive: str):
        super().__init__(
            f"tar archive '{filename}' not found in '{archive}'", filename=filename, archive=archive
        )


class ManifestMissing(PackageInstallerError):
    code = "manifestMissing"

    def __init__(self, manifest: str, archive: str):
        super().__init__(
            f"package information file '{manifest}' not found in '{archive}'",
            manifest=manifest,
            archive=archive,
        )


class MalformedManifest(PackageInstallerError):
    code = "malformedManifest"

    def __init__(self, reason: str):
        super().__init__(f"malformed package manifest: {reason}", reason=reason)


class InvalidPackageName(PackageInstallerError):
    code = "invalidPackageName"

    def __init__(self, name: str):
        super().__init__(f"'{name}' is not a valid package name.", name=name)


class InvalidVersion(PackageInstallerError):
    code = "invalidVersion"

    def __init__(self, version: str):
        super().__init__(f"package version '{version}' is invalid", version=version)


class InvalidVersionFormat(PackageInstallerError, ValueError):
    """Raised by the comparator when a version cannot be tokenized."""

    code = "invalidVersionFormat"

    def __init__(self, version: str, segment: str = ""):
        super().__init__(
            f"cannot tokenize version '{version}'" + (f" at '{segment}'" if segment else ""),
            version=version,
            segment=segment,
        )


# ──────────────────────────────────────────────
# Applicability errors
# ──────────────────────────────────────────────


class NoInstallInstructions(PackageInstallerError):
    code = "noValidInstall"

    def __init__(self, package: str):
        super().__init__(f"'{package}' does not support a new installation", package=package)


class NoApplicableUpdatePath(PackageInstallerError):
    code = "noValidUpdate"

    def __init__(self, package: str, installed_version: str, archive_version: str, reason: str):
        super().__init__(
            f"cannot update '{package}' from {installed_version} to {archive_version}: {reason}",
            package=package,
            installedVersion=installed_version,
            archiveVersion=archive_version,
            reason=reason,
        )


class AlreadyInstalled(PackageInstallerError):
    code = "uniqueAlreadyInstalled"

    def __init__(self, package: str):
        super().__init__(f"'{package}' is already installed", package=package)


class ApplicationNotInstallableHere(PackageInstallerError):
    code = "installIsApplication"

    def __init__(self, package: str):
        super().__init__(
            f"'{package}' is an application and cannot be installed here", package=package
        )


class AbbreviationNotUnique(PackageInstallerError):
    code = "noUniqueAbbrevation"

    def __init__(self, package: str, abbreviation: str):
        super().__init__(
            f"an application with the abbreviation '{abbreviation}' is already installed",
            package=package,
            abbreviation=abbreviation,
        )


class PackageLocked(PackageInstallerError):
    code = "packageLocked"

    def __init__(self, package: str, process_no: int):
        super().__init__(
            f"'{package}' is being installed by process {process_no}",
            package=package,
            processNo=process_no,
        )


class PackageNotUninstallable(PackageInstallerError):
    code = "invalidUninstallation"

    def __init__(self, package: str, reason: str):
        super().__init__(f"'{package}' cannot be uninstalled: {reason}", package=package, reason=reason)


# ──────────────────────────────────────────────
# Resolution errors
# ──────────────────────────────────────────────


class UnsatisfiedRequirements(PackageInstallerError):
    """Carries the full resolution report (see ``ResolutionReport.to_dict``)."""

    code = "missingPackages"

    def __init__(self, report: dict[str, Any]):
        super().__init__(
            f"{report.get('missingPackages', 0)} required package(s) are missing", **report
        )
        self.report = report


class ExclusionConflict(PackageInstallerError):
    code = "excludedPackages"

    def __init__(self, report: dict[str, Any]):
        excluding = len(report.get("excludingPackages", []))
        excluded = len(report.get("excludedPackages", []))
        super().__init__(
            f"package conflicts with {excluding} excluding and {excluded} excluded package(s)",
            **report,
        )
        self.report = report


# ──────────────────────────────────────────────
# Execution errors
# ──────────────────────────────────────────────


class QueueNotFound(PackageInstallerError):
    code = "queueNotFound"

    def __init__(self, queue_id: int):
        super().__init__(f"installation queue {queue_id} does not exist", queueID=queue_id)


class HandlerNotFoundError(PackageInstallerError):
    code = "handlerNotFound"

    def __init__(self, pip: str, available: list[str] | None = None):
        self.available = available or []
        message = f"Instruction handler '{pip}' not found."
        if self.available:
            message += f" Available: {', '.join(sorted(self.available))}"
        super().__init__(message, pip=pip, available=self.available)


class InstructionHandlerFailure(PackageInstallerError):
    """A node failed; the queue stays open so the same node can be retried."""

    code = "instructionFailed"

    def __init__(self, process_no: int, queue_id: int, node: str, pip: str, reason: str):
        super().__init__(
            f"instruction '{pip}' failed at node {node} (queue {queue_id}): {reason}",
            processNo=process_no,
            queueID=queue_id,
            node=node,
            pip=pip,
            reason=reason,
        )
        self.process_no = process_no
        self.queue_id = queue_id
        self.node = node
