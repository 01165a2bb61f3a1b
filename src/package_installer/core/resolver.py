"""
Requirement and conflict resolution.

Compares what an archive declares (requirements, exclusions) with what the
store says is installed, and decides whether an installation or update may
be queued.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace

from package_installer.core.errors import ExclusionConflict, UnsatisfiedRequirements
from package_installer.core.version import compare_versions, version_key
from package_installer.models.package import InstalledPackage, PackageDescriptor
from package_installer.storage.base import PackageStorage

logger = logging.getLogger(__name__)


@dataclass
class OpenRequirement:
    """A requirement that still needs an install or update."""

    name: str
    action: str  # "install" or "update"
    package_id: int = 0
    minversion: str | None = None
    file: str | None = None
    existing_version: str | None = None


@dataclass
class RequirementStatus:
    name: str
    status: str  # installed, missing, missingVersion, delivered
    action: str | None = None
    minversion: str | None = None
    file: str | None = None
    existing_version: str | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "status": self.status,
            "action": self.action,
            "minversion": self.minversion,
            "file": self.file,
            "existingVersion": self.existing_version,
        }


@dataclass
class ResolutionReport:
    """Structured result of a requirement/conflict check."""

    package: str
    requirements: list[RequirementStatus] = field(default_factory=list)
    excluding_packages: list[InstalledPackage] = field(default_factory=list)
    excluded_packages: list[InstalledPackage] = field(default_factory=list)

    @property
    def missing_packages(self) -> int:
        return sum(1 for r in self.requirements if r.status in ("missing", "missingVersion"))

    @property
    def is_clear(self) -> bool:
        return self.missing_packages == 0 and not self.excluding_packages and not self.excluded_packages

    def to_dict(self) -> dict:
        return {
            "package": self.package,
            "missingPackages": self.missing_packages,
            "requirements": [r.to_dict() for r in self.requirements],
            "excludingPackages": [_conflict_dict(p) for p in self.excluding_packages],
            "excludedPackages": [_conflict_dict(p) for p in self.excluded_packages],
        }


def _conflict_dict(package: InstalledPackage) -> dict:
    return {
        "packageID": package.package_id,
        "package": package.package,
        "packageVersion": package.package_version,
        "packageName": package.package_name,
        "excludedPackageVersion": package.excluded_package_version,
    }


class RequirementResolver:
    """
    Resolves a descriptor's requirements and exclusions against the store.

    All lookups hit the store directly; wrap a check and the queue creation
    that depends on it in ``store.transaction()`` to keep them consistent.
    """

    def __init__(self, descriptor: PackageDescriptor, store: PackageStorage):
        self.descriptor = descriptor
        self.store = store

    def existing_requirements(self) -> dict[str, InstalledPackage]:
        """Highest installed version of every required package, by name."""
        existing: dict[str, InstalledPackage] = {}
        for package in self.store.find_packages(self.descriptor.requirements):
            current = existing.get(package.package)
            if current is None or version_key(package.package_version) > version_key(current.package_version):
                existing[package.package] = package
        return existing

    def all_existing_requirements(
        self, installed: InstalledPackage | None = None
    ) -> dict[str, dict[int, InstalledPackage]]:
        """
        Every installed package that satisfies a requirement, by name and id.

        Requirements already recorded for ``installed`` (the package being
        updated) are taken as-is; the others must meet their minversion.
        """
        result: dict[str, dict[int, InstalledPackage]] = {}
        recorded: dict[str, InstalledPackage] = {}
        if installed is not None:
            recorded = {p.package: p for p in self.store.get_requirements(installed.package_id)}

        lookup = []
        for name in self.descriptor.requirements:
            if name in recorded:
                result[name] = {recorded[name].package_id: recorded[name]}
            else:
                lookup.append(name)

        for package in self.store.find_packages(lookup):
            minversion = self.descriptor.requirements[package.package].minversion
            if minversion and compare_versions(package.package_version, minversion) == -1:
                continue
            result.setdefault(package.package, {})[package.package_id] = package
        return result

    def open_requirements(self) -> dict[str, OpenRequirement]:
        """Requirements that must be installed or updated, keyed by name."""
        existing = self.existing_requirements()
        open_requirements: dict[str, OpenRequirement] = {}

        for requirement in self.descriptor.requirements.values():
            entry = OpenRequirement(
                name=requirement.name,
                action="install",
                minversion=requirement.minversion,
                file=requirement.file,
            )
            installed = existing.get(requirement.name)
            if installed is not None:
                if not requirement.minversion:
                    continue
                if compare_versions(installed.package_version, requirement.minversion) >= 0:
                    continue
                entry = replace(
                    entry,
                    action="update",
                    package_id=installed.package_id,
                    existing_version=installed.package_version,
                )
            open_requirements[requirement.name] = entry

        return open_requirements

    def conflicted_excluding_packages(self) -> dict[int, InstalledPackage]:
        """Installed packages that exclude this package."""
        conflicts = {}
        for package in self.store.get_excluding_packages(self.descriptor.name):
            bound = package.excluded_package_version
            # The exclusion only applies from the bound version onwards.
            if bound and compare_versions(self.descriptor.version, bound, "<"):
                continue
            conflicts[package.package_id] = package
        return conflicts

    def conflicted_excluded_packages(self) -> dict[int, InstalledPackage]:
        """Installed packages this package excludes."""
        bounds = {excluded.name: excluded.version for excluded in self.descriptor.excluded_packages}
        conflicts = {}
        for package in self.store.find_packages(bounds):
            bound = bounds[package.package]
            if bound:
                if compare_versions(package.package_version, bound, "<"):
                    continue
                package.excluded_package_version = bound
            conflicts[package.package_id] = package
        return conflicts

    def check(self) -> ResolutionReport:
        """Evaluate every requirement and both conflict directions."""
        open_requirements = self.open_requirements()
        report = ResolutionReport(package=self.descriptor.name)

        for requirement in self.descriptor.requirements.values():
            open_entry = open_requirements.get(requirement.name)
            status = RequirementStatus(
                name=requirement.name,
                status="installed",
                minversion=requirement.minversion,
                file=requirement.file,
            )
            if open_entry is not None:
                status.action = open_entry.action
                if requirement.file:
                    status.status = "delivered"
                elif open_entry.action == "update":
                    status.status = "missingVersion"
                    status.existing_version = open_entry.existing_version
                else:
                    status.status = "missing"
            report.requirements.append(status)

        report.excluding_packages = list(self.conflicted_excluding_packages().values())
        report.excluded_packages = list(self.conflicted_excluded_packages().values())

        logger.debug(
            f"Resolved {self.descriptor.name}: {report.missing_packages} missing, "
            f"{len(report.excluding_packages)} excluding, {len(report.excluded_packages)} excluded"
        )
        return report

    def ensure_installable(self) -> ResolutionReport:
        """
        Raise unless the package can be queued.

        Raises:
            UnsatisfiedRequirements: A requirement is neither installed nor delivered.
            ExclusionConflict: Exclusions conflict in either direction.
        """
        report = self.check()
        if report.missing_packages:
            raise UnsatisfiedRequirements(report.to_dict())
        if report.excluding_packages or report.excluded_packages:
            raise ExclusionConflict(report.to_dict())
        return report
