"""
Package models — parsed manifest descriptors and installed package records.

A ``PackageDescriptor`` is what an archive *declares*; an ``InstalledPackage``
is what the store *knows* about a package that already went through an
installation.
"""

from dataclasses import asdict, dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

BASE_PACKAGE = "com.woltlab.wcf"
LOCALIZED_FIELDS = ("packageName", "packageDescription", "readme", "license")


@dataclass(frozen=True)
class Instruction:
    """One executable step of an install/update sequence."""

    pip: str
    value: str = ""
    attributes: Mapping[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"pip": self.pip, "value": self.value, "attributes": dict(self.attributes)}

    @classmethod
    def from_dict(cls, data: dict) -> "Instruction":
        return cls(
            pip=data["pip"],
            value=data.get("value", ""),
            attributes=dict(data.get("attributes", {})),
        )


@dataclass(frozen=True)
class Requirement:
    """A required package; ``file`` names a bundled sub-archive that satisfies it."""

    name: str
    minversion: str | None = None
    file: str | None = None
    attributes: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class OptionalPackage:
    name: str
    file: str | None = None
    attributes: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ExcludedPackage:
    name: str
    version: str | None = None


@dataclass(frozen=True)
class PackageDescriptor:
    """
    Structured representation of a package.xml manifest.

    Immutable: update instruction *selection* never mutates the descriptor,
    see ``parsers.manifest.filter_update_instructions``.
    """

    name: str
    version: str
    is_application: bool = False
    package_url: str = ""
    package_name: Mapping[str, str] = field(default_factory=dict)
    package_description: Mapping[str, str] = field(default_factory=dict)
    readme: Mapping[str, str] = field(default_factory=dict)
    license: Mapping[str, str] = field(default_factory=dict)
    date: int | None = None
    author_info: Mapping[str, str] = field(default_factory=dict)
    requirements: Mapping[str, Requirement] = field(default_factory=dict)
    optionals: tuple[OptionalPackage, ...] = ()
    excluded_packages: tuple[ExcludedPackage, ...] = ()
    install_instructions: tuple[Instruction, ...] = ()
    update_instructions: Mapping[str, tuple[Instruction, ...]] = field(default_factory=dict)

    def __post_init__(self):
        # Freeze the mappings so the descriptor is immutable all the way down.
        for name in (
            "package_name",
            "package_description",
            "readme",
            "license",
            "author_info",
            "requirements",
            "update_instructions",
        ):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))

    def localized(self, field_name: str, language: str | None = None) -> str:
        """
        Resolve a localized field.

        Order: exact language -> 'default' -> first available value -> ''.
        """
        values = getattr(self, _LOCALIZED_ATTRIBUTES.get(field_name, field_name))
        if language and language in values:
            return values[language]
        if "default" in values:
            return values["default"]
        for value in values.values():
            return value
        return ""

    def get_author_info(self, name: str) -> str | None:
        return self.author_info.get(name)

    @property
    def abbreviation(self) -> str:
        return self.name.rsplit(".", 1)[-1]


_LOCALIZED_ATTRIBUTES = {
    "packageName": "package_name",
    "packageDescription": "package_description",
    "readme": "readme",
    "license": "license",
}


@dataclass
class InstalledPackage:
    """A package record persisted by a completed (or in-flight) installation."""

    package_id: int
    package: str
    package_version: str
    package_name: str = ""
    package_description: str = ""
    package_url: str = ""
    is_application: bool = False
    package_date: int | None = None
    install_date: int | None = None
    update_date: int | None = None
    author: str = ""
    author_url: str = ""
    # Filled by exclusion lookups: the bound declared for this conflict.
    excluded_package_version: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to JSON-compatible dictionary."""
        return asdict(self)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "InstalledPackage":
        """Build from a storage row (sqlite3.Row or dict)."""
        keys = row.keys()
        return cls(
            package_id=row["package_id"],
            package=row["package"],
            package_version=row["package_version"],
            package_name=row["package_name"] or "",
            package_description=row["package_description"] or "",
            package_url=row["package_url"] or "",
            is_application=bool(row["is_application"]),
            package_date=row["package_date"],
            install_date=row["install_date"],
            update_date=row["update_date"],
            author=row["author"] or "",
            author_url=row["author_url"] or "",
            excluded_package_version=(
                row["excluded_package_version"] if "excluded_package_version" in keys else None
            ),
        )
