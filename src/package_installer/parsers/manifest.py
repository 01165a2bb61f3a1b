"""
package.xml Manifest Parser.

Turns the manifest of a package archive into an immutable
``PackageDescriptor``. Element namespaces are ignored, so manifests with or
without the ``http://www.woltlab.com`` namespace parse the same way.

Expected layout:

    <package name="com.example.plugin">
        <packageinformation>
            <packagename>Example</packagename>
            <packagename language="de">Beispiel</packagename>
            <version>1.2.0</version>
            <date>2024-01-31</date>
        </packageinformation>
        <authorinformation>
            <author>Jane Doe</author>
            <authorurl>https://example.com</authorurl>
        </authorinformation>
        <requiredpackages>
            <requiredpackage minversion="2.0.0" file="requirements/base.tar">com.woltlab.wcf</requiredpackage>
        </requiredpackages>
        <excludedpackages>
            <excludedpackage version="3.0.0">com.example.legacy</excludedpackage>
        </excludedpackages>
        <instructions type="install">
            <instruction type="file">files.tar</instruction>
        </instructions>
        <instructions type="update" fromversion="1.1.*">
            <instruction type="file">files.tar</instruction>
        </instructions>
    </package>
"""

import logging
import xml.etree.ElementTree as ET
from datetime import datetime, timezone

from package_installer.core.errors import (
    InvalidPackageName,
    InvalidVersion,
    MalformedManifest,
)
from package_installer.core.version import is_valid_package_name, is_valid_version, satisfies_range
from package_installer.models.package import (
    BASE_PACKAGE,
    ExcludedPackage,
    Instruction,
    OptionalPackage,
    PackageDescriptor,
    Requirement,
)

logger = logging.getLogger(__name__)

MANIFEST_FILE = "package.xml"

# Tag name -> descriptor attribute
_LOCALIZED_TAGS = {
    "packagename": "package_name",
    "packagedescription": "package_description",
    "readme": "readme",
    "license": "license",
}


def _local_name(tag: str) -> str:
    """Strip an '{namespace}' prefix from an element tag."""
    return tag.rsplit("}", 1)[-1]


def _child(element: ET.Element, name: str) -> ET.Element | None:
    for child in element:
        if _local_name(child.tag) == name:
            return child
    return None


def _children(element: ET.Element | None, name: str | None = None) -> list[ET.Element]:
    if element is None:
        return []
    return [child for child in element if name is None or _local_name(child.tag) == name]


def _text(element: ET.Element) -> str:
    return (element.text or "").strip()


def _validated_name(name: str) -> str:
    if not is_valid_package_name(name):
        raise InvalidPackageName(name)
    return name


def _parse_date(value: str) -> int:
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise MalformedManifest(f"invalid date '{value}', expected YYYY-MM-DD") from None
    return int(parsed.replace(tzinfo=timezone.utc).timestamp())


def parse_manifest(content: str | bytes, base_package: str = BASE_PACKAGE) -> PackageDescriptor:
    """
    Parse manifest content into a PackageDescriptor.

    Args:
        content: Raw package.xml content.
        base_package: Framework package every package implicitly requires.

    Raises:
        MalformedManifest: Not well-formed, or a required node is missing.
        InvalidPackageName: Package (or referenced package) name is invalid.
        InvalidVersion: Package version is invalid.
    """
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise MalformedManifest(f"not well-formed XML ({e})") from e

    if _local_name(root.tag) != "package":
        raise MalformedManifest(f"root element is <{_local_name(root.tag)}>, expected <package>")

    # The name is validated before anything else is read.
    name = root.get("name")
    if not name:
        raise MalformedManifest("package name is missing")
    _validated_name(name)

    info = _parse_package_information(root)
    author_info = _parse_author_information(root)
    requirements = _parse_requirements(root)
    optionals = tuple(
        OptionalPackage(name=element_name, file=attributes.get("file"), attributes=attributes)
        for element_name, attributes in _parse_package_list(root, "optionalpackages", "optionalpackage")
    )
    excluded = tuple(
        ExcludedPackage(name=element_name, version=attributes.get("version") or None)
        for element_name, attributes in _parse_package_list(root, "excludedpackages", "excludedpackage")
    )
    install_instructions, update_instructions = _parse_instructions(root)

    # Every package depends on the framework, except the framework itself.
    if base_package not in requirements and name != base_package:
        requirements[base_package] = Requirement(name=base_package)

    descriptor = PackageDescriptor(
        name=name,
        requirements=requirements,
        optionals=optionals,
        excluded_packages=excluded,
        install_instructions=install_instructions,
        update_instructions=update_instructions,
        author_info=author_info,
        **info,
    )
    logger.debug(
        f"Parsed manifest {descriptor.name} {descriptor.version}: "
        f"{len(requirements)} requirements, {len(update_instructions)} update blocks"
    )
    return descriptor


def _parse_package_information(root: ET.Element) -> dict:
    information = _child(root, "packageinformation")
    if information is None:
        raise MalformedManifest("<packageinformation> is missing")

    info: dict = {tag: {} for tag in _LOCALIZED_TAGS.values()}
    version = None
    for element in information:
        tag = _local_name(element.tag)
        value = _text(element)
        if tag in _LOCALIZED_TAGS:
            info[_LOCALIZED_TAGS[tag]][element.get("language", "default")] = value
        elif tag == "isapplication":
            info["is_application"] = value == "1"
        elif tag == "packageurl":
            info["package_url"] = value
        elif tag == "version":
            if not is_valid_version(value):
                raise InvalidVersion(value)
            version = value
        elif tag == "date":
            info["date"] = _parse_date(value)

    if version is None:
        raise MalformedManifest("<version> is missing")
    info["version"] = version
    return info


def _parse_author_information(root: ET.Element) -> dict[str, str]:
    author_info = {}
    for element in _children(_child(root, "authorinformation")):
        tag = _local_name(element.tag)
        author_info["authorURL" if tag == "authorurl" else tag] = _text(element)
    return author_info


def _parse_package_list(root: ET.Element, container: str, item: str) -> list[tuple[str, dict]]:
    """Read (name, attributes) pairs from a requiredpackages-like block."""
    entries = []
    for element in _children(_child(root, container), item):
        entries.append((_validated_name(_text(element)), dict(element.attrib)))
    return entries


def _parse_requirements(root: ET.Element) -> dict[str, Requirement]:
    requirements: dict[str, Requirement] = {}
    for name, attributes in _parse_package_list(root, "requiredpackages", "requiredpackage"):
        # Later duplicates overwrite earlier declarations.
        requirements[name] = Requirement(
            name=name,
            minversion=attributes.get("minversion") or None,
            file=attributes.get("file") or None,
            attributes=attributes,
        )
    return requirements


def _parse_instructions(root: ET.Element):
    blocks = _children(root, "instructions")
    if not blocks:
        raise MalformedManifest("no <instructions> block found")

    install: tuple[Instruction, ...] = ()
    update: dict[str, tuple[Instruction, ...]] = {}
    for block in blocks:
        instructions = tuple(
            Instruction(pip=element.get("type", ""), value=_text(element), attributes=dict(element.attrib))
            for element in _children(block, "instruction")
        )
        for instruction in instructions:
            if not instruction.pip:
                raise MalformedManifest("<instruction> without a type attribute")

        if block.get("type") == "install":
            install = instructions
        else:
            from_version = block.get("fromversion")
            if not from_version:
                raise MalformedManifest("update <instructions> block without fromversion")
            update[from_version] = instructions

    return install, update


def filter_update_instructions(
    descriptor: PackageDescriptor, installed_version: str
) -> list[Instruction]:
    """
    Select the update instructions applicable to an installed version.

    The first block (in manifest order) whose fromversion matches wins; all
    other blocks are discarded. An empty list means there is no update path.
    """
    for from_version, instructions in descriptor.update_instructions.items():
        if satisfies_range(installed_version, from_version):
            logger.debug(f"Update block '{from_version}' applies to installed {installed_version}")
            return list(instructions)
    return []
