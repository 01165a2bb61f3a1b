"""Tests for the package.xml manifest parser."""

import pytest

from conftest import manifest

from package_installer.core.errors import InvalidPackageName, InvalidVersion, MalformedManifest
from package_installer.parsers.manifest import filter_update_instructions, parse_manifest

UPDATE_BLOCKS = """
<instructions type="install"><instruction type="file">files.tar</instruction></instructions>
<instructions type="update" fromversion="1.0.*">
    <instruction type="notice">notes/from-1.0.txt</instruction>
    <instruction type="file">files.tar</instruction>
</instructions>
<instructions type="update" fromversion="*">
    <instruction type="file">files.tar</instruction>
</instructions>
"""


# ═══════════════════════════════════════════
# Parsing Tests
# ═══════════════════════════════════════════


class TestParseManifest:
    def test_basic_fields(self):
        descriptor = parse_manifest(manifest())
        assert descriptor.name == "com.example.plugin"
        assert descriptor.version == "1.2.0"
        assert descriptor.is_application is False
        assert descriptor.date == 1706659200
        assert descriptor.get_author_info("author") == "Jane Doe"
        assert descriptor.get_author_info("authorURL") == "https://example.com"

    def test_localized_fallbacks(self):
        descriptor = parse_manifest(manifest())
        assert descriptor.localized("packageName", "de") == "Beispiel-Plugin"
        assert descriptor.localized("packageName", "fr") == "Example Plugin"
        assert descriptor.localized("packageName") == "Example Plugin"
        assert descriptor.localized("readme") == ""

    def test_base_requirement_is_implicit(self):
        descriptor = parse_manifest(manifest())
        assert "com.woltlab.wcf" in descriptor.requirements
        assert descriptor.requirements["com.woltlab.wcf"].minversion is None

    def test_base_package_has_no_self_requirement(self):
        descriptor = parse_manifest(manifest(name="com.woltlab.wcf"))
        assert "com.woltlab.wcf" not in descriptor.requirements

    def test_requirements_and_exclusions(self):
        content = manifest(
            requirements=(
                '<requiredpackage minversion="2.0.0">com.woltlab.wcf</requiredpackage>'
                '<requiredpackage minversion="1.1.0" file="requirements/lib.tar">com.example.lib</requiredpackage>'
            ),
            excluded='<excludedpackage version="3.0.0">com.example.legacy</excludedpackage>',
        )
        descriptor = parse_manifest(content)
        assert descriptor.requirements["com.woltlab.wcf"].minversion == "2.0.0"
        lib = descriptor.requirements["com.example.lib"]
        assert lib.minversion == "1.1.0"
        assert lib.file == "requirements/lib.tar"
        assert descriptor.excluded_packages[0].name == "com.example.legacy"
        assert descriptor.excluded_packages[0].version == "3.0.0"

    def test_instructions_keep_manifest_order(self):
        descriptor = parse_manifest(manifest(instructions=UPDATE_BLOCKS))
        assert [i.pip for i in descriptor.install_instructions] == ["file"]
        assert list(descriptor.update_instructions) == ["1.0.*", "*"]

    def test_namespace_free_manifest(self):
        content = manifest().replace(' xmlns="http://www.woltlab.com"', "")
        assert parse_manifest(content).name == "com.example.plugin"

    def test_descriptor_is_immutable(self):
        descriptor = parse_manifest(manifest())
        with pytest.raises(TypeError):
            descriptor.requirements["com.other.pkg"] = None


class TestManifestErrors:
    def test_not_xml(self):
        with pytest.raises(MalformedManifest):
            parse_manifest("<package")

    def test_invalid_name(self):
        with pytest.raises(InvalidPackageName):
            parse_manifest(manifest(name="invalid"))

    def test_invalid_version(self):
        with pytest.raises(InvalidVersion):
            parse_manifest(manifest(version="1.2"))

    def test_invalid_requirement_name(self):
        with pytest.raises(InvalidPackageName):
            parse_manifest(manifest(requirements="<requiredpackage>bad name</requiredpackage>"))

    def test_missing_instructions(self):
        with pytest.raises(MalformedManifest):
            parse_manifest(manifest(instructions=""))

    def test_instruction_without_type(self):
        with pytest.raises(MalformedManifest):
            parse_manifest(
                manifest(instructions='<instructions type="install"><instruction>x</instruction></instructions>')
            )

    def test_update_block_without_fromversion(self):
        with pytest.raises(MalformedManifest):
            parse_manifest(
                manifest(
                    instructions='<instructions type="update"><instruction type="file">f.tar</instruction></instructions>'
                )
            )

    def test_bad_date(self):
        content = manifest().replace("2024-01-31", "31.01.2024")
        with pytest.raises(MalformedManifest):
            parse_manifest(content)


# ═══════════════════════════════════════════
# Update Selection Tests
# ═══════════════════════════════════════════


class TestFilterUpdateInstructions:
    def test_first_matching_block_wins(self):
        descriptor = parse_manifest(manifest(instructions=UPDATE_BLOCKS))
        selected = filter_update_instructions(descriptor, "1.0.3")
        assert [i.pip for i in selected] == ["notice", "file"]

    def test_falls_through_to_wildcard(self):
        descriptor = parse_manifest(manifest(instructions=UPDATE_BLOCKS))
        selected = filter_update_instructions(descriptor, "1.1.0")
        assert [i.pip for i in selected] == ["file"]

    def test_no_matching_block(self):
        descriptor = parse_manifest(
            manifest(
                instructions=(
                    '<instructions type="install"><instruction type="file">files.tar</instruction></instructions>'
                    '<instructions type="update" fromversion="2.0.0"><instruction type="file">files.tar</instruction></instructions>'
                )
            )
        )
        assert filter_update_instructions(descriptor, "1.0.0") == []

    def test_selection_does_not_mutate_descriptor(self):
        descriptor = parse_manifest(manifest(instructions=UPDATE_BLOCKS))
        filter_update_instructions(descriptor, "1.0.3")
        assert list(descriptor.update_instructions) == ["1.0.*", "*"]
