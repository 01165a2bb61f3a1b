"""Tests for the CLI entry points."""

import json

from click.testing import CliRunner

from conftest import BASE, build_archive, manifest

from package_installer.cli.main import cli
from package_installer.storage.sqlite import SQLitePackageStore


def cli_args(tmp_path):
    return [
        "--db",
        str(tmp_path / "packages.db"),
        "--install-dir",
        str(tmp_path / "install"),
        "--work-dir",
        str(tmp_path / "work"),
    ]


def seed_base(tmp_path):
    store = SQLitePackageStore(tmp_path / "packages.db")
    store.add_package(package=BASE, package_version="2.0.0", package_name="Framework")
    store.close()


class TestCLI:
    def test_help(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "Package Installer" in result.output

    def test_install_help(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["install", "--help"])
        assert result.exit_code == 0
        assert "--timeout" in result.output
        assert "--db" in result.output
        assert "--install-dir" in result.output

    def test_version(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "1.0.0" in result.output


class TestCommands:
    def test_info(self, plugin_archive):
        runner = CliRunner()
        result = runner.invoke(cli, ["info", str(plugin_archive), "--language", "de"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["name"] == "com.example.plugin"
        assert data["packageName"] == "Beispiel-Plugin"
        assert data["requirements"] == {BASE: None}

    def test_install_and_uninstall(self, tmp_path, plugin_archive):
        seed_base(tmp_path)
        runner = CliRunner()

        result = runner.invoke(cli, ["install", str(plugin_archive), *cli_args(tmp_path)])
        assert result.exit_code == 0, result.output
        assert (tmp_path / "install" / "lib" / "plugin.py").exists()
        assert not (tmp_path / ".installation_checkpoint.json").exists()

        result = runner.invoke(cli, ["list", *cli_args(tmp_path)])
        assert result.exit_code == 0
        assert "com.example.plugin" in result.output

        result = runner.invoke(cli, ["uninstall", "com.example.plugin", *cli_args(tmp_path)])
        assert result.exit_code == 0, result.output
        assert not (tmp_path / "install" / "lib" / "plugin.py").exists()

    def test_install_error_is_reported_as_json(self, tmp_path, plugin_archive):
        runner = CliRunner()
        result = runner.invoke(cli, ["install", str(plugin_archive), *cli_args(tmp_path)])
        assert result.exit_code == 1
        error = json.loads(result.stderr[result.stderr.index("{\n") :])
        assert error["error"] == "missingPackages"
        assert error["missingPackages"] == 1

    def test_declined_notice_can_be_resumed(self, tmp_path):
        seed_base(tmp_path)
        archive = build_archive(
            tmp_path / "notice.tar",
            manifest(
                instructions='<instructions type="install"><instruction type="notice">notes.txt</instruction></instructions>'
            ),
            {"notes.txt": b"Terms apply"},
        )
        runner = CliRunner()

        result = runner.invoke(cli, ["install", str(archive), *cli_args(tmp_path)], input="n\n")
        assert result.exit_code == 0
        assert "Terms apply" in result.output
        assert (tmp_path / ".installation_checkpoint.json").exists()

        result = runner.invoke(cli, ["resume", *cli_args(tmp_path)], input="y\n")
        assert result.exit_code == 0, result.output
        assert not (tmp_path / ".installation_checkpoint.json").exists()

        store = SQLitePackageStore(tmp_path / "packages.db")
        assert store.get_packages_by_name("com.example.plugin")
        store.close()

    def test_discard(self, tmp_path):
        seed_base(tmp_path)
        archive = build_archive(
            tmp_path / "notice.tar",
            manifest(
                instructions='<instructions type="install"><instruction type="notice">notes.txt</instruction></instructions>'
            ),
            {"notes.txt": b"Terms apply"},
        )
        runner = CliRunner()
        runner.invoke(cli, ["install", str(archive), *cli_args(tmp_path)], input="n\n")

        result = runner.invoke(cli, ["discard", *cli_args(tmp_path)])
        assert result.exit_code == 0
        assert "Discarded process" in result.output
        assert not (tmp_path / ".installation_checkpoint.json").exists()

    def test_resume_without_checkpoint(self, tmp_path):
        runner = CliRunner()
        result = runner.invoke(cli, ["resume", *cli_args(tmp_path)])
        assert result.exit_code == 0
        assert "No interrupted installation" in result.output
