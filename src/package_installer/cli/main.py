"""
Package Installer CLI — install, update and remove package archives.

Usage:
    package-installer install ./com.example.plugin.tar.gz
    package-installer install https://example.com/com.example.plugin.tar --timeout 60
    package-installer uninstall com.example.plugin
    package-installer resume
    package-installer list
"""

import asyncio
import json
import logging
import sys

import click
from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table

from package_installer.core.errors import PackageInstallerError

console = Console()


def _configure_logging(verbose: bool) -> None:
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _load_config(db, install_dir, work_dir, language, timeout):
    from package_installer.config import InstallerConfig

    return InstallerConfig.from_env(
        db_path=db,
        install_dir=install_dir,
        work_dir=work_dir,
        language=language,
        download_timeout=timeout,
    )


def _open_installation(config):
    from package_installer.core.installer import PackageInstallation
    from package_installer.storage import get_store

    config.db_path.parent.mkdir(parents=True, exist_ok=True)
    config.install_dir.mkdir(parents=True, exist_ok=True)
    config.work_dir.mkdir(parents=True, exist_ok=True)
    return PackageInstallation(get_store(str(config.db_path)), config=config)


def _fail(error: PackageInstallerError) -> None:
    click.echo(json.dumps(error.to_dict(), indent=2), err=True)
    sys.exit(1)


async def _drive(installation, state, checkpoint_file) -> None:
    """Step a process to completion, asking for input whenever a node needs it."""
    from package_installer.core.checkpoint import clear_checkpoint, save_checkpoint
    from package_installer.core.installer import AwaitingInput, Completed

    save_checkpoint(checkpoint_file, state)
    user_input = None

    with Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        console=console,
    ) as progress:
        task = progress.add_task("Installing", total=100)
        while True:
            result = await installation.step(state, user_input)
            user_input = None
            save_checkpoint(checkpoint_file, state)
            progress.update(task, completed=result.progress, description=result.label or "Installing")

            if isinstance(result, Completed):
                break
            if isinstance(result, AwaitingInput):
                progress.stop()
                if result.document.title:
                    console.rule(result.document.title)
                console.print(result.document.document)
                if not click.confirm("Accept and continue?", default=False):
                    console.print(
                        f"[yellow]Paused at process {state.process_no}; run 'resume' to continue.[/yellow]"
                    )
                    return
                user_input = {"accepted": True}
                progress.start()

    clear_checkpoint(checkpoint_file)
    console.print(f"[green]{result.label}[/green]")


def common_options(func):
    """Storage and location options shared by every command."""
    options = [
        click.option("--db", type=click.Path(), default=None, help="Package database path."),
        click.option("--install-dir", type=click.Path(), default=None, help="Directory files are deployed to."),
        click.option("--work-dir", type=click.Path(), default=None, help="Directory for temporary archives."),
        click.option("--language", type=str, default=None, help="Preferred language for package names."),
        click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.version_option(package_name="package-installer")
def cli():
    """Package Installer — archive-driven package installation engine."""
    pass


@cli.command()
@click.argument("source")
@click.option("--timeout", type=float, default=None, help="Download timeout in seconds.")
@click.option("--user-id", type=int, default=None, help="User the process is queued for.")
@click.option("--allow-applications", is_flag=True, help="Allow installing application packages.")
@common_options
def install(source, timeout, user_id, allow_applications, db, install_dir, work_dir, language, verbose):
    """Install or update a package from a local archive or URL."""
    _configure_logging(verbose)
    config = _load_config(db, install_dir, work_dir, language, timeout)
    config.allow_applications = allow_applications
    installation = _open_installation(config)

    async def run():
        state = await installation.start_install(source, user_id=user_id)
        await _drive(installation, state, config.checkpoint_file)

    try:
        asyncio.run(run())
    except PackageInstallerError as e:
        _fail(e)


@cli.command()
@click.argument("package")
@click.option("--user-id", type=int, default=None, help="User the process is queued for.")
@common_options
def uninstall(package, user_id, db, install_dir, work_dir, language, verbose):
    """Uninstall an installed package by identifier or id."""
    _configure_logging(verbose)
    config = _load_config(db, install_dir, work_dir, language, None)
    installation = _open_installation(config)

    async def run():
        state = installation.start_uninstall(package, user_id=user_id)
        await _drive(installation, state, config.checkpoint_file)

    try:
        asyncio.run(run())
    except PackageInstallerError as e:
        _fail(e)


@cli.command()
@common_options
def resume(db, install_dir, work_dir, language, verbose):
    """Resume an interrupted process from its checkpoint."""
    from package_installer.core.checkpoint import load_checkpoint

    _configure_logging(verbose)
    config = _load_config(db, install_dir, work_dir, language, None)
    state = load_checkpoint(config.checkpoint_file)
    if state is None:
        click.echo("No interrupted installation found.")
        return

    installation = _open_installation(config)
    click.echo(f"Resuming process {state.process_no} at step {state.step.value}")
    try:
        asyncio.run(_drive(installation, state, config.checkpoint_file))
    except PackageInstallerError as e:
        _fail(e)


@cli.command()
@common_options
def discard(db, install_dir, work_dir, language, verbose):
    """Abandon an interrupted process and release its package lock."""
    from package_installer.core.checkpoint import clear_checkpoint, load_checkpoint

    _configure_logging(verbose)
    config = _load_config(db, install_dir, work_dir, language, None)
    state = load_checkpoint(config.checkpoint_file)
    if state is None:
        click.echo("No interrupted installation found.")
        return

    installation = _open_installation(config)
    installation.discard(state.process_no)
    clear_checkpoint(config.checkpoint_file)
    click.echo(f"Discarded process {state.process_no}")


@cli.command()
@click.argument("archive", type=click.Path(exists=True, dir_okay=False))
@click.option("--language", type=str, default=None, help="Preferred language for package names.")
def info(archive, language):
    """Show the manifest of a package archive as JSON."""
    from package_installer.core.archive import PackageArchive

    package_archive = PackageArchive(archive)
    try:
        descriptor = package_archive.open_archive()
    except PackageInstallerError as e:
        _fail(e)
    finally:
        package_archive.close()

    data = {
        "name": descriptor.name,
        "version": descriptor.version,
        "packageName": descriptor.localized("packageName", language),
        "packageDescription": descriptor.localized("packageDescription", language),
        "isApplication": descriptor.is_application,
        "author": descriptor.get_author_info("author"),
        "requirements": {
            name: requirement.minversion for name, requirement in descriptor.requirements.items()
        },
        "excludedPackages": {e.name: e.version for e in descriptor.excluded_packages},
        "installInstructions": [i.to_dict() for i in descriptor.install_instructions],
        "updateFrom": list(descriptor.update_instructions.keys()),
    }
    click.echo(json.dumps(data, indent=2))


@cli.command(name="list")
@common_options
def list_packages(db, install_dir, work_dir, language, verbose):
    """List installed packages."""
    from package_installer.storage import get_store

    _configure_logging(verbose)
    config = _load_config(db, install_dir, work_dir, language, None)
    if not config.db_path.exists():
        click.echo("No packages installed.")
        return

    store = get_store(str(config.db_path))
    try:
        packages = store.list_packages()
    finally:
        store.close()

    table = Table("ID", "Package", "Version", "Name")
    for package in packages:
        table.add_row(str(package.package_id), package.package, package.package_version, package.package_name)
    console.print(table)


if __name__ == "__main__":
    cli()
