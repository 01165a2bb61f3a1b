"""
Instruction Handler Protocol — the plug-in boundary of the installer.

A handler is keyed by the ``pip`` (type) attribute of an ``instruction``
element. The orchestrator calls ``execute`` for every install/update
instruction and ``uninstall`` once per handler type when a package is
removed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from package_installer.models.package import Instruction
from package_installer.models.queue import InstallationQueue
from package_installer.storage.base import PackageStorage

if TYPE_CHECKING:
    from package_installer.core.archive import PackageArchive


@dataclass
class InstructionContext:
    """Everything a handler may touch while running one node."""

    queue: InstallationQueue
    package_id: int
    instruction: Instruction
    store: PackageStorage
    install_dir: Path
    node: str
    archive: PackageArchive | None = None
    user_input: dict[str, Any] | None = None


@dataclass
class HandlerResult:
    """
    Outcome of a handler run that needs user interaction.

    Returning a document suspends the installation at the current node; the
    same node runs again with the user's input on the next step.
    """

    document: str
    title: str = ""
    fields: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class InstructionHandler(Protocol):
    pip: str

    async def execute(self, context: InstructionContext) -> HandlerResult | None:
        """Perform the instruction; return a HandlerResult to wait for input."""
        ...

    async def uninstall(self, context: InstructionContext) -> None:
        """Revert everything this handler did for the package."""
        ...
