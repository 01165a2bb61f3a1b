"""
Storage Protocol — the contract the installation core requires from storage.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Iterable, Protocol, runtime_checkable

from package_installer.models.package import ExcludedPackage, InstalledPackage, Instruction
from package_installer.models.queue import InstallationNode, InstallationQueue


@runtime_checkable
class PackageStorage(Protocol):
    """
    Protocol that all package stores must implement.

    Reads used by the resolver must reflect the latest committed state;
    ``transaction()`` serializes conflicting writers.
    """

    def transaction(self) -> AbstractContextManager:
        """Hold the write lock for the duration of a block."""
        ...

    # Packages
    def get_package(self, package_id: int) -> InstalledPackage | None: ...

    def get_packages_by_name(self, name: str) -> list[InstalledPackage]: ...

    def find_packages(self, names: Iterable[str]) -> list[InstalledPackage]: ...

    def list_packages(self) -> list[InstalledPackage]: ...

    def add_package(self, **fields) -> int: ...

    def update_package(self, package_id: int, **fields) -> None: ...

    def delete_package(self, package_id: int) -> None: ...

    def count_applications(self, abbreviation: str) -> int: ...

    # Requirements & exclusions
    def set_requirements(self, package_id: int, requirement_ids: Iterable[int]) -> None: ...

    def get_requirements(self, package_id: int) -> list[InstalledPackage]: ...

    def get_dependents(self, package_id: int) -> list[InstalledPackage]: ...

    def set_exclusions(self, package_id: int, exclusions: Iterable[ExcludedPackage]) -> None: ...

    def get_excluding_packages(self, name: str) -> list[InstalledPackage]: ...

    # Instruction & file logs
    def log_instruction(self, package_id: int, instruction: Instruction) -> None: ...

    def get_logged_instructions(self, package_id: int) -> list[Instruction]: ...

    def log_files(self, package_id: int, filenames: Iterable[str]) -> None: ...

    def get_logged_files(self, package_id: int) -> list[str]: ...

    def delete_file_log(self, package_id: int) -> None: ...

    # Queues
    def new_process_no(self) -> int: ...

    def create_queue(self, **fields) -> InstallationQueue: ...

    def get_queue(self, queue_id: int) -> InstallationQueue | None: ...

    def get_process_queues(self, process_no: int) -> list[InstallationQueue]: ...

    def find_open_queue(self, package: str) -> InstallationQueue | None: ...

    def update_queue(self, queue_id: int, **fields) -> None: ...

    def delete_child_queues(self, process_no: int, root_queue_id: int) -> None: ...

    def delete_open_queues(self, process_no: int) -> None: ...

    # Nodes
    def insert_node(self, node: InstallationNode) -> None: ...

    def get_node(self, process_no: int, node: str) -> InstallationNode | None: ...

    def get_child_node(self, process_no: int, parent_node: str) -> InstallationNode | None: ...

    def get_nodes(self, process_no: int, queue_id: int | None = None) -> list[InstallationNode]: ...

    def mark_node_done(self, process_no: int, node: str) -> None: ...

    def delete_nodes(self, process_no: int) -> None: ...
