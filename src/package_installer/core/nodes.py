"""
Node builder — flattens a queue's instructions into resumable nodes.

Nodes of one process form a singly linked list through ``parent_node``; the
first node has the parent ``""`` and the successor of the last node is the
end sentinel ``""``. Delivered requirements get their own child queues whose
nodes are built (depth first) before the nodes of the queue requiring them,
so a process's node list interleaves several queues.
"""

import logging
import uuid
from typing import Callable

from package_installer.core.archive import PackageArchive
from package_installer.core.errors import NoInstallInstructions, UnsatisfiedRequirements
from package_installer.core.resolver import OpenRequirement, RequirementResolver
from package_installer.models.package import InstalledPackage
from package_installer.models.queue import (
    END_NODE,
    InstallationNode,
    InstallationQueue,
    NodeType,
    QueueAction,
)
from package_installer.storage.base import PackageStorage

logger = logging.getLogger(__name__)

ArchiveLoader = Callable[[InstallationQueue], PackageArchive]


def delete_queue_archives(queues: list[InstallationQueue]) -> None:
    """Delete the temporary archive copies owned by ``queues``."""
    for queue in queues:
        if queue.owns_archive and queue.archive:
            PackageArchive(queue.archive).delete_archive()
            logger.debug(f"Deleted temporary archive {queue.archive} of queue {queue.queue_id}")


def _missing_sub_requirements(
    resolver: RequirementResolver, open_requirements: dict[str, OpenRequirement], scheduled: set[str]
) -> None:
    """Sub-packages may only rely on what is installed or delivered in this process."""
    missing = [name for name, r in open_requirements.items() if not r.file and name not in scheduled]
    if missing:
        report = resolver.check().to_dict()
        report["missingPackages"] = len(missing)
        raise UnsatisfiedRequirements(report)


def _open_delivered(
    store: PackageStorage, archive: PackageArchive, requirement: OpenRequirement
) -> tuple[PackageArchive, InstalledPackage | None]:
    """Extract and open a bundled requirement, checking it can install or update."""
    path = archive.extract_tar(requirement.file)
    installed = store.get_package(requirement.package_id) if requirement.package_id else None
    child = PackageArchive(path, package=installed, base_package=archive.base_package, work_dir=archive.work_dir)
    try:
        child.open_archive()
        if installed is not None:
            child.validate_update()
        elif not child.is_valid_install():
            raise NoInstallInstructions(child.name)
    except BaseException:
        child.delete_archive()
        raise
    return child, installed


def validate_delivered_requirements(
    store: PackageStorage, archive: PackageArchive, scheduled: set[str] | None = None, is_root: bool = True
) -> None:
    """
    Check every bundled requirement of ``archive``, recursively, without queueing.

    Raises:
        ArchiveEntryMissing: A bundled sub-archive is not in the archive.
        PackageInstallerError: A sub-archive does not parse, cannot be
            applied, or needs a package that is neither installed nor bundled.
    """
    resolver = RequirementResolver(archive.descriptor, store)
    open_requirements = resolver.open_requirements()
    scheduled = scheduled if scheduled is not None else {archive.name}
    if not is_root:
        _missing_sub_requirements(resolver, open_requirements, scheduled)

    delivered = {name for name, r in open_requirements.items() if r.file and name not in scheduled}
    scheduled = scheduled | delivered
    for requirement in open_requirements.values():
        if requirement.name not in delivered:
            continue
        child, _ = _open_delivered(store, archive, requirement)
        try:
            validate_delivered_requirements(store, child, scheduled, is_root=False)
        finally:
            child.delete_archive()


class NodeBuilder:
    """
    Builds, walks and measures the node list of one installation process.

    Args:
        store: Package store.
        queue: The queue this builder operates on (normally the root queue).
        archive_loader: Opens the archive of a queue (not used for uninstalls).
    """

    def __init__(
        self,
        store: PackageStorage,
        queue: InstallationQueue,
        archive_loader: ArchiveLoader | None = None,
    ):
        self.store = store
        self.queue = queue
        self.archive_loader = archive_loader
        self._last_node = END_NODE
        self._sequence_no = 0
        self._extracted: list[PackageArchive] = []

    @property
    def process_no(self) -> int:
        return self.queue.process_no

    # ──────────────────────────────────────────────
    # Building
    # ──────────────────────────────────────────────

    def purge_nodes(self) -> None:
        """Discard all node state of the process, and its unfinished sub-queues."""
        self.store.delete_nodes(self.process_no)
        if self.queue.is_root:
            delete_queue_archives(
                [
                    q
                    for q in self.store.get_process_queues(self.process_no)
                    if not q.is_root and not q.done
                ]
            )
            self.store.delete_child_queues(self.process_no, self.queue.queue_id)
        logger.debug(f"Purged nodes of process {self.process_no}")

    def build_nodes(self) -> None:
        """Create the node list for the queue, in manifest order."""
        existing = self.store.get_nodes(self.process_no)
        self._sequence_no = len(existing)
        self._last_node = existing[-1].node if existing else END_NODE

        self._extracted = []
        try:
            with self.store.transaction():
                if self.queue.action == QueueAction.UNINSTALL:
                    self._build_uninstall_nodes(self.queue)
                else:
                    archive = self.archive_loader(self.queue)
                    try:
                        self._build_install_nodes(self.queue, archive, scheduled={self.queue.package})
                    finally:
                        archive.close()
        except BaseException:
            # Queue rows are rolled back with the build; extracted copies are not.
            for child in self._extracted:
                child.delete_archive()
            raise

        logger.info(f"Built {self._sequence_no - len(existing)} nodes for process {self.process_no}")

    def _add_node(self, queue: InstallationQueue, node_type: NodeType, data: dict) -> str:
        node = uuid.uuid4().hex
        self.store.insert_node(
            InstallationNode(
                node=node,
                parent_node=self._last_node,
                process_no=queue.process_no,
                queue_id=queue.queue_id,
                sequence_no=self._sequence_no,
                node_type=node_type,
                node_data=data,
            )
        )
        self._last_node = node
        self._sequence_no += 1
        return node

    def _build_install_nodes(
        self, queue: InstallationQueue, archive: PackageArchive, scheduled: set[str]
    ) -> None:
        resolver = RequirementResolver(archive.descriptor, self.store)
        open_requirements = resolver.open_requirements()
        delivered = {name for name, r in open_requirements.items() if r.file}

        if not queue.is_root:
            _missing_sub_requirements(resolver, open_requirements, scheduled)

        scheduled = scheduled | delivered
        for requirement in open_requirements.values():
            if not requirement.file:
                continue
            if any(q.package == requirement.name for q in self.store.get_process_queues(self.process_no)):
                continue
            self._build_requirement(queue, archive, requirement, scheduled)

        action = queue.action
        self._add_node(queue, NodeType.PACKAGE, {"action": action.value})

        if action == QueueAction.INSTALL:
            instructions = archive.get_install_instructions()
        else:
            instructions = archive.get_update_instructions()
        for instruction in instructions:
            self._add_node(queue, NodeType.PIP, instruction.to_dict())

    def _build_requirement(self, parent, archive, requirement, scheduled) -> None:
        child_archive, installed = _open_delivered(self.store, archive, requirement)
        self._extracted.append(child_archive)
        try:
            child = self.store.create_queue(
                process_no=parent.process_no,
                parent_queue_id=parent.queue_id,
                user_id=parent.user_id,
                package=child_archive.name,
                package_name=child_archive.get_localized_package_info("packageName"),
                package_id=installed.package_id if installed else None,
                archive=child_archive.archive,
                action=QueueAction.UPDATE if installed else QueueAction.INSTALL,
                owns_archive=1,
            )
            logger.info(
                f"Queued delivered requirement {child.package} ({child.action.value}) "
                f"as queue {child.queue_id} under {parent.queue_id}"
            )
            self._build_install_nodes(child, child_archive, scheduled)
        finally:
            child_archive.close()

    def _build_uninstall_nodes(self, queue: InstallationQueue) -> None:
        pips: list[str] = []
        for instruction in reversed(self.store.get_logged_instructions(queue.package_id)):
            if instruction.pip not in pips:
                pips.append(instruction.pip)

        for pip in pips:
            self._add_node(queue, NodeType.UNINSTALL, {"pip": pip})
        self._add_node(queue, NodeType.REMOVE, {})

    # ──────────────────────────────────────────────
    # Walking
    # ──────────────────────────────────────────────

    def get_next_node(self, current: str = END_NODE) -> str:
        """Node following ``current`` (the first node for ``""``), or the end sentinel."""
        child = self.store.get_child_node(self.process_no, current)
        return child.node if child else END_NODE

    def get_queue_by_node(self, process_no: int, node: str) -> int:
        """Queue owning ``node`` within ``process_no``; 0 for the sentinel."""
        if node == END_NODE:
            return 0
        found = self.store.get_node(process_no, node)
        return found.queue_id if found else 0

    def calculate_progress(self, node: str) -> int:
        """Percentage of the process completed when ``node`` is the current position."""
        if node == END_NODE:
            return 100

        nodes = self.store.get_nodes(self.process_no)
        for position, current in enumerate(nodes):
            if current.node == node:
                return min(99, (100 * position) // len(nodes))
        return 0

    def get_package_name_by_queue(self, queue_id: int) -> str:
        queue = self.store.get_queue(queue_id)
        if queue is None:
            return ""
        return queue.package_name or queue.package
