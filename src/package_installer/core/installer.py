"""
Package Installation — validation, queueing and the stepped execution loop.

Lifecycle of an installation or update:

    start_install()  validate archive, resolve requirements, create root queue
    prepare          refresh queue metadata, purge + build nodes
    install (×n)     run one node per step; may suspend for user input
    done             flush derived caches, progress 100

Uninstallation is ``start_uninstall()`` followed by ``uninstall`` steps.

Nothing but ``InstallationState`` (process, queue, node, step) is carried
between steps, so every step can run in a fresh process: objects are rebuilt
from storage each time.
"""

import logging
import os
import time
from dataclasses import dataclass
from typing import Callable

from package_installer.config import InstallerConfig
from package_installer.core.archive import PackageArchive
from package_installer.core.cache import PackageCache
from package_installer.core.checkpoint import InstallationState, InstallationStep
from package_installer.core.download import is_url
from package_installer.core.errors import (
    AbbreviationNotUnique,
    AlreadyInstalled,
    ApplicationNotInstallableHere,
    ArchiveNotFound,
    InstructionHandlerFailure,
    NoInstallInstructions,
    PackageLocked,
    PackageNotUninstallable,
    QueueNotFound,
)
from package_installer.core.nodes import NodeBuilder, delete_queue_archives, validate_delivered_requirements
from package_installer.core.resolver import RequirementResolver
from package_installer.core.version import compare_versions, is_valid_package_name, version_key
from package_installer.handlers.base import HandlerResult, InstructionContext
from package_installer.handlers.registry import HandlerRegistry, default_registry
from package_installer.models.package import InstalledPackage, Instruction
from package_installer.models.queue import END_NODE, InstallationQueue, NodeType, QueueAction
from package_installer.storage.base import PackageStorage

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]


# ──────────────────────────────────────────────
# Step results
# ──────────────────────────────────────────────


@dataclass
class InProgress:
    progress: int
    label: str


@dataclass
class AwaitingInput:
    """The current node needs user input; re-run the step with it."""

    progress: int
    label: str
    document: HandlerResult


@dataclass
class Completed:
    progress: int
    label: str


StepResult = InProgress | AwaitingInput | Completed


@dataclass
class _NodeOutcome:
    next_node: str
    document: HandlerResult | None = None


def _highest(packages: list[InstalledPackage]) -> InstalledPackage | None:
    if not packages:
        return None
    return max(packages, key=lambda p: version_key(p.package_version))


class PackageInstallation:
    """
    Orchestrates installations, updates and uninstallations.

    Storage, handler registry and cache are injected; nothing is global.
    """

    def __init__(
        self,
        store: PackageStorage,
        registry: HandlerRegistry | None = None,
        cache: PackageCache | None = None,
        config: InstallerConfig | None = None,
    ):
        self.store = store
        self.registry = registry or default_registry()
        self.cache = cache or PackageCache(store)
        self.config = config or InstallerConfig()

    # ──────────────────────────────────────────────
    # Starting a process
    # ──────────────────────────────────────────────

    async def start_install(
        self, source: str, user_id: int | None = None, timeout: float | None = None, client=None
    ) -> InstallationState:
        """
        Validate an archive and queue its installation or update.

        Raises:
            PackageInstallerError: Any parsing, applicability or resolution
                error; no queue is created in that case.
        """
        user_id = self.config.user_id if user_id is None else user_id
        archive = PackageArchive(
            source, base_package=self.config.base_package, work_dir=self.config.work_dir
        )
        downloaded = is_url(source)
        if downloaded:
            await archive.download_archive(
                timeout=timeout if timeout is not None else self.config.download_timeout,
                client=client,
            )
        elif not os.path.isfile(source):
            raise ArchiveNotFound(source)

        queue = None
        try:
            descriptor = archive.open_archive()
            with self.store.transaction():
                installed = _highest(self.store.get_packages_by_name(descriptor.name))
                self._validate_applicability(archive, installed)

                locked = self.store.find_open_queue(descriptor.name)
                if locked is not None:
                    raise PackageLocked(descriptor.name, locked.process_no)

                RequirementResolver(descriptor, self.store).ensure_installable()
                validate_delivered_requirements(self.store, archive)

                queue = self.store.create_queue(
                    process_no=self.store.new_process_no(),
                    user_id=user_id,
                    package=descriptor.name,
                    package_name=descriptor.localized("packageName", self.config.language),
                    package_id=installed.package_id if installed else None,
                    archive=os.path.abspath(archive.archive),
                    action=QueueAction.UPDATE if installed else QueueAction.INSTALL,
                    owns_archive=int(downloaded),
                )
        finally:
            if downloaded and queue is None:
                archive.delete_archive()
            else:
                archive.close()

        logger.info(
            f"Queued {queue.action.value} of {queue.package} {descriptor.version} "
            f"(process {queue.process_no}, queue {queue.queue_id})"
        )
        return InstallationState(process_no=queue.process_no, queue_id=queue.queue_id)

    def _validate_applicability(self, archive: PackageArchive, installed: InstalledPackage | None) -> None:
        descriptor = archive.descriptor
        if installed is not None:
            if compare_versions(descriptor.version, installed.package_version) == 0:
                raise AlreadyInstalled(descriptor.name)
            archive.validate_update(installed)
            return

        if not archive.is_valid_install():
            raise NoInstallInstructions(descriptor.name)
        if descriptor.is_application:
            if not self.config.allow_applications:
                raise ApplicationNotInstallableHere(descriptor.name)
            if not archive.has_unique_abbreviation(self.store):
                raise AbbreviationNotUnique(descriptor.name, descriptor.abbreviation)

    def start_uninstall(self, package: str | int, user_id: int | None = None) -> InstallationState:
        """
        Queue the removal of an installed package, by identifier or id.

        Raises:
            PackageNotUninstallable: Unknown package, the base package, or a
                package other installed packages require.
        """
        user_id = self.config.user_id if user_id is None else user_id
        if isinstance(package, str) and is_valid_package_name(package):
            package_id = self.cache.get_package_id(package)
        else:
            try:
                package_id = int(package)
            except ValueError:
                package_id = None

        installed = self.store.get_package(package_id) if package_id else None
        if installed is None:
            raise PackageNotUninstallable(str(package), "package is not installed")
        if installed.package == self.config.base_package:
            raise PackageNotUninstallable(installed.package, "the base package cannot be removed")
        dependents = self.store.get_dependents(installed.package_id)
        if dependents:
            names = ", ".join(sorted(p.package for p in dependents))
            raise PackageNotUninstallable(installed.package, f"required by {names}")

        with self.store.transaction():
            locked = self.store.find_open_queue(installed.package)
            if locked is not None:
                raise PackageLocked(installed.package, locked.process_no)

            queue = self.store.create_queue(
                process_no=self.store.new_process_no(),
                user_id=user_id,
                package=installed.package,
                package_name=installed.package_name,
                package_id=installed.package_id,
                action=QueueAction.UNINSTALL,
            )
            builder = NodeBuilder(self.store, queue)
            builder.purge_nodes()
            builder.build_nodes()

        node = builder.get_next_node()
        logger.info(f"Queued uninstallation of {installed.package} (process {queue.process_no})")
        return InstallationState(
            process_no=queue.process_no,
            queue_id=builder.get_queue_by_node(queue.process_no, node),
            node=node,
            step=InstallationStep.UNINSTALL,
        )

    def discard(self, process_no: int) -> None:
        """Drop the node state, unfinished queues and temporary archives of a process."""
        delete_queue_archives(self.store.get_process_queues(process_no))
        with self.store.transaction():
            self.store.delete_nodes(process_no)
            self.store.delete_open_queues(process_no)
        logger.info(f"Discarded process {process_no}")

    # ──────────────────────────────────────────────
    # Stepping
    # ──────────────────────────────────────────────

    def open_archive(self, queue: InstallationQueue) -> PackageArchive:
        """Open a queue's archive, selecting update instructions for updates."""
        installed = None
        if queue.action == QueueAction.UPDATE and queue.package_id:
            installed = self.store.get_package(queue.package_id)
        archive = PackageArchive(
            queue.archive,
            package=installed,
            base_package=self.config.base_package,
            work_dir=self.config.work_dir,
        )
        archive.open_archive()
        return archive

    async def step(self, state: InstallationState, user_input: dict | None = None) -> StepResult:
        """Run one transition; ``state`` is updated in place."""
        queue = self.store.get_queue(state.queue_id)
        if queue is None:
            raise QueueNotFound(state.queue_id)
        builder = NodeBuilder(self.store, queue, self.open_archive)

        root = self._root_queue(state.process_no)
        if root is not None and root.done:
            # A stale state of a finished process must not run anything again.
            return self._complete(state, root, builder)

        match state.step:
            case InstallationStep.PREPARE:
                return self._step_prepare(state, queue, builder)
            case InstallationStep.INSTALL | InstallationStep.UNINSTALL:
                return await self._step_execute(state, builder, user_input)
            case _:
                return Completed(progress=100, label=self._success_label(root or queue))

    async def run(
        self,
        state: InstallationState,
        on_progress: ProgressCallback | None = None,
        user_input: dict | None = None,
    ) -> StepResult:
        """Step until the process completes or waits for user input."""
        while True:
            result = await self.step(state, user_input)
            user_input = None
            if on_progress is not None:
                on_progress(result.progress, result.label)
            if isinstance(result, (Completed, AwaitingInput)):
                return result

    def _step_prepare(
        self, state: InstallationState, queue: InstallationQueue, builder: NodeBuilder
    ) -> StepResult:
        archive = self.open_archive(queue)
        try:
            self.store.update_queue(
                queue.queue_id,
                package_name=archive.get_localized_package_info("packageName", self.config.language),
            )
        finally:
            archive.close()

        try:
            builder.purge_nodes()
            builder.build_nodes()
        except Exception:
            logger.error(f"Preparing process {queue.process_no} failed, discarding it")
            self.discard(queue.process_no)
            raise

        state.node = builder.get_next_node()
        state.queue_id = builder.get_queue_by_node(queue.process_no, state.node)
        state.step = InstallationStep.INSTALL
        return InProgress(progress=0, label=builder.get_package_name_by_queue(state.queue_id))

    async def _step_execute(
        self,
        state: InstallationState,
        builder: NodeBuilder,
        user_input: dict | None,
    ) -> StepResult:
        outcome = await self._execute_node(state.process_no, state.node, builder, user_input)

        if outcome.document is not None:
            # Stay on the node; it runs again once input is supplied.
            return AwaitingInput(
                progress=builder.calculate_progress(state.node),
                label=builder.get_package_name_by_queue(state.queue_id),
                document=outcome.document,
            )

        if outcome.next_node == END_NODE:
            return self._complete(state, self._root_queue(state.process_no), builder)

        state.node = outcome.next_node
        state.queue_id = builder.get_queue_by_node(state.process_no, state.node)
        return InProgress(
            progress=builder.calculate_progress(state.node),
            label=builder.get_package_name_by_queue(state.queue_id),
        )

    def _root_queue(self, process_no: int) -> InstallationQueue | None:
        for queue in self.store.get_process_queues(process_no):
            if queue.is_root:
                return queue
        return None

    def _complete(
        self, state: InstallationState, root: InstallationQueue | None, builder: NodeBuilder
    ) -> Completed:
        if root is not None and root.action == QueueAction.UNINSTALL:
            builder.purge_nodes()
        self._finalize(state.process_no)
        state.node = END_NODE
        state.step = InstallationStep.DONE
        return Completed(progress=100, label=self._success_label(root))

    def _finalize(self, process_no: int) -> None:
        delete_queue_archives(self.store.get_process_queues(process_no))
        self.cache.flush_all()
        logger.info(f"Finalized process {process_no}: temporary archives deleted, caches flushed")

    @staticmethod
    def _success_label(queue: InstallationQueue | None) -> str:
        if queue is not None and queue.action == QueueAction.UNINSTALL:
            return "Uninstallation complete"
        return "Installation complete"

    # ──────────────────────────────────────────────
    # Node execution
    # ──────────────────────────────────────────────

    async def _execute_node(
        self, process_no: int, node: str, builder: NodeBuilder, user_input: dict | None
    ) -> _NodeOutcome:
        current = self.store.get_node(process_no, node)
        if current is None:
            raise InstructionHandlerFailure(process_no, 0, node, "", "unknown node")

        if current.done:
            # Completed before an interruption; never run it twice.
            logger.debug(f"Node {node} already done, skipping")
            return _NodeOutcome(next_node=builder.get_next_node(node))

        queue = self.store.get_queue(current.queue_id)
        pip = current.node_data.get("pip", current.node_type.value)
        try:
            # The node's effect and its completion mark commit together.
            with self.store.transaction():
                document = await self._run_node(queue, current.node_type, current.node_data, node, user_input)
                if document is None:
                    self._mark_done(process_no, node, queue)
        except Exception as e:
            logger.error(f"Node {node} ({pip}) of queue {queue.queue_id} failed: {e}")
            raise InstructionHandlerFailure(process_no, queue.queue_id, node, pip, str(e)) from e

        if document is not None:
            return _NodeOutcome(next_node=node, document=document)
        return _NodeOutcome(next_node=builder.get_next_node(node))

    def _mark_done(self, process_no: int, node: str, queue: InstallationQueue) -> None:
        self.store.mark_node_done(process_no, node)
        if all(n.done for n in self.store.get_nodes(process_no, queue.queue_id)):
            self.store.update_queue(queue.queue_id, done=1)
            logger.info(f"Queue {queue.queue_id} ({queue.package} {queue.action.value}) done")

    async def _run_node(
        self,
        queue: InstallationQueue,
        node_type: NodeType,
        data: dict,
        node: str,
        user_input: dict | None,
    ) -> HandlerResult | None:
        if node_type == NodeType.REMOVE:
            self.store.delete_package(queue.package_id)
            logger.info(f"Removed package record {queue.package} (#{queue.package_id})")
            return None

        if node_type == NodeType.UNINSTALL:
            handler = self.registry.get(data["pip"])
            await handler.uninstall(
                InstructionContext(
                    queue=queue,
                    package_id=queue.package_id,
                    instruction=Instruction(pip=data["pip"]),
                    store=self.store,
                    install_dir=self.config.install_dir,
                    node=node,
                    user_input=user_input,
                )
            )
            return None

        archive = self.open_archive(queue)
        try:
            if node_type == NodeType.PACKAGE:
                self._write_package(queue, archive)
                return None

            instruction = Instruction.from_dict(data)
            handler = self.registry.get(instruction.pip)
            result = await handler.execute(
                InstructionContext(
                    queue=queue,
                    package_id=queue.package_id,
                    instruction=instruction,
                    store=self.store,
                    install_dir=self.config.install_dir,
                    node=node,
                    archive=archive,
                    user_input=user_input,
                )
            )
            if result is None:
                self.store.log_instruction(queue.package_id, instruction)
            return result
        finally:
            archive.close()

    def _has_package(self, queue: InstallationQueue) -> bool:
        # An install queue carries its package id once the record exists.
        return bool(queue.package_id) and self.store.get_package(queue.package_id) is not None

    def _write_package(self, queue: InstallationQueue, archive: PackageArchive) -> None:
        """Create or update the package record, its requirements and exclusions."""
        descriptor = archive.descriptor
        language = self.config.language
        fields = {
            "package_version": descriptor.version,
            "package_name": descriptor.localized("packageName", language),
            "package_description": descriptor.localized("packageDescription", language),
            "package_url": descriptor.package_url,
            "is_application": int(descriptor.is_application),
            "package_date": descriptor.date,
            "author": descriptor.get_author_info("author") or "",
            "author_url": descriptor.get_author_info("authorURL") or "",
        }

        with self.store.transaction():
            if queue.action == QueueAction.INSTALL and not self._has_package(queue):
                package_id = self.store.add_package(package=descriptor.name, **fields)
                self.store.update_queue(queue.queue_id, package_id=package_id)
                queue.package_id = package_id
            else:
                package_id = queue.package_id
                self.store.update_package(package_id, update_date=int(time.time()), **fields)

            existing = RequirementResolver(descriptor, self.store).existing_requirements()
            self.store.set_requirements(package_id, [p.package_id for p in existing.values()])
            self.store.set_exclusions(package_id, descriptor.excluded_packages)

        logger.info(f"Wrote package record {descriptor.name} {descriptor.version} (#{package_id})")
