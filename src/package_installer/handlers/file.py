"""
'file' instruction — deploys a bundled tar of files into the install directory.

    <instruction type="file">files.tar</instruction>

Every written file is logged against the package so uninstallation can
remove exactly what was deployed.
"""

import logging
import os
import shutil
import tarfile
from pathlib import Path

from package_installer.handlers.base import HandlerResult, InstructionContext

logger = logging.getLogger(__name__)

DEFAULT_FILES_ARCHIVE = "files.tar"


def _safe_target(root: Path, member_name: str) -> Path | None:
    """Resolve a member below ``root``; None for absolute or escaping paths."""
    if os.path.isabs(member_name):
        return None
    target = (root / member_name).resolve()
    if target != root and root not in target.parents:
        return None
    return target


def extract_files(source: Path, install_dir: Path) -> list[str]:
    """Extract the regular files of a tar archive; return their relative names."""
    root = install_dir.resolve()
    written = []
    with tarfile.open(source, "r:*") as tar:
        for member in tar.getmembers():
            if not member.isfile():
                continue
            target = _safe_target(root, member.name)
            if target is None:
                logger.warning(f"Skipping unsafe path {member.name!r} in {source}")
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            with tar.extractfile(member) as src, open(target, "wb") as out:
                shutil.copyfileobj(src, out)
            written.append(target.relative_to(root).as_posix())
    return written


class FileHandler:
    pip = "file"

    async def execute(self, context: InstructionContext) -> HandlerResult | None:
        filename = context.instruction.value or DEFAULT_FILES_ARCHIVE
        source = context.archive.extract_tar(filename, temp_prefix="files_")
        try:
            written = extract_files(source, context.install_dir)
        finally:
            source.unlink(missing_ok=True)

        context.store.log_files(context.package_id, written)
        logger.info(f"[file] Deployed {len(written)} files for {context.queue.package}")
        return None

    async def uninstall(self, context: InstructionContext) -> None:
        root = context.install_dir.resolve()
        removed = 0
        for filename in context.store.get_logged_files(context.package_id):
            target = _safe_target(root, filename)
            if target is not None and target.is_file():
                target.unlink()
                removed += 1
        context.store.delete_file_log(context.package_id)
        logger.info(f"[file] Removed {removed} files of {context.queue.package}")
