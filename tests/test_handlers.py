"""Tests for instruction handlers and the handler registry."""

import io
import tarfile

import pytest

from conftest import files_tar

from package_installer.core.errors import HandlerNotFoundError
from package_installer.handlers import FileHandler, HandlerRegistry, InstructionHandler, NoticeHandler
from package_installer.handlers.base import InstructionContext
from package_installer.handlers.file import extract_files
from package_installer.models.package import Instruction
from package_installer.models.queue import InstallationQueue, QueueAction


class FakeArchive:
    def __init__(self, tmp_path, members):
        self.tmp_path = tmp_path
        self.members = members

    def extract_tar(self, filename, temp_prefix="package_"):
        path = self.tmp_path / f"{temp_prefix}{filename}"
        path.write_bytes(self.members[filename])
        return path

    def extract_to_string(self, filename):
        return self.members[filename]


def context(store, tmp_path, instruction, archive=None, user_input=None):
    queue = InstallationQueue(
        queue_id=1, process_no=1, user_id=0, package="com.example.plugin", action=QueueAction.INSTALL
    )
    return InstructionContext(
        queue=queue,
        package_id=42,
        instruction=instruction,
        store=store,
        install_dir=tmp_path / "install",
        node="n1",
        archive=archive,
        user_input=user_input,
    )


# ═══════════════════════════════════════════
# Registry Tests
# ═══════════════════════════════════════════


class TestHandlerRegistry:
    def test_register_and_get(self):
        registry = HandlerRegistry()
        handler = FileHandler()
        registry.register(handler)
        assert registry.get("file") is handler
        assert registry.has("file")
        assert isinstance(handler, InstructionHandler)

    def test_missing_handler(self):
        registry = HandlerRegistry()
        registry.register(NoticeHandler())
        with pytest.raises(HandlerNotFoundError) as exc:
            registry.get("sql")
        assert exc.value.to_dict()["available"] == ["notice"]


# ═══════════════════════════════════════════
# File Handler Tests
# ═══════════════════════════════════════════


class TestFileHandler:
    def test_extract_skips_escaping_paths(self, tmp_path):
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w") as tar:
            for name in ("ok/file.txt", "../escape.txt", "/abs.txt"):
                info = tarfile.TarInfo(name)
                info.size = 2
                tar.addfile(info, io.BytesIO(b"hi"))
        source = tmp_path / "files.tar"
        source.write_bytes(buffer.getvalue())

        written = extract_files(source, tmp_path / "install")
        assert written == ["ok/file.txt"]
        assert not (tmp_path / "escape.txt").exists()

    @pytest.mark.asyncio
    async def test_execute_and_uninstall(self, store, tmp_path):
        archive = FakeArchive(tmp_path, {"files.tar": files_tar({"a/b.txt": "b", "c.txt": "c"})})
        handler = FileHandler()

        ctx = context(store, tmp_path, Instruction(pip="file", value=""), archive=archive)
        assert await handler.execute(ctx) is None
        assert (tmp_path / "install" / "a" / "b.txt").read_text() == "b"
        assert store.get_logged_files(42) == ["a/b.txt", "c.txt"]
        assert not (tmp_path / "files_files.tar").exists()

        await handler.uninstall(ctx)
        assert not (tmp_path / "install" / "c.txt").exists()
        assert store.get_logged_files(42) == []


# ═══════════════════════════════════════════
# Notice Handler Tests
# ═══════════════════════════════════════════


class TestNoticeHandler:
    @pytest.mark.asyncio
    async def test_requires_acceptance(self, store, tmp_path):
        archive = FakeArchive(tmp_path, {"notes.txt": b"Read carefully"})
        instruction = Instruction(pip="notice", value="notes.txt")

        result = await NoticeHandler().execute(context(store, tmp_path, instruction, archive=archive))
        assert result.document == "Read carefully"
        assert result.title == "notes.txt"
        assert result.fields == {"accepted": "boolean"}

        accepted = context(store, tmp_path, instruction, archive=archive, user_input={"accepted": True})
        assert await NoticeHandler().execute(accepted) is None
