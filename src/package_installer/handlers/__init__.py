"""Instruction handlers, keyed by ``pip`` type."""

from package_installer.handlers.base import HandlerResult, InstructionContext, InstructionHandler
from package_installer.handlers.file import FileHandler
from package_installer.handlers.notice import NoticeHandler
from package_installer.handlers.registry import HandlerRegistry, default_registry

__all__ = [
    "InstructionHandler",
    "InstructionContext",
    "HandlerResult",
    "HandlerRegistry",
    "FileHandler",
    "NoticeHandler",
    "default_registry",
]
