"""Instruction handler registry.

Maps a ``pip`` type tag to the handler that executes it. Handlers are
registered explicitly at startup; there is no runtime class discovery.
"""

from package_installer.core.errors import HandlerNotFoundError
from package_installer.handlers.base import InstructionHandler


class HandlerRegistry:
    """Registry of instruction handlers.

    Example:
        >>> registry = HandlerRegistry()
        >>> registry.register(FileHandler())
        >>> handler = registry.get("file")
    """

    def __init__(self) -> None:
        self._handlers: dict[str, InstructionHandler] = {}

    def register(self, handler: InstructionHandler) -> None:
        """Register a handler under its ``pip``; replaces an earlier one."""
        self._handlers[handler.pip] = handler

    def get(self, pip: str) -> InstructionHandler:
        """Look up a handler.

        Raises:
            HandlerNotFoundError: If no handler is registered for ``pip``.
        """
        try:
            return self._handlers[pip]
        except KeyError:
            raise HandlerNotFoundError(pip, available=self.list_handlers()) from None

    def has(self, pip: str) -> bool:
        return pip in self._handlers

    def list_handlers(self) -> list[str]:
        return list(self._handlers.keys())


def default_registry() -> HandlerRegistry:
    """Registry with the built-in handlers."""
    from package_installer.handlers.file import FileHandler
    from package_installer.handlers.notice import NoticeHandler

    registry = HandlerRegistry()
    registry.register(FileHandler())
    registry.register(NoticeHandler())
    return registry
