"""
'notice' instruction — shows a text document and waits for acknowledgement.

    <instruction type="notice">notes/upgrade.txt</instruction>

The installation suspends at this node until the step is re-run with
``{"accepted": True}`` as user input.
"""

import logging

from package_installer.handlers.base import HandlerResult, InstructionContext

logger = logging.getLogger(__name__)


class NoticeHandler:
    pip = "notice"

    async def execute(self, context: InstructionContext) -> HandlerResult | None:
        if context.user_input and context.user_input.get("accepted"):
            logger.debug(f"[notice] {context.instruction.value} acknowledged")
            return None

        text = context.archive.extract_to_string(context.instruction.value).decode("utf-8")
        return HandlerResult(
            document=text,
            title=context.instruction.attributes.get("title", context.instruction.value),
            fields={"accepted": "boolean"},
        )

    async def uninstall(self, context: InstructionContext) -> None:
        return None
