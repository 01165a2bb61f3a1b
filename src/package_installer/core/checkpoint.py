"""
Checkpoint management for resumable installations.

The orchestrator needs nothing but ``(process_no, queue_id, node, step)``
between invocations; everything else is reconstructed from storage. The CLI
saves this tuple after every step so an interrupted run can be resumed.
"""

import json
import logging
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path

logger = logging.getLogger(__name__)


class InstallationStep(Enum):
    """Orchestrator states."""

    PREPARE = "prepare"
    INSTALL = "install"
    UNINSTALL = "uninstall"
    DONE = "done"


@dataclass
class InstallationState:
    """Resumption key of one installation process."""

    process_no: int
    queue_id: int
    node: str = ""
    step: InstallationStep = InstallationStep.PREPARE
    last_updated: float = field(default_factory=time.time)

    @property
    def finished(self) -> bool:
        return self.step == InstallationStep.DONE

    def to_dict(self) -> dict:
        """Serialize to JSON-compatible dict (handling enums)."""
        data = asdict(self)
        data["step"] = self.step.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "InstallationState":
        return cls(
            process_no=data["process_no"],
            queue_id=data["queue_id"],
            node=data.get("node", ""),
            step=InstallationStep(data.get("step", InstallationStep.PREPARE.value)),
            last_updated=data.get("last_updated", time.time()),
        )


def load_checkpoint(path: Path) -> InstallationState | None:
    """Load a checkpoint from disk if it exists."""
    if not path.exists():
        return None

    with open(path) as f:
        return InstallationState.from_dict(json.load(f))


def save_checkpoint(path: Path, state: InstallationState) -> None:
    """Save a checkpoint to disk, replacing the previous one atomically."""
    state.last_updated = time.time()
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w") as f:
        json.dump(state.to_dict(), f, indent=2)
    tmp_path.replace(path)
    logger.debug(f"Saved checkpoint {state.step.value} node={state.node!r} to {path}")


def clear_checkpoint(path: Path) -> None:
    if path.exists():
        path.unlink()
