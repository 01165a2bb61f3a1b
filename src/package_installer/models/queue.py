"""
Installation queue and node models.

A queue is one install/update/uninstall run (or a dependency sub-run nested
under a root queue via ``parent_queue_id``). Nodes are the resumable
positions inside a process's flattened instruction sequence.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

END_NODE = ""


class QueueAction(Enum):
    INSTALL = "install"
    UPDATE = "update"
    UNINSTALL = "uninstall"


class NodeType(Enum):
    PACKAGE = "package"  # write the package record
    PIP = "pip"  # run one instruction
    UNINSTALL = "uninstall"  # revert one instruction type
    REMOVE = "remove"  # delete the package record


@dataclass
class InstallationQueue:
    queue_id: int
    process_no: int
    user_id: int
    package: str
    action: QueueAction
    parent_queue_id: int = 0
    package_name: str = ""
    package_id: int | None = None
    archive: str = ""
    done: bool = False
    # The archive is a temporary copy (download or extracted sub-archive).
    owns_archive: bool = False

    @property
    def is_root(self) -> bool:
        return self.parent_queue_id == 0

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "InstallationQueue":
        return cls(
            queue_id=row["queue_id"],
            process_no=row["process_no"],
            user_id=row["user_id"],
            package=row["package"],
            action=QueueAction(row["action"]),
            parent_queue_id=row["parent_queue_id"],
            package_name=row["package_name"] or "",
            package_id=row["package_id"],
            archive=row["archive"] or "",
            done=bool(row["done"]),
            owns_archive=bool(row["owns_archive"]),
        )


@dataclass
class InstallationNode:
    node: str
    parent_node: str
    process_no: int
    queue_id: int
    sequence_no: int
    node_type: NodeType
    node_data: dict = field(default_factory=dict)
    done: bool = False

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "InstallationNode":
        return cls(
            node=row["node"],
            parent_node=row["parent_node"],
            process_no=row["process_no"],
            queue_id=row["queue_id"],
            sequence_no=row["sequence_no"],
            node_type=NodeType(row["node_type"]),
            node_data=json.loads(row["node_data"] or "{}"),
            done=bool(row["done"]),
        )
