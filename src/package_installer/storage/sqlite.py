"""
SQLite Package Store — persists packages, queues and node positions.

Write methods auto-commit unless they run inside ``transaction()``, which opens
a ``BEGIN IMMEDIATE`` transaction: the database write lock is held until the
block ends, so two processes cannot resolve and queue the same package at
the same time.
"""

import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator

from package_installer.models.package import ExcludedPackage, InstalledPackage, Instruction
from package_installer.models.queue import InstallationNode, InstallationQueue, QueueAction

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS package (
    package_id INTEGER PRIMARY KEY AUTOINCREMENT,
    package TEXT NOT NULL,
    package_version TEXT NOT NULL,
    package_name TEXT,
    package_description TEXT,
    package_url TEXT,
    is_application INTEGER NOT NULL DEFAULT 0,
    package_date INTEGER,
    install_date INTEGER,
    update_date INTEGER,
    author TEXT,
    author_url TEXT
);
CREATE INDEX IF NOT EXISTS package_name_idx ON package (package);

CREATE TABLE IF NOT EXISTS package_requirement (
    package_id INTEGER NOT NULL,
    requirement INTEGER NOT NULL,
    PRIMARY KEY (package_id, requirement)
);

CREATE TABLE IF NOT EXISTS package_exclusion (
    package_id INTEGER NOT NULL,
    excluded_package TEXT NOT NULL,
    excluded_package_version TEXT,
    PRIMARY KEY (package_id, excluded_package)
);

CREATE TABLE IF NOT EXISTS package_instruction_log (
    package_id INTEGER NOT NULL,
    sequence_no INTEGER NOT NULL,
    pip TEXT NOT NULL,
    value TEXT,
    attributes TEXT
);

CREATE TABLE IF NOT EXISTS package_file_log (
    package_id INTEGER NOT NULL,
    filename TEXT NOT NULL,
    PRIMARY KEY (package_id, filename)
);

CREATE TABLE IF NOT EXISTS package_installation_queue (
    queue_id INTEGER PRIMARY KEY AUTOINCREMENT,
    process_no INTEGER NOT NULL,
    parent_queue_id INTEGER NOT NULL DEFAULT 0,
    user_id INTEGER NOT NULL DEFAULT 0,
    package TEXT NOT NULL,
    package_name TEXT,
    package_id INTEGER,
    archive TEXT,
    action TEXT NOT NULL,
    done INTEGER NOT NULL DEFAULT 0,
    owns_archive INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS package_installation_node (
    node TEXT NOT NULL,
    parent_node TEXT NOT NULL DEFAULT '',
    process_no INTEGER NOT NULL,
    queue_id INTEGER NOT NULL,
    sequence_no INTEGER NOT NULL,
    node_type TEXT NOT NULL,
    node_data TEXT,
    done INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (process_no, node)
);
"""

_PACKAGE_COLUMNS = (
    "package",
    "package_version",
    "package_name",
    "package_description",
    "package_url",
    "is_application",
    "package_date",
    "install_date",
    "update_date",
    "author",
    "author_url",
)
_QUEUE_COLUMNS = (
    "process_no",
    "parent_queue_id",
    "user_id",
    "package",
    "package_name",
    "package_id",
    "archive",
    "action",
    "done",
    "owns_archive",
)


class SQLitePackageStore:
    """
    SQLite implementation of the PackageStorage protocol.

    Rows are returned as model objects; list/dict columns are JSON strings.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = db_path
        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        # Autocommit mode; transactions are opened explicitly.
        self.conn = sqlite3.connect(str(db_path), isolation_level=None, timeout=30.0)
        self.conn.row_factory = sqlite3.Row
        self.conn.executescript(SCHEMA_SQL)
        self._depth = 0

    def close(self) -> None:
        self.conn.close()

    @contextmanager
    def transaction(self) -> Iterator["SQLitePackageStore"]:
        """Run a block under the database write lock; nested calls join the outer one."""
        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        self.conn.execute("BEGIN IMMEDIATE")
        self._depth = 1
        try:
            yield self
        except BaseException:
            self.conn.execute("ROLLBACK")
            raise
        else:
            self.conn.execute("COMMIT")
        finally:
            self._depth = 0

    # ──────────────────────────────────────────────
    # Packages
    # ──────────────────────────────────────────────

    def get_package(self, package_id: int) -> InstalledPackage | None:
        row = self.conn.execute(
            "SELECT * FROM package WHERE package_id = ?", (package_id,)
        ).fetchone()
        return InstalledPackage.from_row(row) if row else None

    def get_packages_by_name(self, name: str) -> list[InstalledPackage]:
        rows = self.conn.execute(
            "SELECT * FROM package WHERE package = ? ORDER BY package_id", (name,)
        ).fetchall()
        return [InstalledPackage.from_row(row) for row in rows]

    def find_packages(self, names: Iterable[str]) -> list[InstalledPackage]:
        names = list(names)
        if not names:
            return []
        placeholders = ", ".join("?" for _ in names)
        rows = self.conn.execute(
            f"SELECT * FROM package WHERE package IN ({placeholders}) ORDER BY package_id", names
        ).fetchall()
        return [InstalledPackage.from_row(row) for row in rows]

    def list_packages(self) -> list[InstalledPackage]:
        rows = self.conn.execute("SELECT * FROM package ORDER BY package").fetchall()
        return [InstalledPackage.from_row(row) for row in rows]

    def add_package(self, **fields) -> int:
        columns = [column for column in _PACKAGE_COLUMNS if column in fields]
        fields.setdefault("install_date", int(time.time()))
        if "install_date" not in columns:
            columns.append("install_date")
        with self.transaction():
            cursor = self.conn.execute(
                f"INSERT INTO package ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
                [fields[column] for column in columns],
            )
        logger.debug(f"Added package {fields.get('package')} as #{cursor.lastrowid}")
        return cursor.lastrowid

    def update_package(self, package_id: int, **fields) -> None:
        columns = [column for column in _PACKAGE_COLUMNS if column in fields]
        if not columns:
            return
        with self.transaction():
            self.conn.execute(
                f"UPDATE package SET {', '.join(f'{c} = ?' for c in columns)} WHERE package_id = ?",
                [fields[column] for column in columns] + [package_id],
            )

    def delete_package(self, package_id: int) -> None:
        with self.transaction():
            for table in (
                "package_requirement",
                "package_exclusion",
                "package_instruction_log",
                "package_file_log",
                "package",
            ):
                self.conn.execute(f"DELETE FROM {table} WHERE package_id = ?", (package_id,))
            self.conn.execute("DELETE FROM package_requirement WHERE requirement = ?", (package_id,))

    def count_applications(self, abbreviation: str) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) FROM package WHERE is_application = 1 AND package LIKE ?",
            (f"%.{abbreviation}",),
        ).fetchone()
        return row[0]

    # ──────────────────────────────────────────────
    # Requirements & exclusions
    # ──────────────────────────────────────────────

    def set_requirements(self, package_id: int, requirement_ids: Iterable[int]) -> None:
        with self.transaction():
            self.conn.execute("DELETE FROM package_requirement WHERE package_id = ?", (package_id,))
            self.conn.executemany(
                "INSERT OR IGNORE INTO package_requirement (package_id, requirement) VALUES (?, ?)",
                [(package_id, requirement_id) for requirement_id in requirement_ids],
            )

    def get_requirements(self, package_id: int) -> list[InstalledPackage]:
        """Installed packages the given package was recorded to require."""
        rows = self.conn.execute(
            """
            SELECT package.* FROM package_requirement requirement
            JOIN package ON package.package_id = requirement.requirement
            WHERE requirement.package_id = ?
            """,
            (package_id,),
        ).fetchall()
        return [InstalledPackage.from_row(row) for row in rows]

    def get_dependents(self, package_id: int) -> list[InstalledPackage]:
        """Installed packages that require the given package."""
        rows = self.conn.execute(
            """
            SELECT package.* FROM package_requirement requirement
            JOIN package ON package.package_id = requirement.package_id
            WHERE requirement.requirement = ?
            """,
            (package_id,),
        ).fetchall()
        return [InstalledPackage.from_row(row) for row in rows]

    def set_exclusions(self, package_id: int, exclusions: Iterable[ExcludedPackage]) -> None:
        with self.transaction():
            self.conn.execute("DELETE FROM package_exclusion WHERE package_id = ?", (package_id,))
            self.conn.executemany(
                """
                INSERT OR REPLACE INTO package_exclusion
                (package_id, excluded_package, excluded_package_version) VALUES (?, ?, ?)
                """,
                [(package_id, exclusion.name, exclusion.version) for exclusion in exclusions],
            )

    def get_excluding_packages(self, name: str) -> list[InstalledPackage]:
        """Installed packages that declare ``name`` as excluded, with the declared bound."""
        rows = self.conn.execute(
            """
            SELECT package.*, exclusion.excluded_package_version
            FROM package_exclusion exclusion
            JOIN package ON package.package_id = exclusion.package_id
            WHERE exclusion.excluded_package = ?
            """,
            (name,),
        ).fetchall()
        return [InstalledPackage.from_row(row) for row in rows]

    # ──────────────────────────────────────────────
    # Instruction & file logs
    # ──────────────────────────────────────────────

    def log_instruction(self, package_id: int, instruction: Instruction) -> None:
        with self.transaction():
            row = self.conn.execute(
                "SELECT COALESCE(MAX(sequence_no), -1) + 1 FROM package_instruction_log WHERE package_id = ?",
                (package_id,),
            ).fetchone()
            self.conn.execute(
                """
                INSERT INTO package_instruction_log (package_id, sequence_no, pip, value, attributes)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    package_id,
                    row[0],
                    instruction.pip,
                    instruction.value,
                    json.dumps(dict(instruction.attributes)),
                ),
            )

    def get_logged_instructions(self, package_id: int) -> list[Instruction]:
        rows = self.conn.execute(
            "SELECT * FROM package_instruction_log WHERE package_id = ? ORDER BY sequence_no",
            (package_id,),
        ).fetchall()
        return [
            Instruction(pip=row["pip"], value=row["value"] or "", attributes=json.loads(row["attributes"] or "{}"))
            for row in rows
        ]

    def log_files(self, package_id: int, filenames: Iterable[str]) -> None:
        with self.transaction():
            self.conn.executemany(
                "INSERT OR IGNORE INTO package_file_log (package_id, filename) VALUES (?, ?)",
                [(package_id, filename) for filename in filenames],
            )

    def get_logged_files(self, package_id: int) -> list[str]:
        rows = self.conn.execute(
            "SELECT filename FROM package_file_log WHERE package_id = ? ORDER BY filename",
            (package_id,),
        ).fetchall()
        return [row["filename"] for row in rows]

    def delete_file_log(self, package_id: int) -> None:
        with self.transaction():
            self.conn.execute("DELETE FROM package_file_log WHERE package_id = ?", (package_id,))

    # ──────────────────────────────────────────────
    # Queues
    # ──────────────────────────────────────────────

    def new_process_no(self) -> int:
        row = self.conn.execute(
            "SELECT COALESCE(MAX(process_no), 0) + 1 FROM package_installation_queue"
        ).fetchone()
        return row[0]

    def create_queue(self, **fields) -> InstallationQueue:
        if isinstance(fields.get("action"), QueueAction):
            fields["action"] = fields["action"].value
        columns = [column for column in _QUEUE_COLUMNS if column in fields]
        with self.transaction():
            cursor = self.conn.execute(
                f"INSERT INTO package_installation_queue ({', '.join(columns)}) "
                f"VALUES ({', '.join('?' for _ in columns)})",
                [fields[column] for column in columns],
            )
        return self.get_queue(cursor.lastrowid)

    def get_queue(self, queue_id: int) -> InstallationQueue | None:
        row = self.conn.execute(
            "SELECT * FROM package_installation_queue WHERE queue_id = ?", (queue_id,)
        ).fetchone()
        return InstallationQueue.from_row(row) if row else None

    def get_process_queues(self, process_no: int) -> list[InstallationQueue]:
        rows = self.conn.execute(
            "SELECT * FROM package_installation_queue WHERE process_no = ? ORDER BY queue_id",
            (process_no,),
        ).fetchall()
        return [InstallationQueue.from_row(row) for row in rows]

    def find_open_queue(self, package: str) -> InstallationQueue | None:
        """An unfinished queue for a package in any process."""
        row = self.conn.execute(
            """
            SELECT * FROM package_installation_queue
            WHERE package = ? AND done = 0
            ORDER BY queue_id ASC
            """,
            (package,),
        ).fetchone()
        return InstallationQueue.from_row(row) if row else None

    def update_queue(self, queue_id: int, **fields) -> None:
        if isinstance(fields.get("action"), QueueAction):
            fields["action"] = fields["action"].value
        columns = [column for column in _QUEUE_COLUMNS if column in fields]
        if not columns:
            return
        with self.transaction():
            self.conn.execute(
                f"UPDATE package_installation_queue SET {', '.join(f'{c} = ?' for c in columns)} "
                "WHERE queue_id = ?",
                [fields[column] for column in columns] + [queue_id],
            )

    def delete_child_queues(self, process_no: int, root_queue_id: int) -> None:
        """Drop every unfinished sub-queue of a process, keeping the root."""
        with self.transaction():
            self.conn.execute(
                """
                DELETE FROM package_installation_queue
                WHERE process_no = ? AND queue_id <> ? AND done = 0
                """,
                (process_no, root_queue_id),
            )

    def delete_open_queues(self, process_no: int) -> None:
        """Drop every unfinished queue of a process."""
        with self.transaction():
            self.conn.execute(
                "DELETE FROM package_installation_queue WHERE process_no = ? AND done = 0",
                (process_no,),
            )

    # ──────────────────────────────────────────────
    # Nodes
    # ──────────────────────────────────────────────

    def insert_node(self, node: InstallationNode) -> None:
        with self.transaction():
            self.conn.execute(
                """
                INSERT INTO package_installation_node
                (node, parent_node, process_no, queue_id, sequence_no, node_type, node_data, done)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    node.node,
                    node.parent_node,
                    node.process_no,
                    node.queue_id,
                    node.sequence_no,
                    node.node_type.value,
                    json.dumps(node.node_data),
                    int(node.done),
                ),
            )

    def get_node(self, process_no: int, node: str) -> InstallationNode | None:
        row = self.conn.execute(
            "SELECT * FROM package_installation_node WHERE process_no = ? AND node = ?",
            (process_no, node),
        ).fetchone()
        return InstallationNode.from_row(row) if row else None

    def get_child_node(self, process_no: int, parent_node: str) -> InstallationNode | None:
        row = self.conn.execute(
            "SELECT * FROM package_installation_node WHERE process_no = ? AND parent_node = ?",
            (process_no, parent_node),
        ).fetchone()
        return InstallationNode.from_row(row) if row else None

    def get_nodes(self, process_no: int, queue_id: int | None = None) -> list[InstallationNode]:
        sql = "SELECT * FROM package_installation_node WHERE process_no = ?"
        params: list = [process_no]
        if queue_id is not None:
            sql += " AND queue_id = ?"
            params.append(queue_id)
        rows = self.conn.execute(sql + " ORDER BY sequence_no", params).fetchall()
        return [InstallationNode.from_row(row) for row in rows]

    def mark_node_done(self, process_no: int, node: str) -> None:
        with self.transaction():
            self.conn.execute(
                "UPDATE package_installation_node SET done = 1 WHERE process_no = ? AND node = ?",
                (process_no, node),
            )

    def delete_nodes(self, process_no: int) -> None:
        with self.transaction():
            self.conn.execute("DELETE FROM package_installation_node WHERE process_no = ?", (process_no,))
