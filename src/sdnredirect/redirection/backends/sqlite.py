"""
SQLite controller backend.

A local lab controller with the same flow-classifier semantics as the
in-memory backend, persisted in SQLite so state survives between CLI
invocations.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import json
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sdnredirect.redirection.backends.base import RedirectionBackend
from sdnredirect.redirection.exceptions import BackendFailure, PortNotFoundError
from sdnredirect.redirection.models import (
    InspectionHookElement,
    InspectionPortElement,
    NetworkElement,
)

logger = logging.getLogger(__name__)


class SQLiteBackend(RedirectionBackend):
    """Flow-classifier style controller persisted in SQLite."""

    NAME = "sqlite"

    def __init__(self, db_path: str = "sdnredirect.db"):
        super().__init__()
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @contextmanager
    def _get_conn(self) -> Generator[sqlite3.Connection, None, None]:
        """Yield the connection inside one transaction, translating errors."""
        self.ensure_connected()
        with self._lock:
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.Error as e:
                raise BackendFailure(f"sqlite backend error: {e}") from e

    # ==========================================================================
    # Connection
    # ==========================================================================

    def connect(self) -> None:
        if self._conn is not None:
            return
        if self.db_path != ":memory:":
            Path(self.db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(
                str(Path(self.db_path).expanduser()) if self.db_path != ":memory:" else self.db_path,
                check_same_thread=False,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as e:
            raise BackendFailure(f"cannot open {self.db_path}: {e}") from e
        self._connected = True
        self.initialize()

    def close(self) -> None:
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
            self._connected = False

    def initialize(self) -> None:
        """Create database schema."""
        with self._get_conn() as conn:
            conn.executescript("""
                -- Leaf ports provisioned on the controller
                CREATE TABLE IF NOT EXISTS leaf_ports (
                    element_id TEXT PRIMARY KEY,
                    data TEXT NOT NULL  -- JSON NetworkElement
                );

                -- Composite elements
                CREATE TABLE IF NOT EXISTS elements (
                    element_id TEXT PRIMARY KEY,
                    children TEXT NOT NULL  -- JSON array, ordered
                );

                -- Inspection ports (ingress/egress pairs)
                CREATE TABLE IF NOT EXISTS inspection_ports (
                    element_id TEXT PRIMARY KEY,
                    ingress_id TEXT NOT NULL,
                    egress_id TEXT NOT NULL,
                    data TEXT NOT NULL,  -- JSON InspectionPortElement
                    UNIQUE (ingress_id, egress_id)
                );

                -- Inspection hooks
                CREATE TABLE IF NOT EXISTS hooks (
                    hook_id TEXT PRIMARY KEY,
                    port_id TEXT NOT NULL,
                    data TEXT NOT NULL,  -- JSON InspectionHookElement
                    FOREIGN KEY (port_id) REFERENCES inspection_ports(element_id)
                );

                -- Inspected elements per hook
                CREATE TABLE IF NOT EXISTS hook_elements (
                    hook_id TEXT NOT NULL,
                    element_id TEXT NOT NULL,
                    PRIMARY KEY (hook_id, element_id),
                    FOREIGN KEY (hook_id) REFERENCES hooks(hook_id) ON DELETE CASCADE
                );

                CREATE INDEX IF NOT EXISTS idx_hooks_port ON hooks(port_id);
                CREATE INDEX IF NOT EXISTS idx_hook_elements_element ON hook_elements(element_id);
            """)

    # ==========================================================================
    # Provisioning
    # ==========================================================================

    def provision_port(self, element: NetworkElement) -> NetworkElement:
        with self._get_conn() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO leaf_ports (element_id, data) VALUES (?, ?)",
                (element.element_id, json.dumps(element.to_dict())),
            )
        return element

    # ==========================================================================
    # Network elements
    # ==========================================================================

    def _lookup(self, conn: sqlite3.Connection, element_id: str) -> NetworkElement | None:
        row = conn.execute(
            "SELECT children FROM elements WHERE element_id = ?", (element_id,)
        ).fetchone()
        if row:
            return NetworkElement(element_id=element_id, children=json.loads(row["children"]))
        row = conn.execute(
            "SELECT data FROM leaf_ports WHERE element_id = ?", (element_id,)
        ).fetchone()
        if row:
            return NetworkElement.from_dict(json.loads(row["data"]))
        return None

    def _children_of(self, conn: sqlite3.Connection, element_id: str) -> list[str]:
        row = conn.execute(
            "SELECT children FROM elements WHERE element_id = ?", (element_id,)
        ).fetchone()
        return json.loads(row["children"]) if row else []

    def _validate_children(
        self,
        conn: sqlite3.Connection,
        children: list[NetworkElement],
        parent_id: str | None,
    ) -> list[str]:
        child_ids = [c.element_id for c in children]
        if len(set(child_ids)) != len(child_ids):
            raise BackendFailure(f"duplicate child in composition: {child_ids}")
        for child_id in child_ids:
            is_port = conn.execute(
                "SELECT 1 FROM inspection_ports WHERE element_id = ?", (child_id,)
            ).fetchone()
            if self._lookup(conn, child_id) is None and not is_port:
                raise BackendFailure(f"unknown child element: {child_id}")
        if parent_id is not None:
            pending = list(child_ids)
            seen: set[str] = set()
            while pending:
                current = pending.pop()
                if current == parent_id:
                    raise BackendFailure(f"cyclic composition through {parent_id}")
                if current not in seen:
                    seen.add(current)
                    pending.extend(self._children_of(conn, current))
        return child_ids

    def create_element(self, children: list[NetworkElement]) -> NetworkElement:
        with self._get_conn() as conn:
            child_ids = self._validate_children(conn, children, None)
            element = NetworkElement(element_id=str(uuid.uuid4()), children=child_ids)
            conn.execute(
                "INSERT INTO elements (element_id, children) VALUES (?, ?)",
                (element.element_id, json.dumps(child_ids)),
            )
            return element

    def update_element(self, element_id: str, children: list[NetworkElement]) -> NetworkElement | None:
        with self._get_conn() as conn:
            leaf = conn.execute(
                "SELECT 1 FROM leaf_ports WHERE element_id = ?", (element_id,)
            ).fetchone()
            if leaf:
                raise BackendFailure(f"cannot compose children into leaf port {element_id}")
            existing = conn.execute(
                "SELECT 1 FROM elements WHERE element_id = ?", (element_id,)
            ).fetchone()
            if not existing:
                return None
            child_ids = self._validate_children(conn, children, element_id)
            conn.execute(
                "UPDATE elements SET children = ? WHERE element_id = ?",
                (json.dumps(child_ids), element_id),
            )
            return NetworkElement(element_id=element_id, children=child_ids)

    @staticmethod
    def _check_not_child(conn: sqlite3.Connection, element_id: str) -> None:
        for row in conn.execute("SELECT element_id, children FROM elements").fetchall():
            if element_id in json.loads(row["children"]):
                raise BackendFailure(
                    f"element {element_id} is a child of {row['element_id']}"
                )

    def check_delete_element(self, element_id: str) -> None:
        with self._get_conn() as conn:
            self._check_not_child(conn, element_id)

    def delete_element(self, element_id: str) -> bool:
        with self._get_conn() as conn:
            if self._lookup(conn, element_id) is None:
                return False
            self._check_not_child(conn, element_id)
            hook = conn.execute(
                "SELECT hook_id FROM hook_elements WHERE element_id = ?", (element_id,)
            ).fetchone()
            if hook:
                raise BackendFailure(f"element {element_id} is inspected by hook {hook['hook_id']}")
            conn.execute("DELETE FROM elements WHERE element_id = ?", (element_id,))
            conn.execute("DELETE FROM leaf_ports WHERE element_id = ?", (element_id,))
            return True

    def get_element(self, element_id: str) -> NetworkElement | None:
        with self._get_conn() as conn:
            return self._lookup(conn, element_id)

    # ==========================================================================
    # Inspection ports
    # ==========================================================================

    def create_port(self, port: InspectionPortElement) -> InspectionPortElement:
        with self._get_conn() as conn:
            for end in (port.ingress_port, port.egress_port):
                if self._lookup(conn, end.element_id) is None:
                    raise PortNotFoundError(end.element_id)
            row = conn.execute(
                "SELECT data FROM inspection_ports WHERE ingress_id = ? AND egress_id = ?",
                port.pair_key,
            ).fetchone()
            if row:
                return InspectionPortElement.from_dict(json.loads(row["data"]))
            stored = InspectionPortElement(
                ingress_port=port.ingress_port,
                egress_port=port.egress_port,
                element_id=str(uuid.uuid4()),
                parent_id=port.parent_id,
            )
            conn.execute(
                "INSERT INTO inspection_ports (element_id, ingress_id, egress_id, data) "
                "VALUES (?, ?, ?, ?)",
                (stored.element_id, *stored.pair_key, json.dumps(stored.to_dict())),
            )
            return stored

    def delete_port(self, port_id: str) -> bool:
        with self._get_conn() as conn:
            hook = conn.execute(
                "SELECT hook_id FROM hooks WHERE port_id = ?", (port_id,)
            ).fetchone()
            if hook:
                raise BackendFailure(f"inspection port {port_id} is used by hook {hook['hook_id']}")
            cursor = conn.execute(
                "DELETE FROM inspection_ports WHERE element_id = ?", (port_id,)
            )
            return cursor.rowcount > 0

    def get_port(self, port_id: str) -> InspectionPortElement | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT data FROM inspection_ports WHERE element_id = ?", (port_id,)
            ).fetchone()
            return InspectionPortElement.from_dict(json.loads(row["data"])) if row else None

    def list_ports(self) -> list[InspectionPortElement]:
        with self._get_conn() as conn:
            rows = conn.execute("SELECT data FROM inspection_ports").fetchall()
            return [InspectionPortElement.from_dict(json.loads(r["data"])) for r in rows]

    # ==========================================================================
    # Inspection hooks
    # ==========================================================================

    def create_hook(self, hook: InspectionHookElement) -> str:
        self.check_capabilities(hook.encapsulation_type, hook.failure_policy)
        with self._get_conn() as conn:
            port_id = hook.inspection_port.element_id
            port = conn.execute(
                "SELECT 1 FROM inspection_ports WHERE element_id = ?", (port_id,)
            ).fetchone()
            if not port:
                raise PortNotFoundError(port_id)
            for element in hook.inspected_elements:
                if self._lookup(conn, element.element_id) is None:
                    raise PortNotFoundError(element.element_id)

            stored = hook.copy()
            stored.hook_id = str(uuid.uuid4())
            conn.execute(
                "INSERT INTO hooks (hook_id, port_id, data) VALUES (?, ?, ?)",
                (stored.hook_id, port_id, json.dumps(stored.to_dict())),
            )
            conn.executemany(
                "INSERT INTO hook_elements (hook_id, element_id) VALUES (?, ?)",
                [(stored.hook_id, element_id) for element_id in sorted(stored.inspected_ids)],
            )
            return stored.hook_id

    def update_hook(self, hook: InspectionHookElement) -> None:
        self.check_capabilities(hook.encapsulation_type, hook.failure_policy)
        with self._get_conn() as conn:
            cursor = conn.execute(
                "UPDATE hooks SET data = ? WHERE hook_id = ?",
                (json.dumps(hook.to_dict()), hook.hook_id),
            )
            if cursor.rowcount == 0:
                raise BackendFailure(f"unknown hook {hook.hook_id}")

    def delete_hook(self, hook_id: str) -> bool:
        with self._get_conn() as conn:
            cursor = conn.execute("DELETE FROM hooks WHERE hook_id = ?", (hook_id,))
            return cursor.rowcount > 0

    def get_hook(self, hook_id: str) -> InspectionHookElement | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT data FROM hooks WHERE hook_id = ?", (hook_id,)
            ).fetchone()
            return InspectionHookElement.from_dict(json.loads(row["data"])) if row else None

    def list_hooks(self) -> list[InspectionHookElement]:
        with self._get_conn() as conn:
            rows = conn.execute("SELECT data FROM hooks").fetchall()
            return [InspectionHookElement.from_dict(json.loads(r["data"])) for r in rows]
