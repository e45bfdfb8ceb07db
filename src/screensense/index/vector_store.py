"""Persistent vector store for UI semantic nodes, subtrees and screen states.

Rows live in a single SQLite database running in WAL mode. Every entity keeps
its description embedding as a fixed-dimension float32 BLOB; similarity search
applies the symbolic filters in SQL and ranks the surviving rows by exact
cosine similarity with numpy.

All methods are synchronous and thread-safe: one connection is shared behind
a re-entrant lock, and a screen state with its children is written inside one
transaction, so a concurrent reader sees either none or all of it.
"""

from __future__ import annotations

import json
import os
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

import numpy as np

from ..core.exceptions import StorageError
from ..core.logger import get_logger
from ..vision.models import (
    BoundingBox,
    NodeMetadata,
    ScreenDimensions,
    UIScreenState,
    UISemanticNode,
    UISubtree,
)
from .embedding import cosine_similarities
from .query import SearchFilters, TimeRange

log = get_logger("store")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS store_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS ui_screen_states (
    id TEXT PRIMARY KEY,
    description TEXT NOT NULL DEFAULT '',
    app TEXT NOT NULL,
    url TEXT,
    window_title TEXT,
    screen_width INTEGER NOT NULL,
    screen_height INTEGER NOT NULL,
    screenshot_path TEXT,
    detection_method TEXT,
    timestamp INTEGER NOT NULL,
    embedding BLOB
);
CREATE INDEX IF NOT EXISTS idx_screen_states_app ON ui_screen_states(app);
CREATE INDEX IF NOT EXISTS idx_screen_states_timestamp ON ui_screen_states(timestamp);

CREATE TABLE IF NOT EXISTS ui_nodes (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    text TEXT,
    description TEXT NOT NULL DEFAULT '',
    bbox_x1 INTEGER NOT NULL,
    bbox_y1 INTEGER NOT NULL,
    bbox_x2 INTEGER NOT NULL,
    bbox_y2 INTEGER NOT NULL,
    normalized_bbox_x1 INTEGER,
    normalized_bbox_y1 INTEGER,
    normalized_bbox_x2 INTEGER,
    normalized_bbox_y2 INTEGER,
    parent_id TEXT,
    screen_state_id TEXT NOT NULL,
    app TEXT,
    url TEXT,
    window_title TEXT,
    visible INTEGER NOT NULL DEFAULT 1,
    clickable INTEGER NOT NULL DEFAULT 0,
    interactive INTEGER NOT NULL DEFAULT 0,
    confidence REAL,
    screen_region TEXT,
    detection_source TEXT,
    detection_confidence REAL,
    ocr_confidence REAL,
    icon_type TEXT,
    z_index INTEGER,
    timestamp INTEGER NOT NULL,
    embedding BLOB
);
CREATE INDEX IF NOT EXISTS idx_nodes_type ON ui_nodes(type);
CREATE INDEX IF NOT EXISTS idx_nodes_app ON ui_nodes(app);
CREATE INDEX IF NOT EXISTS idx_nodes_screen_state ON ui_nodes(screen_state_id);
CREATE INDEX IF NOT EXISTS idx_nodes_timestamp ON ui_nodes(timestamp);
CREATE INDEX IF NOT EXISTS idx_nodes_clickable ON ui_nodes(clickable);

CREATE TABLE IF NOT EXISTS ui_subtrees (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    title TEXT,
    description TEXT NOT NULL DEFAULT '',
    root_node_id TEXT,
    node_ids TEXT,
    screen_state_id TEXT NOT NULL,
    bbox_x1 INTEGER NOT NULL,
    bbox_y1 INTEGER NOT NULL,
    bbox_x2 INTEGER NOT NULL,
    bbox_y2 INTEGER NOT NULL,
    timestamp INTEGER NOT NULL,
    embedding BLOB
);
CREATE INDEX IF NOT EXISTS idx_subtrees_screen_state ON ui_subtrees(screen_state_id);
"""

_NODE_COLUMNS = (
    "id, type, text, description, "
    "bbox_x1, bbox_y1, bbox_x2, bbox_y2, "
    "normalized_bbox_x1, normalized_bbox_y1, normalized_bbox_x2, normalized_bbox_y2, "
    "parent_id, screen_state_id, app, url, window_title, "
    "visible, clickable, interactive, confidence, "
    "screen_region, detection_source, detection_confidence, ocr_confidence, "
    "icon_type, z_index, timestamp, embedding"
)

_SUBTREE_COLUMNS = (
    "id, type, title, description, root_node_id, node_ids, screen_state_id, "
    "bbox_x1, bbox_y1, bbox_x2, bbox_y2, timestamp, embedding"
)

_SCREEN_COLUMNS = (
    "id, description, app, url, window_title, screen_width, screen_height, "
    "screenshot_path, detection_method, timestamp, embedding"
)


def _py_lower(value: Optional[str]) -> Optional[str]:
    return value.lower() if value is not None else None


class VectorStore:
    """SQLite-backed store with hybrid (symbolic + vector) search."""

    def __init__(self, db_path: str, embedding_dimension: int = 384) -> None:
        self.db_path = db_path
        self.embedding_dimension = embedding_dimension
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self.is_initialized = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def initialize(self) -> None:
        """Open the database and create the schema. Safe to call repeatedly."""
        with self._lock:
            if self.is_initialized:
                return

            log.info(f"Initializing vector store at {self.db_path}")
            with self._storage_errors("initialize"):
                if self.db_path != ":memory:":
                    Path(self.db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)

                conn = sqlite3.connect(
                    os.path.expanduser(self.db_path),
                    check_same_thread=False,
                    isolation_level=None,
                )
                conn.row_factory = sqlite3.Row
                conn.create_function("py_lower", 1, _py_lower, deterministic=True)
                try:
                    conn.execute("PRAGMA journal_mode=WAL")
                    conn.execute("PRAGMA synchronous=NORMAL")
                    conn.executescript(_SCHEMA)
                    self._check_dimension(conn)
                except BaseException:
                    conn.close()
                    raise

            self._conn = conn
            self.is_initialized = True
            log.success("Vector store initialized")

    def _check_dimension(self, conn: sqlite3.Connection) -> None:
        row = conn.execute(
            "SELECT value FROM store_meta WHERE key = 'embedding_dimension'"
        ).fetchone()
        if row is None:
            conn.execute(
                "INSERT INTO store_meta (key, value) VALUES ('embedding_dimension', ?)",
                (str(self.embedding_dimension),),
            )
            return
        if int(row["value"]) != self.embedding_dimension:
            raise StorageError(
                f"Schema mismatch: database stores {row['value']}-d embeddings, "
                f"store configured for {self.embedding_dimension}"
            )

    def checkpoint(self) -> None:
        """Flush the write-ahead log into the main database file."""
        with self._lock, self._storage_errors("checkpoint"):
            self._require_connection().execute("PRAGMA wal_checkpoint(TRUNCATE)")

    def vacuum(self) -> None:
        """Reclaim free pages left behind by deletions."""
        with self._lock, self._storage_errors("vacuum"):
            conn = self._require_connection()
            conn.execute("VACUUM")
            conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
        log.info("Vector store vacuumed")

    def close(self) -> None:
        """Checkpoint and release the connection. Idempotent."""
        with self._lock:
            if self._conn is None:
                return
            try:
                self.checkpoint()
            except StorageError as exc:
                log.warning(f"Checkpoint during close failed: {exc}")
            self._conn.close()
            self._conn = None
            self.is_initialized = False
        log.info("Vector store closed")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def insert_screen_state(self, screen_state: UIScreenState) -> None:
        """Upsert a screen state and its whole tree as one transaction.

        Re-inserting an existing id replaces the screen row and every child,
        so the stored tree always matches the latest version.
        """
        screen_state.attach_children()
        start = time.perf_counter()
        with self._transaction("insert_screen_state") as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO ui_screen_states ({_SCREEN_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    screen_state.id,
                    screen_state.description or "",
                    screen_state.app,
                    screen_state.url,
                    screen_state.window_title,
                    screen_state.screen_dimensions.width,
                    screen_state.screen_dimensions.height,
                    screen_state.screenshot_path,
                    screen_state.detection_method,
                    int(screen_state.timestamp),
                    self._to_blob(screen_state.embedding),
                ),
            )

            conn.execute("DELETE FROM ui_nodes WHERE screen_state_id = ?", (screen_state.id,))
            conn.execute("DELETE FROM ui_subtrees WHERE screen_state_id = ?", (screen_state.id,))

            conn.executemany(
                f"INSERT OR REPLACE INTO ui_nodes ({_NODE_COLUMNS}) VALUES ({', '.join('?' * 29)})",
                [self._node_params(node, screen_state) for node in screen_state.nodes],
            )
            conn.executemany(
                f"INSERT OR REPLACE INTO ui_subtrees ({_SUBTREE_COLUMNS}) "
                f"VALUES ({', '.join('?' * 13)})",
                [self._subtree_params(subtree, screen_state) for subtree in screen_state.subtrees],
            )

        self.checkpoint()
        log.log_performance(
            f"insert screen {screen_state.id} ({len(screen_state.nodes)} nodes)",
            (time.perf_counter() - start) * 1000,
        )

    def delete_old_screen_states(self, before_timestamp: int) -> int:
        """Delete screen states older than *before_timestamp* with their children.

        Runs in one transaction: either every matching screen and child goes,
        or nothing does.
        """
        with self._transaction("delete_old_screen_states") as conn:
            count = conn.execute(
                "SELECT COUNT(*) FROM ui_screen_states WHERE timestamp < ?",
                (before_timestamp,),
            ).fetchone()[0]
            if count:
                expired = "SELECT id FROM ui_screen_states WHERE timestamp < ?"
                conn.execute(
                    f"DELETE FROM ui_nodes WHERE screen_state_id IN ({expired})",
                    (before_timestamp,),
                )
                conn.execute(
                    f"DELETE FROM ui_subtrees WHERE screen_state_id IN ({expired})",
                    (before_timestamp,),
                )
                conn.execute(
                    "DELETE FROM ui_screen_states WHERE timestamp < ?", (before_timestamp,)
                )

        if count:
            self.checkpoint()
        log.info(f"Deleted {count} old screen states")
        return count

    def clear(self) -> int:
        """Delete every row. Returns the number of screen states removed."""
        with self._transaction("clear") as conn:
            count = conn.execute("SELECT COUNT(*) FROM ui_screen_states").fetchone()[0]
            conn.execute("DELETE FROM ui_nodes")
            conn.execute("DELETE FROM ui_subtrees")
            conn.execute("DELETE FROM ui_screen_states")
        self.checkpoint()
        return count

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def search_nodes(
        self,
        query_embedding: np.ndarray,
        filters: Optional[SearchFilters] = None,
        k: int = 5,
        min_score: float = 0.0,
    ) -> list[UISemanticNode]:
        """Rank nodes passing *filters* by cosine similarity to *query_embedding*.

        Results are ordered by score descending; equal scores keep insertion
        order. Nodes without an embedding are never returned.
        """
        query = self._check_query_embedding(query_embedding)
        where, params = self._node_filter_clause(filters or SearchFilters())

        rows = self._fetchall(
            f"SELECT {_NODE_COLUMNS} FROM ui_nodes WHERE {where} ORDER BY rowid",
            params,
        )
        return [
            self._row_to_node(row, score)
            for row, score in self._rank(rows, query, k, min_score)
        ]

    def search_screen_states(
        self,
        query_embedding: Optional[np.ndarray],
        time_range: Optional[TimeRange] = None,
        k: int = 5,
    ) -> list[UIScreenState]:
        """Rank screen states within *time_range* by similarity.

        Without a query embedding the screens in range are returned newest
        first, unscored.
        """
        clauses: list[str] = []
        params: list[Any] = []
        self._time_clauses(time_range, clauses, params)

        if query_embedding is None:
            where = " AND ".join(clauses) or "1=1"
            rows = self._fetchall(
                f"SELECT {_SCREEN_COLUMNS} FROM ui_screen_states WHERE {where} "
                "ORDER BY timestamp DESC, rowid DESC LIMIT ?",
                [*params, k],
            )
            return [self._row_to_screen_state(row) for row in rows]

        query = self._check_query_embedding(query_embedding)
        clauses.append("embedding IS NOT NULL")
        rows = self._fetchall(
            f"SELECT {_SCREEN_COLUMNS} FROM ui_screen_states WHERE {' AND '.join(clauses)} "
            "ORDER BY rowid",
            params,
        )
        return [
            self._row_to_screen_state(row, score)
            for row, score in self._rank(rows, query, k, min_score=-1.0)
        ]

    def get_node(self, node_id: str) -> Optional[UISemanticNode]:
        rows = self._fetchall(f"SELECT {_NODE_COLUMNS} FROM ui_nodes WHERE id = ?", [node_id])
        return self._row_to_node(rows[0]) if rows else None

    def get_subtree(self, subtree_id: str) -> Optional[UISubtree]:
        rows = self._fetchall(
            f"SELECT {_SUBTREE_COLUMNS} FROM ui_subtrees WHERE id = ?", [subtree_id]
        )
        return self._row_to_subtree(rows[0]) if rows else None

    def get_nodes_for_screen(self, screen_state_id: str) -> list[UISemanticNode]:
        rows = self._fetchall(
            f"SELECT {_NODE_COLUMNS} FROM ui_nodes WHERE screen_state_id = ? ORDER BY rowid",
            [screen_state_id],
        )
        return [self._row_to_node(row) for row in rows]

    def get_screen_state(self, screen_state_id: str, with_nodes: bool = True) -> Optional[UIScreenState]:
        """Load a screen state, optionally with its nodes and subtrees."""
        with self._lock:
            rows = self._fetchall(
                f"SELECT {_SCREEN_COLUMNS} FROM ui_screen_states WHERE id = ?", [screen_state_id]
            )
            if not rows:
                return None
            screen_state = self._row_to_screen_state(rows[0])
            if with_nodes:
                screen_state.nodes = self.get_nodes_for_screen(screen_state_id)
                subtree_rows = self._fetchall(
                    f"SELECT {_SUBTREE_COLUMNS} FROM ui_subtrees WHERE screen_state_id = ? "
                    "ORDER BY rowid",
                    [screen_state_id],
                )
                screen_state.subtrees = [self._row_to_subtree(row) for row in subtree_rows]
            return screen_state

    def get_screen_history(self, start: Optional[int] = None, end: Optional[int] = None) -> list[UIScreenState]:
        """Screens captured within ``[start, end]``, oldest first."""
        clauses: list[str] = []
        params: list[Any] = []
        self._time_clauses(TimeRange(start=start, end=end), clauses, params)
        where = " AND ".join(clauses) or "1=1"
        rows = self._fetchall(
            f"SELECT {_SCREEN_COLUMNS} FROM ui_screen_states WHERE {where} ORDER BY timestamp, rowid",
            params,
        )
        return [self._row_to_screen_state(row) for row in rows]

    def get_stats(self) -> dict[str, int]:
        """Row counts and the approximate on-disk size in bytes."""
        with self._lock, self._storage_errors("get_stats"):
            conn = self._require_connection()
            nodes = conn.execute("SELECT COUNT(*) FROM ui_nodes").fetchone()[0]
            subtrees = conn.execute("SELECT COUNT(*) FROM ui_subtrees").fetchone()[0]
            screens = conn.execute("SELECT COUNT(*) FROM ui_screen_states").fetchone()[0]

        return {
            "nodes": nodes,
            "subtrees": subtrees,
            "screens": screens,
            "database_size": self._database_size(),
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _require_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError("Vector store is not initialized")
        return self._conn

    @contextmanager
    def _storage_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as exc:
            log.error(f"Vector store {operation} failed: {exc}")
            raise StorageError(f"{operation} failed: {exc}") from exc

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        with self._lock, self._storage_errors(operation):
            conn = self._require_connection()
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _fetchall(self, sql: str, params: list[Any]) -> list[sqlite3.Row]:
        with self._lock, self._storage_errors("query"):
            return self._require_connection().execute(sql, params).fetchall()

    def _database_size(self) -> int:
        if self.db_path == ":memory:":
            return 0
        base = os.path.expanduser(self.db_path)
        return sum(
            os.path.getsize(path)
            for path in (base, f"{base}-wal", f"{base}-shm")
            if os.path.exists(path)
        )

    def _check_query_embedding(self, embedding: np.ndarray) -> np.ndarray:
        query = np.asarray(embedding, dtype=np.float32).ravel()
        if query.shape[0] != self.embedding_dimension:
            raise StorageError(
                f"Schema mismatch: query embedding has {query.shape[0]} dimensions, "
                f"expected {self.embedding_dimension}"
            )
        return query

    def _to_blob(self, embedding: Optional[np.ndarray]) -> Optional[bytes]:
        if embedding is None:
            return None
        vector = np.asarray(embedding, dtype=np.float32).ravel()
        if vector.shape[0] != self.embedding_dimension:
            raise StorageError(
                f"Schema mismatch: embedding has {vector.shape[0]} dimensions, "
                f"expected {self.embedding_dimension}"
            )
        return vector.tobytes()

    @staticmethod
    def _from_blob(blob: Optional[bytes]) -> Optional[np.ndarray]:
        if blob is None:
            return None
        return np.frombuffer(blob, dtype=np.float32).copy()

    def _rank(
        self,
        rows: list[sqlite3.Row],
        query: np.ndarray,
        k: int,
        min_score: float,
    ) -> list[tuple[sqlite3.Row, float]]:
        if not rows or k <= 0:
            return []
        matrix = np.vstack([np.frombuffer(row["embedding"], dtype=np.float32) for row in rows])
        scores = cosine_similarities(query, matrix)
        # Stable sort keeps insertion order for equal scores.
        order = np.argsort(-scores, kind="stable")
        ranked: list[tuple[sqlite3.Row, float]] = []
        for idx in order:
            score = float(scores[idx])
            if score < min_score:
                break
            ranked.append((rows[idx], score))
            if len(ranked) >= k:
                break
        return ranked

    @staticmethod
    def _time_clauses(time_range: Optional[TimeRange], clauses: list[str], params: list[Any]) -> None:
        if time_range is None:
            return
        if time_range.start is not None:
            clauses.append("timestamp >= ?")
            params.append(time_range.start)
        if time_range.end is not None:
            clauses.append("timestamp <= ?")
            params.append(time_range.end)

    def _node_filter_clause(self, filters: SearchFilters) -> tuple[str, list[Any]]:
        clauses = ["embedding IS NOT NULL"]
        params: list[Any] = []

        if filters.types:
            clauses.append(f"type IN ({', '.join('?' * len(filters.types))})")
            params.extend(filters.types)

        if filters.app:
            clauses.append("app = ?")
            params.append(filters.app)

        if filters.screen_id:
            clauses.append("screen_state_id = ?")
            params.append(filters.screen_id)

        if filters.clickable_only:
            clauses.append("clickable = 1")

        if filters.visible_only:
            clauses.append("visible = 1")

        if filters.text_contains:
            term = filters.text_contains.lower()
            clauses.append(
                "(instr(py_lower(coalesce(text, '')), ?) > 0 "
                "OR instr(py_lower(description), ?) > 0)"
            )
            params.extend([term, term])

        region = filters.bbox_region
        if region is not None:
            for value, expression in (
                (region.min_x, "(bbox_x1 + bbox_x2) / 2.0 >= ?"),
                (region.max_x, "(bbox_x1 + bbox_x2) / 2.0 <= ?"),
                (region.min_y, "(bbox_y1 + bbox_y2) / 2.0 >= ?"),
                (region.max_y, "(bbox_y1 + bbox_y2) / 2.0 <= ?"),
            ):
                if value is not None:
                    clauses.append(expression)
                    params.append(value)

        self._time_clauses(filters.time_range, clauses, params)
        return " AND ".join(clauses), params

    def _node_params(self, node: UISemanticNode, screen_state: UIScreenState) -> tuple[Any, ...]:
        bbox = node.bbox
        normalized = node.normalized_bbox
        metadata = node.metadata
        return (
            node.id,
            node.type,
            node.text,
            node.description or "",
            bbox.left, bbox.top, bbox.right, bbox.bottom,
            normalized.left if normalized else None,
            normalized.top if normalized else None,
            normalized.right if normalized else None,
            normalized.bottom if normalized else None,
            node.parent_id,
            screen_state.id,
            metadata.app or screen_state.app,
            metadata.url if metadata.url is not None else screen_state.url,
            metadata.window_title if metadata.window_title is not None else screen_state.window_title,
            int(node.visible),
            int(node.clickable),
            int(node.interactive),
            node.confidence,
            metadata.screen_region,
            metadata.detection_source,
            metadata.detection_confidence,
            metadata.ocr_confidence,
            metadata.icon_type,
            metadata.z_index,
            int(node.timestamp or screen_state.timestamp),
            self._to_blob(node.embedding),
        )

    def _subtree_params(self, subtree: UISubtree, screen_state: UIScreenState) -> tuple[Any, ...]:
        bbox = subtree.bbox
        return (
            subtree.id,
            subtree.type,
            subtree.title,
            subtree.description or "",
            subtree.root_node_id,
            json.dumps(list(subtree.node_ids)),
            screen_state.id,
            bbox.left, bbox.top, bbox.right, bbox.bottom,
            int(subtree.timestamp or screen_state.timestamp),
            self._to_blob(subtree.embedding),
        )

    def _row_to_node(self, row: sqlite3.Row, score: Optional[float] = None) -> UISemanticNode:
        normalized = None
        if row["normalized_bbox_x1"] is not None:
            normalized = BoundingBox(
                row["normalized_bbox_x1"],
                row["normalized_bbox_y1"],
                row["normalized_bbox_x2"],
                row["normalized_bbox_y2"],
            )
        return UISemanticNode(
            id=row["id"],
            type=row["type"],
            text=row["text"] or "",
            description=row["description"],
            bbox=BoundingBox(row["bbox_x1"], row["bbox_y1"], row["bbox_x2"], row["bbox_y2"]),
            normalized_bbox=normalized,
            parent_id=row["parent_id"],
            screen_state_id=row["screen_state_id"],
            embedding=self._from_blob(row["embedding"]),
            confidence=row["confidence"] or 0.0,
            clickable=bool(row["clickable"]),
            visible=bool(row["visible"]),
            interactive=bool(row["interactive"]),
            metadata=NodeMetadata(
                app=row["app"],
                url=row["url"],
                window_title=row["window_title"],
                screen_region=row["screen_region"],
                detection_source=row["detection_source"],
                detection_confidence=row["detection_confidence"],
                ocr_confidence=row["ocr_confidence"],
                icon_type=row["icon_type"],
                z_index=row["z_index"] or 0,
            ),
            timestamp=row["timestamp"],
            score=score,
        )

    def _row_to_subtree(self, row: sqlite3.Row) -> UISubtree:
        return UISubtree(
            id=row["id"],
            type=row["type"],
            title=row["title"] or "",
            description=row["description"],
            root_node_id=row["root_node_id"],
            node_ids=json.loads(row["node_ids"]) if row["node_ids"] else [],
            screen_state_id=row["screen_state_id"],
            bbox=BoundingBox(row["bbox_x1"], row["bbox_y1"], row["bbox_x2"], row["bbox_y2"]),
            timestamp=row["timestamp"],
            embedding=self._from_blob(row["embedding"]),
        )

    def _row_to_screen_state(self, row: sqlite3.Row, score: Optional[float] = None) -> UIScreenState:
        return UIScreenState(
            id=row["id"],
            timestamp=row["timestamp"],
            app=row["app"],
            window_title=row["window_title"] or "",
            url=row["url"],
            screen_dimensions=ScreenDimensions(row["screen_width"], row["screen_height"]),
            description=row["description"],
            embedding=self._from_blob(row["embedding"]),
            screenshot_path=row["screenshot_path"],
            detection_method=row["detection_method"] or "unknown",
            score=score,
        )
