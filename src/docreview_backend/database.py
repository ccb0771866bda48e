"""
SQLite database for persistent document and validation storage.

This module provides a simple SQLite-based persistence layer so documents,
their review state and the validations entered by reviewers survive server
restarts.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional


# Default database path
DEFAULT_DB_PATH = Path("data/documents.db")


def _ensure_db_dir(db_path: Path) -> None:
    """Ensure the database directory exists."""
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Serialize datetime to ISO format string."""
    return dt.isoformat() if dt else None


def _deserialize_datetime(s: Optional[str]) -> Optional[datetime]:
    """Deserialize ISO format string to datetime."""
    if not s:
        return None
    return datetime.fromisoformat(s)


def _optional_str(value: Any) -> Optional[str]:
    return str(value) if value else None


class DocumentDatabase:
    """
    SQLite database for document persistence.

    Thread-safe: every call opens its own connection and SQLite handles
    concurrent access with WAL mode.
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self.db_path = Path(db_path)
        _ensure_db_dir(self.db_path)
        self._init_db()

    @contextmanager
    def _get_connection(self):
        """Get a database connection with proper settings."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    id TEXT PRIMARY KEY,
                    filename TEXT NOT NULL,
                    content_type TEXT NOT NULL,
                    path TEXT,
                    xml_filename TEXT,
                    xml_path TEXT,
                    state TEXT NOT NULL,
                    locked_by TEXT,
                    locked_at TEXT,
                    reason TEXT,
                    metadata TEXT,
                    events TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_documents_state
                ON documents(state, created_at)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS validations (
                    document_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
                    validation TEXT NOT NULL,
                    fields TEXT NOT NULL,
                    validator TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (document_id, validation)
                )
            """)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def save_document(self, doc: Dict[str, Any]) -> None:
        """
        Save or update a document record.

        Args:
            doc: Dictionary with document fields
        """
        with self._get_connection() as conn:
            # Update in place on conflict so the row keeps its validations.
            conn.execute("""
                INSERT INTO documents (
                    id, filename, content_type, path, xml_filename, xml_path,
                    state, locked_by, locked_at, reason, metadata, events,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    filename = excluded.filename,
                    content_type = excluded.content_type,
                    path = excluded.path,
                    xml_filename = excluded.xml_filename,
                    xml_path = excluded.xml_path,
                    state = excluded.state,
                    locked_by = excluded.locked_by,
                    locked_at = excluded.locked_at,
                    reason = excluded.reason,
                    metadata = excluded.metadata,
                    events = excluded.events,
                    updated_at = excluded.updated_at
            """, (
                doc["id"],
                doc["filename"],
                doc["content_type"],
                _optional_str(doc.get("path")),
                doc.get("xml_filename"),
                _optional_str(doc.get("xml_path")),
                doc["state"],
                doc.get("locked_by"),
                _serialize_datetime(doc.get("locked_at")),
                doc.get("reason"),
                json.dumps(doc.get("metadata", {})),
                json.dumps([
                    {"timestamp": _serialize_datetime(e["timestamp"]), "message": e["message"]}
                    for e in doc.get("events", [])
                ]),
                _serialize_datetime(doc["created_at"]),
                _serialize_datetime(doc["updated_at"]),
            ))

    def get_document(self, document_id: str) -> Optional[Dict[str, Any]]:
        """
        Retrieve a document by ID.

        Returns:
            Document data dictionary or None if not found
        """
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM documents WHERE id = ?", (document_id,)
            ).fetchone()

            if not row:
                return None

            return self._document_row_to_dict(row)

    def list_documents(
        self,
        state: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """
        List documents, oldest first so review queues are worked in arrival order.

        Args:
            state: Only documents in this state
            limit: Maximum number of documents, all if None
            offset: Number of documents to skip
        """
        query = "SELECT * FROM documents"
        values: List[Any] = []
        if state is not None:
            query += " WHERE state = ?"
            values.append(state)
        query += " ORDER BY created_at ASC, id ASC LIMIT ? OFFSET ?"
        values.extend([limit if limit is not None else -1, offset])

        with self._get_connection() as conn:
            rows = conn.execute(query, values).fetchall()
            return [self._document_row_to_dict(row) for row in rows]

    def count_by_state(self) -> Dict[str, int]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT state, COUNT(*) AS total FROM documents GROUP BY state"
            ).fetchall()
            return {row["state"]: row["total"] for row in rows}

    def _document_row_to_dict(self, row: sqlite3.Row) -> Dict[str, Any]:
        """Convert a database row to a document data dictionary."""
        events = [
            {
                "timestamp": _deserialize_datetime(e["timestamp"]),
                "message": e["message"],
            }
            for e in json.loads(row["events"] or "[]")
        ]

        return {
            "id": row["id"],
            "filename": row["filename"],
            "content_type": row["content_type"],
            "path": Path(row["path"]) if row["path"] else None,
            "xml_filename": row["xml_filename"],
            "xml_path": Path(row["xml_path"]) if row["xml_path"] else None,
            "state": row["state"],
            "locked_by": row["locked_by"],
            "locked_at": _deserialize_datetime(row["locked_at"]),
            "reason": row["reason"],
            "metadata": json.loads(row["metadata"] or "{}"),
            "events": events,
            "created_at": _deserialize_datetime(row["created_at"]),
            "updated_at": _deserialize_datetime(row["updated_at"]),
        }

    # ------------------------------------------------------------------
    # Validations
    # ------------------------------------------------------------------

    def save_validation(self, validation: Dict[str, Any]) -> None:
        with self._get_connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO validations (
                    document_id, validation, fields, validator, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?)
            """, (
                validation["document_id"],
                validation["validation"],
                json.dumps(validation.get("fields", {})),
                validation.get("validator"),
                _serialize_datetime(validation["created_at"]),
                _serialize_datetime(validation["updated_at"]),
            ))

    def get_validation(self, document_id: str, stage: str) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM validations WHERE document_id = ? AND validation = ?",
                (document_id, stage),
            ).fetchone()
            return self._validation_row_to_dict(row) if row else None

    def list_validations(
        self,
        document_id: Optional[str] = None,
        state: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        List validations, optionally for one document or for documents in one state.
        """
        query = "SELECT v.* FROM validations v JOIN documents d ON d.id = v.document_id"
        clauses: List[str] = []
        values: List[Any] = []
        if document_id is not None:
            clauses.append("v.document_id = ?")
            values.append(document_id)
        if state is not None:
            clauses.append("d.state = ?")
            values.append(state)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY d.created_at ASC, v.document_id ASC, v.validation ASC"

        with self._get_connection() as conn:
            rows = conn.execute(query, values).fetchall()
            return [self._validation_row_to_dict(row) for row in rows]

    def _validation_row_to_dict(self, row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "document_id": row["document_id"],
            "validation": row["validation"],
            "fields": json.loads(row["fields"] or "{}"),
            "validator": row["validator"],
            "created_at": _deserialize_datetime(row["created_at"]),
            "updated_at": _deserialize_datetime(row["updated_at"]),
        }
