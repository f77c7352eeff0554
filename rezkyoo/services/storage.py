"""Document storage for batches, calls and do-not-call entries.

The core only depends on ``DocumentStore`` (get/put/query by field within a
named collection). ``InMemoryDocumentStore`` backs tests and single-process
runs; ``SQLiteDocumentStore`` keeps JSON documents in a SQLite file.
"""

import copy
import json
import logging
import sqlite3
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any

from rezkyoo.exceptions import CallStateError
from rezkyoo.models import Batch, CallRecord

logger = logging.getLogger(__name__)

BATCHES = "batches"
CALLS = "calls"
DNC = "dnc"


class DocumentStore(ABC):
    """Key/value document store with named collections."""

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Read a document by id, or None if it does not exist."""

    @abstractmethod
    def put(self, collection: str, doc_id: str, document: dict[str, Any]) -> None:
        """Create or replace a document."""

    @abstractmethod
    def query(self, collection: str, field: str, value: Any) -> list[dict[str, Any]]:
        """All documents whose top-level ``field`` equals ``value``."""


class InMemoryDocumentStore(DocumentStore):
    """Stores documents in process memory. Documents are copied in and out."""

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        document = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    def put(self, collection: str, doc_id: str, document: dict[str, Any]) -> None:
        self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(document)

    def query(self, collection: str, field: str, value: Any) -> list[dict[str, Any]]:
        return [
            copy.deepcopy(doc)
            for doc in self._collections.get(collection, {}).values()
            if doc.get(field) == value
        ]


class SQLiteDocumentStore(DocumentStore):
    """Stores JSON documents in a SQLite database file."""

    def __init__(self, db_path: str | Path) -> None:
        """Initialize the store and create the documents table.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = Path(db_path)

        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                collection TEXT NOT NULL,
                id TEXT NOT NULL,
                body TEXT NOT NULL,
                PRIMARY KEY (collection, id)
            )
        """)
        conn.commit()
        conn.close()
        logger.info(f"Document store initialized at {self.db_path}")

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()
        cursor.execute(
            "SELECT body FROM documents WHERE collection = ? AND id = ?",
            (collection, doc_id),
        )
        row = cursor.fetchone()
        conn.close()
        return json.loads(row[0]) if row else None

    def put(self, collection: str, doc_id: str, document: dict[str, Any]) -> None:
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()
        cursor.execute(
            """
            INSERT INTO documents (collection, id, body) VALUES (?, ?, ?)
            ON CONFLICT (collection, id) DO UPDATE SET body = excluded.body
        """,
            (collection, doc_id, json.dumps(document)),
        )
        conn.commit()
        conn.close()

    def query(self, collection: str, field: str, value: Any) -> list[dict[str, Any]]:
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()
        cursor.execute(
            """
            SELECT body FROM documents
            WHERE collection = ? AND json_extract(body, ?) = ?
            ORDER BY rowid
        """,
            (collection, f"$.{field}", value),
        )
        rows = cursor.fetchall()
        conn.close()
        return [json.loads(row[0]) for row in rows]


class ReservationStore:
    """Typed access to batches and call records on top of a DocumentStore."""

    def __init__(self, documents: DocumentStore) -> None:
        self.documents = documents

    @staticmethod
    def generate_id(prefix: str) -> str:
        """Generate a unique identifier such as ``batch_1f3a9c2e``."""
        return f"{prefix}_{uuid.uuid4().hex[:12]}"

    def get_batch(self, batch_id: str) -> Batch | None:
        document = self.documents.get(BATCHES, batch_id)
        return Batch.model_validate(document) if document else None

    def save_batch(self, batch: Batch) -> None:
        self.documents.put(BATCHES, batch.id, batch.model_dump(mode="json"))

    def get_call(self, call_id: str) -> CallRecord | None:
        document = self.documents.get(CALLS, call_id)
        return CallRecord.model_validate(document) if document else None

    def save_call(self, record: CallRecord) -> CallRecord:
        """Persist a call record, stamping its update time.

        Status only moves forward and a terminal record is never rewritten.

        Returns:
            The stored record

        Raises:
            CallStateError: If the save would move the status backwards or
                modify a terminal record
        """
        current = self.get_call(record.id)
        if current is not None and not current.status.can_advance_to(record.status):
            msg = (
                f"Call {record.id} cannot move from {current.status.value} "
                f"to {record.status.value}"
            )
            raise CallStateError(msg)

        record = record.model_copy(update={"updated_at": datetime.now()})
        self.documents.put(CALLS, record.id, record.model_dump(mode="json"))
        return record

    def find_call_by_control_id(self, call_control_id: str) -> CallRecord | None:
        matches = self.documents.query(CALLS, "call_control_id", call_control_id)
        return CallRecord.model_validate(matches[0]) if matches else None

    def calls_for_batch(self, batch_id: str) -> list[CallRecord]:
        records = [
            CallRecord.model_validate(doc)
            for doc in self.documents.query(CALLS, "batch_id", batch_id)
        ]
        return sorted(records, key=lambda r: r.created_at)
