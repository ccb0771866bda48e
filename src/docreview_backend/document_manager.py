"""
Document lifecycle and review workflow management.

This module manages documents from upload to final decision:
- Registration of uploaded or externally inserted documents
- Reviewer locks, so two reviewers never work the same document
- Validation drafts for the first (v1) and second (v2) review stages
- Workflow transitions: validate, return and reject
- Per-state counts and queues

Workflow:
    prevalidation --validate v1--> v2 --validate v2--> validated
    returned      --validate v1--> v2
    v2 / validated --return--> returned
    any state but rejected --reject--> rejected
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional
from uuid import uuid4

from .database import DocumentDatabase
from .models import (
    DocumentCounts,
    DocumentDetail,
    DocumentEvent,
    DocumentState,
    DocumentSummary,
    ValidationPayload,
    ValidationRecord,
    ValidationStage,
)
from .utils import ensure_directory

logger = logging.getLogger(__name__)

# Document states a reviewer may work in at each validation stage
STAGE_STATES: Dict[ValidationStage, tuple[DocumentState, ...]] = {
    ValidationStage.V1: (DocumentState.PREVALIDATION, DocumentState.RETURNED),
    ValidationStage.V2: (DocumentState.V2,),
}

VALIDATED_STATE: Dict[ValidationStage, DocumentState] = {
    ValidationStage.V1: DocumentState.V2,
    ValidationStage.V2: DocumentState.VALIDATED,
}

RETURNABLE_STATES = (DocumentState.V2, DocumentState.VALIDATED)


class DocumentLockedError(RuntimeError):
    """The document is locked by another reviewer."""


class WorkflowError(RuntimeError):
    """The requested transition is not allowed from the document's current state."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DocumentRecord:
    """
    Internal representation of a document with full state.

    Attributes:
        id: Unique document identifier (hex UUID)
        filename: Original uploaded filename
        content_type: MIME type of the stored file
        path: Stored file location, None when only metadata was inserted
        state: Current workflow state
        created_at: Registration timestamp (UTC)
        updated_at: Last modification timestamp (UTC)
        xml_filename: Filename of the paired XML, if any
        xml_path: Stored location of the paired XML
        locked_by: Reviewer currently holding the lock
        locked_at: When the lock was taken
        reason: Reason given on the last return or rejection
        metadata: Free-form data, e.g. from an extraction service
        events: Chronological list of lifecycle events
    """

    id: str
    filename: str
    content_type: str
    path: Optional[Path]
    state: DocumentState
    created_at: datetime
    updated_at: datetime
    xml_filename: Optional[str] = None
    xml_path: Optional[Path] = None
    locked_by: Optional[str] = None
    locked_at: Optional[datetime] = None
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    events: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "DocumentRecord":
        return cls(**{**row, "state": DocumentState(row["state"])})

    def to_row(self) -> Dict[str, Any]:
        return {**asdict(self), "state": self.state.value}

    def to_summary(self) -> DocumentSummary:
        return DocumentSummary(
            id=self.id,
            filename=self.filename,
            content_type=self.content_type,
            state=self.state,
            created_at=self.created_at,
            updated_at=self.updated_at,
            xml_filename=self.xml_filename,
            locked_by=self.locked_by,
        )

    def to_detail(self) -> DocumentDetail:
        summary = self.to_summary()
        return DocumentDetail(
            **summary.model_dump(),
            metadata=self.metadata,
            events=[DocumentEvent(**event) for event in self.events],
            locked_at=self.locked_at,
            reason=self.reason,
        )

    def add_event(self, message: str) -> None:
        now = _now()
        self.events.append({"timestamp": now, "message": message})
        self.updated_at = now


class DocumentManager:
    """
    Central coordinator for documents and their review workflow.

    Thread Safety:
        Read-modify-write sequences hold a lock, so a lock request and a
        validation on the same document cannot interleave across request
        threads.

    Attributes:
        upload_root: Directory uploaded files are stored in
        database: Persistence for documents and validations
    """

    def __init__(self, upload_root: Path | None = None, db_path: Path | None = None) -> None:
        self.upload_root = ensure_directory(upload_root or Path("uploads"))
        self.database = DocumentDatabase(db_path) if db_path else DocumentDatabase()
        self._lock = Lock()

    # ------------------------------------------------------------------
    # Registration and lookup
    # ------------------------------------------------------------------

    def register_document(
        self,
        filename: str,
        content_type: str,
        path: Optional[Path],
        xml_filename: Optional[str] = None,
        xml_path: Optional[Path] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> DocumentSummary:
        """Register a stored file as a new document awaiting prevalidation."""
        now = _now()
        record = DocumentRecord(
            id=uuid4().hex,
            filename=filename,
            content_type=content_type,
            path=path,
            state=DocumentState.PREVALIDATION,
            created_at=now,
            updated_at=now,
            xml_filename=xml_filename,
            xml_path=xml_path,
            metadata=dict(metadata or {}),
        )
        record.add_event("Document registered and awaiting prevalidation.")
        with self._lock:
            self.database.save_document(record.to_row())
        logger.info("Registered document %s (%s)", record.id, filename)
        return record.to_summary()

    def insert_document(
        self,
        filename: str,
        content_type: str,
        path: Optional[Path],
        metadata: Dict[str, Any],
        fields: Optional[Dict[str, Any]] = None,
    ) -> DocumentSummary:
        """
        Register a document produced by an extraction service.

        When ``fields`` is given it is stored as the v1 validation draft so a
        reviewer starts from the extracted values.
        """
        summary = self.register_document(filename, content_type, path, metadata=metadata)
        if fields is not None:
            self.save_validation(summary.id, ValidationPayload(validation=ValidationStage.V1, fields=fields))
        return summary

    def _load(self, document_id: str) -> DocumentRecord:
        row = self.database.get_document(document_id)
        if row is None:
            raise KeyError(f"Document {document_id} not found")
        return DocumentRecord.from_row(row)

    def _save(self, record: DocumentRecord) -> None:
        self.database.save_document(record.to_row())

    def get_document(self, document_id: str) -> Optional[DocumentDetail]:
        row = self.database.get_document(document_id)
        return DocumentRecord.from_row(row).to_detail() if row else None

    def get_document_path(self, document_id: str) -> Path:
        """
        Raises:
            KeyError: If the document doesn't exist
            FileNotFoundError: If it has no stored file on disk
        """
        record = self._load(document_id)
        if record.path is None or not record.path.exists():
            raise FileNotFoundError(f"No stored file for document {document_id}")
        return record.path

    def list_documents(
        self,
        state: Optional[DocumentState] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[DocumentSummary]:
        rows = self.database.list_documents(state.value if state else None, limit=limit, offset=offset)
        return [DocumentRecord.from_row(row).to_summary() for row in rows]

    def counts(self) -> DocumentCounts:
        by_state = self.database.count_by_state()
        counts = {state.value: by_state.get(state.value, 0) for state in DocumentState}
        return DocumentCounts(counts=counts, total=sum(counts.values()))

    # ------------------------------------------------------------------
    # Reviewer locks
    # ------------------------------------------------------------------

    @staticmethod
    def _check_lock(record: DocumentRecord, user: Optional[str]) -> None:
        if record.locked_by and record.locked_by != user:
            raise DocumentLockedError(f"Document is locked by {record.locked_by}.")

    def lock_document(self, document_id: str, user: str) -> DocumentDetail:
        """
        Raises:
            KeyError: If the document doesn't exist
            DocumentLockedError: If another reviewer holds the lock
        """
        with self._lock:
            record = self._load(document_id)
            self._check_lock(record, user)
            if record.locked_by != user:
                record.locked_by = user
                record.locked_at = _now()
                record.add_event(f"Locked by {user}.")
                self._save(record)
            return record.to_detail()

    def unlock_document(self, document_id: str, user: str) -> DocumentDetail:
        with self._lock:
            record = self._load(document_id)
            self._check_lock(record, user)
            if record.locked_by:
                record.locked_by = None
                record.locked_at = None
                record.add_event(f"Unlocked by {user}.")
                self._save(record)
            return record.to_detail()

    def next_document(self, stage: ValidationStage, user: str) -> Optional[DocumentDetail]:
        """
        Lock and return the oldest document waiting for ``stage``.

        A document the user already holds is returned before unlocked ones.
        Returns None when the queue is empty.
        """
        with self._lock:
            candidates: List[DocumentRecord] = []
            for state in STAGE_STATES[stage]:
                candidates.extend(DocumentRecord.from_row(row) for row in self.database.list_documents(state.value))
            candidates.sort(key=lambda record: (record.locked_by != user, record.created_at))

            for record in candidates:
                if record.locked_by in (None, user):
                    if record.locked_by is None:
                        record.locked_by = user
                        record.locked_at = _now()
                        record.add_event(f"Locked by {user}.")
                        self._save(record)
                    return record.to_detail()
        return None

    # ------------------------------------------------------------------
    # Validations
    # ------------------------------------------------------------------

    def _store_validation(self, record: DocumentRecord, payload: ValidationPayload) -> ValidationRecord:
        if record.state not in STAGE_STATES[payload.validation]:
            raise WorkflowError(
                f"Cannot record a {payload.validation.value} validation while the document is {record.state.value}."
            )
        now = _now()
        existing = self.database.get_validation(record.id, payload.validation.value)
        validation = {
            "document_id": record.id,
            "validation": payload.validation.value,
            "fields": payload.fields,
            "validator": payload.validator,
            "created_at": existing["created_at"] if existing else now,
            "updated_at": now,
        }
        self.database.save_validation(validation)
        return ValidationRecord(**validation)

    def save_validation(self, document_id: str, payload: ValidationPayload) -> ValidationRecord:
        """
        Create or update the validation draft for the payload's stage.

        Raises:
            KeyError: If the document doesn't exist
            DocumentLockedError: If another reviewer holds the lock
            WorkflowError: If the document is not waiting for that stage
        """
        with self._lock:
            record = self._load(document_id)
            self._check_lock(record, payload.validator)
            return self._store_validation(record, payload)

    def validate_document(self, document_id: str, payload: ValidationPayload) -> DocumentDetail:
        """Save the validation, advance the workflow and release the reviewer lock."""
        with self._lock:
            record = self._load(document_id)
            self._check_lock(record, payload.validator)
            self._store_validation(record, payload)

            previous = record.state
            record.state = VALIDATED_STATE[payload.validation]
            record.locked_by = None
            record.locked_at = None
            record.reason = None
            record.add_event(f"Validated ({payload.validation.value}) by {payload.validator or 'unknown'}: {previous.value} -> {record.state.value}.")
            self._save(record)
        logger.info("Document %s moved to %s", document_id, record.state.value)
        return record.to_detail()

    def get_validations(self, document_id: str) -> List[ValidationRecord]:
        self._load(document_id)
        return [ValidationRecord(**row) for row in self.database.list_validations(document_id=document_id)]

    def get_validation(self, document_id: str, stage: ValidationStage) -> Optional[ValidationRecord]:
        row = self.database.get_validation(document_id, stage.value)
        return ValidationRecord(**row) if row else None

    def list_validations(self, state: Optional[DocumentState] = None) -> List[ValidationRecord]:
        rows = self.database.list_validations(state=state.value if state else None)
        return [ValidationRecord(**row) for row in rows]

    # ------------------------------------------------------------------
    # Return and reject
    # ------------------------------------------------------------------

    def _decide(self, document_id: str, target: DocumentState, allowed: tuple[DocumentState, ...], reason: str, user: Optional[str]) -> DocumentDetail:
        with self._lock:
            record = self._load(document_id)
            self._check_lock(record, user)
            if record.state not in allowed:
                raise WorkflowError(f"Cannot move a {record.state.value} document to {target.value}.")
            record.state = target
            record.reason = reason or None
            record.locked_by = None
            record.locked_at = None
            suffix = f": {reason}" if reason else "."
            record.add_event(f"Moved to {target.value} by {user or 'unknown'}{suffix}")
            self._save(record)
        logger.info("Document %s moved to %s", document_id, target.value)
        return record.to_detail()

    def return_document(self, document_id: str, reason: str = "", user: Optional[str] = None) -> DocumentDetail:
        """
        Send a document back for a new first validation.

        Raises:
            KeyError: If the document doesn't exist
            DocumentLockedError: If another reviewer holds the lock
            WorkflowError: If the document is not in v2 or validated
        """
        return self._decide(document_id, DocumentState.RETURNED, RETURNABLE_STATES, reason, user)

    def reject_document(self, document_id: str, reason: str = "", user: Optional[str] = None) -> DocumentDetail:
        allowed = tuple(state for state in DocumentState if state is not DocumentState.REJECTED)
        return self._decide(document_id, DocumentState.REJECTED, allowed, reason, user)
