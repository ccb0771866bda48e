from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DocumentState(str, Enum):
    PREVALIDATION = "prevalidation"
    V2 = "v2"
    VALIDATED = "validated"
    RETURNED = "returned"
    REJECTED = "rejected"


class ValidationStage(str, Enum):
    V1 = "v1"
    V2 = "v2"


class DocumentEvent(BaseModel):
    timestamp: datetime
    message: str


class DocumentSummary(BaseModel):
    id: str
    filename: str
    content_type: str
    state: DocumentState
    created_at: datetime
    updated_at: datetime
    xml_filename: Optional[str] = None
    locked_by: Optional[str] = None


class DocumentDetail(DocumentSummary):
    metadata: Dict[str, Any]
    events: List[DocumentEvent]
    locked_at: Optional[datetime] = None
    reason: Optional[str] = None


class ValidationRecord(BaseModel):
    document_id: str
    validation: ValidationStage
    fields: Dict[str, Any]
    validator: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class DocumentCounts(BaseModel):
    counts: Dict[str, int]
    total: int


class LockRequest(BaseModel):
    user: str = Field(min_length=1)


class ValidationPayload(BaseModel):
    validation: ValidationStage = ValidationStage.V1
    fields: Dict[str, Any] = Field(default_factory=dict)
    validator: Optional[str] = None


class ReasonPayload(BaseModel):
    reason: str = ""
    user: Optional[str] = None


class XmlExportRequest(BaseModel):
    document_id: str
    validation: ValidationStage = ValidationStage.V2


class InsertDocument(BaseModel):
    """A document registered by an external extraction service rather than uploaded."""

    filename: str = Field(min_length=1)
    content_type: str = "application/pdf"
    path: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    fields: Optional[Dict[str, Any]] = None


class Vertex(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: float
    y: float


class VerticesGroup(BaseModel):
    """
    One highlightable polygon in normalized, unrotated page space.

    ``page`` is 0-based, or ``"all"`` for a polygon shown on every page.
    """

    model_config = ConfigDict(frozen=True)

    page: Union[int, Literal["all"]] = 0
    key: str = ""
    vertices: Tuple[Vertex, ...] = ()

    @field_validator("page", mode="before")
    @classmethod
    def _parse_page(cls, value: Any) -> Any:
        if isinstance(value, str) and value != "all":
            return int(value.strip())
        return value

    def on_page(self, page_number: int) -> bool:
        """Whether the group is shown on the given 1-based page."""
        return self.page == "all" or self.page == page_number - 1


class PreviewRequest(BaseModel):
    page: int = Field(default=1, ge=1)
    scale: float = Field(default=1.5, gt=0)
    rotation: int = 0
    vertices_groups: List[VerticesGroup] = Field(default_factory=list)
    label: str = ""


class HitTestRequest(BaseModel):
    page: int = Field(default=1, ge=1)
    rotation: int = 0
    x: float
    y: float
    vertices_groups: List[VerticesGroup] = Field(default_factory=list)


class HitTestResponse(BaseModel):
    page: int
    matches: List[VerticesGroup]
