"""
Exports of reviewed data: one document's validation as XML, and all
validations as an Excel workbook or a CSV sheet.
"""

from __future__ import annotations

import csv
import io
import json
import xml.etree.ElementTree as ET
from typing import Any, Dict, Iterable, List, Tuple

from openpyxl import Workbook

from .models import DocumentSummary, ValidationRecord

BASE_COLUMNS = ["document_id", "filename", "state", "validation", "validator", "updated_at"]


def _append_value(parent: ET.Element, name: str, value: Any) -> None:
    element = ET.SubElement(parent, "field", name=str(name))
    if isinstance(value, dict):
        for key, child in value.items():
            _append_value(element, key, child)
    elif isinstance(value, list):
        for index, child in enumerate(value):
            _append_value(element, str(index), child)
    elif value is not None:
        element.text = str(value)


def build_validation_xml(document: DocumentSummary, validation: ValidationRecord) -> bytes:
    root = ET.Element(
        "document",
        id=document.id,
        filename=document.filename,
        state=document.state.value,
    )
    stage = ET.SubElement(
        root,
        "validation",
        stage=validation.validation.value,
        updated_at=validation.updated_at.isoformat(),
    )
    if validation.validator:
        stage.set("validator", validation.validator)
    for name, value in validation.fields.items():
        _append_value(stage, name, value)

    ET.indent(root)
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _validation_rows(
    validations: Iterable[ValidationRecord], documents: Dict[str, DocumentSummary]
) -> Tuple[List[str], List[List[str]]]:
    """
    One row per validation; every field key seen in any validation gets a column.
    """
    validations = list(validations)
    field_columns: List[str] = sorted({key for validation in validations for key in validation.fields})

    rows = []
    for validation in validations:
        document = documents.get(validation.document_id)
        rows.append(
            [
                validation.document_id,
                document.filename if document else "",
                document.state.value if document else "",
                validation.validation.value,
                validation.validator or "",
                validation.updated_at.isoformat(),
            ]
            + [_cell(validation.fields.get(column)) for column in field_columns]
        )
    return BASE_COLUMNS + field_columns, rows


def build_validations_workbook(
    validations: Iterable[ValidationRecord], documents: Dict[str, DocumentSummary]
) -> bytes:
    header, rows = _validation_rows(validations, documents)

    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Validations"
    sheet.append(header)
    for row in rows:
        sheet.append(row)
    sheet.freeze_panes = "A2"

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def build_validations_csv(validations: Iterable[ValidationRecord], documents: Dict[str, DocumentSummary]) -> str:
    header, rows = _validation_rows(validations, documents)

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(header)
    writer.writerows(rows)
    return buffer.getvalue()
