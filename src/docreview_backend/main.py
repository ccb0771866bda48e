from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Dict, List, Literal, Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, File, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, Response

from .configuration import build_overlay_style, build_viewer_settings, get_settings
from .document_manager import DocumentLockedError, DocumentManager, WorkflowError
from .exports import build_validation_xml, build_validations_csv, build_validations_workbook
from .models import (
    DocumentCounts,
    DocumentDetail,
    DocumentState,
    DocumentSummary,
    HitTestRequest,
    HitTestResponse,
    InsertDocument,
    LockRequest,
    PreviewRequest,
    ReasonPayload,
    ValidationPayload,
    ValidationRecord,
    ValidationStage,
    XmlExportRequest,
)
from .utils import ensure_directory, guess_content_type, is_allowed_upload, sanitize_filename
from .viewer import OverlayRenderer, ViewerController, contains, from_surface, normalize_rotation
from .viewer.fetch import read_local_bytes

settings = get_settings()
logging.basicConfig(
    level=str(settings.logging.level).upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Document Review API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors.allowed_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

document_manager = DocumentManager(
    upload_root=Path(settings.storage.upload_dir),
    db_path=Path(settings.storage.database_path),
)
viewer_settings = build_viewer_settings(settings)
overlay_renderer = OverlayRenderer(build_overlay_style(settings), scroll_margin=viewer_settings.scroll_margin)

ALLOWED_TYPES = list(settings.storage.allowed_types)
UPLOAD_REJECTED = "Only PDF and XML files are accepted"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def get_document_manager() -> DocumentManager:
    return document_manager


@app.get("/healthz")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


# ----------------------------------------------------------------------
# Uploads
# ----------------------------------------------------------------------


def _check_upload(file: UploadFile, allowed_types: List[str]) -> None:
    if not file.filename:
        raise HTTPException(status_code=400, detail="Uploaded file must have a filename")
    if not is_allowed_upload(file.filename, file.content_type, allowed_types):
        raise HTTPException(status_code=400, detail=f"{UPLOAD_REJECTED}: {file.filename}")


async def _store_upload(file: UploadFile, manager: DocumentManager) -> Path:
    upload_dir = ensure_directory(manager.upload_root / uuid4().hex)
    destination = upload_dir / sanitize_filename(file.filename or "document")

    with destination.open("wb") as buffer:
        while chunk := await file.read(8 * 1024 * 1024):
            buffer.write(chunk)
    await file.close()
    return destination


@app.post("/upload", response_model=List[DocumentSummary], status_code=201)
async def upload_files(
    files: List[UploadFile] = File(...),
    manager: DocumentManager = Depends(get_document_manager),
) -> List[DocumentSummary]:
    max_files = int(settings.storage.max_files)
    if len(files) > max_files:
        raise HTTPException(status_code=400, detail=f"At most {max_files} files can be uploaded at once")
    for file in files:
        _check_upload(file, ALLOWED_TYPES)

    summaries = []
    for file in files:
        stored = await _store_upload(file, manager)
        content_type = file.content_type or guess_content_type(file.filename or "")
        summaries.append(manager.register_document(file.filename or stored.name, content_type, stored))
    logger.info("Stored %d uploaded files", len(summaries))
    return summaries


@app.post("/upload-documents", response_model=DocumentSummary, status_code=201)
async def upload_document_pair(
    pdf_file: UploadFile = File(..., alias="pdfFile"),
    xml_file: Optional[UploadFile] = File(None, alias="xmlFile"),
    manager: DocumentManager = Depends(get_document_manager),
) -> DocumentSummary:
    _check_upload(pdf_file, ["pdf"])
    if xml_file is not None:
        _check_upload(xml_file, ["xml"])

    pdf_path = await _store_upload(pdf_file, manager)
    xml_path = await _store_upload(xml_file, manager) if xml_file is not None else None
    return manager.register_document(
        pdf_file.filename or pdf_path.name,
        "application/pdf",
        pdf_path,
        xml_filename=xml_file.filename if xml_file is not None else None,
        xml_path=xml_path,
    )


def _resolve_inserted_path(raw_path: Optional[str], upload_root: Path) -> Optional[Path]:
    if not raw_path:
        return None
    root = upload_root.resolve()
    candidate = Path(raw_path)
    resolved = (candidate if candidate.is_absolute() else root / candidate).resolve()
    if not resolved.is_relative_to(root):
        raise HTTPException(status_code=400, detail="Invalid path request")
    if not resolved.is_file():
        raise HTTPException(status_code=400, detail=f"File not found: {raw_path}")
    return resolved


@app.post("/insert-documents", response_model=List[DocumentSummary], status_code=201)
def insert_documents(
    documents: List[InsertDocument],
    manager: DocumentManager = Depends(get_document_manager),
) -> List[DocumentSummary]:
    resolved = [_resolve_inserted_path(document.path, manager.upload_root) for document in documents]
    return [
        manager.insert_document(document.filename, document.content_type, path, document.metadata, document.fields)
        for document, path in zip(documents, resolved)
    ]


# ----------------------------------------------------------------------
# Document listings
# ----------------------------------------------------------------------


@app.get("/files", response_model=List[DocumentSummary])
def list_files(manager: DocumentManager = Depends(get_document_manager)) -> List[DocumentSummary]:
    return manager.list_documents()


@app.get("/documents", response_model=List[DocumentSummary])
def list_documents(
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
    state: Optional[DocumentState] = None,
    manager: DocumentManager = Depends(get_document_manager),
) -> List[DocumentSummary]:
    return manager.list_documents(state, limit=limit, offset=offset)


_STATE_LISTINGS = {
    "/prevalidations": DocumentState.PREVALIDATION,
    "/v2-validations": DocumentState.V2,
    "/returned-validations": DocumentState.RETURNED,
    "/rejected-validations": DocumentState.REJECTED,
    "/validated-validations": DocumentState.VALIDATED,
}


def _state_listing(state: DocumentState) -> Callable[..., List[DocumentSummary]]:
    def listing(manager: DocumentManager = Depends(get_document_manager)) -> List[DocumentSummary]:
        return manager.list_documents(state)

    listing.__name__ = f"list_{state.value}_documents"
    return listing


for _path, _state in _STATE_LISTINGS.items():
    app.add_api_route(_path, _state_listing(_state), methods=["GET"], response_model=List[DocumentSummary])


@app.get("/document-counts", response_model=DocumentCounts)
def document_counts(manager: DocumentManager = Depends(get_document_manager)) -> DocumentCounts:
    return manager.counts()


@app.get("/document/{document_id}", response_model=DocumentDetail)
def get_document(document_id: str, manager: DocumentManager = Depends(get_document_manager)) -> DocumentDetail:
    document = manager.get_document(document_id)
    if not document:
        raise HTTPException(status_code=404, detail="Document not found")
    return document


@app.get("/document/{document_id}/content")
def document_content(document_id: str, manager: DocumentManager = Depends(get_document_manager)):
    try:
        path = manager.get_document_path(document_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Document not found") from exc
    except FileNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    document = manager.get_document(document_id)
    return FileResponse(path, media_type=document.content_type if document else None, filename=path.name)


# ----------------------------------------------------------------------
# Reviewer locks
# ----------------------------------------------------------------------


@app.post("/lockFile/{document_id}", response_model=DocumentDetail)
def lock_file(document_id: str, request: LockRequest, manager: DocumentManager = Depends(get_document_manager)) -> DocumentDetail:
    try:
        return manager.lock_document(document_id, request.user)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Document not found") from exc
    except DocumentLockedError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.post("/unlockFile/{document_id}", response_model=DocumentDetail)
def unlock_file(document_id: str, request: LockRequest, manager: DocumentManager = Depends(get_document_manager)) -> DocumentDetail:
    try:
        return manager.unlock_document(document_id, request.user)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Document not found") from exc
    except DocumentLockedError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.post("/next-doc/{validation}", response_model=DocumentDetail)
def next_document(
    validation: ValidationStage,
    request: LockRequest,
    manager: DocumentManager = Depends(get_document_manager),
) -> DocumentDetail:
    document = manager.next_document(validation, request.user)
    if not document:
        raise HTTPException(status_code=404, detail=f"No document available for {validation.value} validation")
    return document


# ----------------------------------------------------------------------
# Validations
# ----------------------------------------------------------------------


@app.get("/validation/{document_id}", response_model=List[ValidationRecord])
def get_validations(document_id: str, manager: DocumentManager = Depends(get_document_manager)) -> List[ValidationRecord]:
    try:
        return manager.get_validations(document_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Document not found") from exc


@app.post("/validation/{document_id}", response_model=ValidationRecord)
def save_validation(
    document_id: str,
    payload: ValidationPayload,
    manager: DocumentManager = Depends(get_document_manager),
) -> ValidationRecord:
    try:
        return manager.save_validation(document_id, payload)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Document not found") from exc
    except (DocumentLockedError, WorkflowError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.put("/validation/{document_id}", response_model=DocumentDetail)
def validate_document(
    document_id: str,
    payload: ValidationPayload,
    manager: DocumentManager = Depends(get_document_manager),
) -> DocumentDetail:
    try:
        return manager.validate_document(document_id, payload)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Document not found") from exc
    except (DocumentLockedError, WorkflowError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.get("/validation/{document_id}/{validation}", response_model=ValidationRecord)
def get_validation(
    document_id: str,
    validation: ValidationStage,
    manager: DocumentManager = Depends(get_document_manager),
) -> ValidationRecord:
    record = manager.get_validation(document_id, validation)
    if not record:
        raise HTTPException(status_code=404, detail="Validation not found")
    return record


@app.get("/get-validations", response_model=List[ValidationRecord])
@app.get("/get-validations/{state}", response_model=List[ValidationRecord])
def list_validations(
    state: Optional[DocumentState] = None,
    manager: DocumentManager = Depends(get_document_manager),
) -> List[ValidationRecord]:
    return manager.list_validations(state)


@app.post("/return-document/{document_id}", response_model=DocumentDetail)
def return_document(
    document_id: str,
    payload: Optional[ReasonPayload] = None,
    manager: DocumentManager = Depends(get_document_manager),
) -> DocumentDetail:
    payload = payload or ReasonPayload()
    try:
        return manager.return_document(document_id, payload.reason, payload.user)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Document not found") from exc
    except (DocumentLockedError, WorkflowError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.post("/reject-document/{document_id}", response_model=DocumentDetail)
def reject_document(
    document_id: str,
    payload: Optional[ReasonPayload] = None,
    manager: DocumentManager = Depends(get_document_manager),
) -> DocumentDetail:
    payload = payload or ReasonPayload()
    try:
        return manager.reject_document(document_id, payload.reason, payload.user)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Document not found") from exc
    except (DocumentLockedError, WorkflowError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


# ----------------------------------------------------------------------
# Exports
# ----------------------------------------------------------------------


@app.post("/get-xml")
def create_xml_file(request: XmlExportRequest, manager: DocumentManager = Depends(get_document_manager)) -> Response:
    document = manager.get_document(request.document_id)
    if not document:
        raise HTTPException(status_code=404, detail="Document not found")
    validation = manager.get_validation(request.document_id, request.validation)
    if not validation:
        raise HTTPException(status_code=404, detail="Validation not found")

    filename = f"{Path(document.filename).stem or document.id}-{request.validation.value}.xml"
    return Response(
        content=build_validation_xml(document, validation),
        media_type="application/xml",
        headers={"Content-Disposition": f'attachment; filename="{sanitize_filename(filename)}"'},
    )


@app.get("/generateFile")
def generate_file(
    state: Optional[DocumentState] = None,
    file_format: Literal["xlsx", "csv"] = Query("xlsx", alias="format"),
    manager: DocumentManager = Depends(get_document_manager),
) -> Response:
    validations = manager.list_validations(state)
    documents = {document.id: document for document in manager.list_documents()}
    if file_format == "xlsx":
        return Response(
            content=build_validations_workbook(validations, documents),
            media_type=XLSX_MEDIA_TYPE,
            headers={"Content-Disposition": 'attachment; filename="validations.xlsx"'},
        )
    return Response(
        content=build_validations_csv(validations, documents),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="validations.csv"'},
    )


# ----------------------------------------------------------------------
# Viewer
# ----------------------------------------------------------------------


@app.post("/document/{document_id}/preview")
async def preview_page(
    document_id: str,
    request: PreviewRequest,
    manager: DocumentManager = Depends(get_document_manager),
) -> Response:
    """Render one page with the supplied vertices groups highlighted, as PNG."""
    document = manager.get_document(document_id)
    if not document:
        raise HTTPException(status_code=404, detail="Document not found")
    if document.content_type != "application/pdf":
        raise HTTPException(status_code=400, detail="Preview is only available for PDF documents")
    try:
        path = manager.get_document_path(document_id)
    except FileNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    controller = ViewerController(
        str(path),
        vertices_groups=request.vertices_groups,
        fetch=read_local_bytes,
        renderer=overlay_renderer,
        settings=viewer_settings,
    )
    controller.current_page = request.page
    controller.scale = request.scale
    controller.rotation = normalize_rotation(request.rotation)
    try:
        if not await controller.load():
            raise HTTPException(status_code=422, detail=controller.error)
        if request.page > controller.num_pages:
            raise HTTPException(status_code=400, detail=f"Page {request.page} out of range 1..{controller.num_pages}")
        if request.label:
            controller.update_overlay(request.vertices_groups, scroll_into_view=False, page=request.page, label=request.label)
        png = controller.page_view.to_png()
    finally:
        controller.close()
    return Response(content=png, media_type="image/png")


@app.post("/document/{document_id}/hit-test", response_model=HitTestResponse)
def hit_test(
    document_id: str,
    request: HitTestRequest,
    manager: DocumentManager = Depends(get_document_manager),
) -> HitTestResponse:
    """
    Find the vertices groups under a cursor.

    ``x``/``y`` are fractions of the rendered (possibly rotated) page; they are
    mapped back to unrotated page space before testing.
    """
    if not manager.get_document(document_id):
        raise HTTPException(status_code=404, detail="Document not found")
    point = from_surface(request.x, request.y, 1, 1, request.rotation)
    matches = [group for group in request.vertices_groups if group.on_page(request.page) and contains(point, group.vertices)]
    return HitTestResponse(page=request.page, matches=matches)
