"""
Tests for Document Review Backend API endpoints.

Tests cover:
- Health check
- Uploads and their type filter
- Document listings, detail and content
- Reviewer locks and the next-document queue
- Validation workflow (v1, v2, return, reject)
- XML, Excel and CSV exports
- Page preview and hit test
"""

from io import BytesIO

import pytest
from openpyxl import load_workbook
from PIL import Image


def _upload(client, pdf_bytes, name="invoice.pdf"):
    response = client.post("/upload", files=[("files", (name, pdf_bytes, "application/pdf"))])
    assert response.status_code == 201
    return response.json()[0]["id"]


def _validate(client, document_id, stage, user, **fields):
    return client.put(
        f"/validation/{document_id}",
        json={"validation": stage, "fields": fields or {"total": "12.50"}, "validator": user},
    )


class TestHealthCheck:
    """Tests for the /healthz endpoint."""

    def test_health_check_returns_ok(self, client):
        """Health check should return status ok."""
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestUpload:
    """Tests for the /upload and /upload-documents endpoints."""

    def test_upload_registers_prevalidation_documents(self, client, pdf_bytes):
        """Each uploaded file becomes one document awaiting prevalidation."""
        response = client.post(
            "/upload",
            files=[
                ("files", ("a.pdf", pdf_bytes, "application/pdf")),
                ("files", ("b.xml", b"<invoice/>", "application/xml")),
            ],
        )
        assert response.status_code == 201

        data = response.json()
        assert [doc["filename"] for doc in data] == ["a.pdf", "b.xml"]
        assert all(doc["state"] == "prevalidation" for doc in data)

    def test_upload_rejects_other_types(self, client):
        """Files that are neither PDF nor XML are refused."""
        response = client.post("/upload", files=[("files", ("notes.txt", b"hello", "text/plain"))])
        assert response.status_code == 400
        assert "notes.txt" in response.json()["detail"]

    def test_upload_accepts_pdf_extension_with_generic_type(self, client, pdf_bytes):
        response = client.post(
            "/upload", files=[("files", ("scan.pdf", pdf_bytes, "application/octet-stream"))]
        )
        assert response.status_code == 201

    def test_upload_limits_file_count(self, client):
        files = [("files", (f"{n}.xml", b"<x/>", "application/xml")) for n in range(11)]
        response = client.post("/upload", files=files)
        assert response.status_code == 400

    def test_upload_pair(self, client, pdf_bytes):
        """A PDF with its XML counterpart becomes a single document."""
        response = client.post(
            "/upload-documents",
            files={
                "pdfFile": ("pair.pdf", pdf_bytes, "application/pdf"),
                "xmlFile": ("pair.xml", b"<invoice/>", "application/xml"),
            },
        )
        assert response.status_code == 201

        data = response.json()
        assert data["filename"] == "pair.pdf"
        assert data["xml_filename"] == "pair.xml"

    def test_upload_pair_requires_pdf(self, client):
        response = client.post(
            "/upload-documents",
            files={"pdfFile": ("pair.xml", b"<invoice/>", "application/xml")},
        )
        assert response.status_code == 400


class TestInsertDocuments:
    """Tests for the /insert-documents endpoint."""

    def test_insert_with_extracted_fields(self, client):
        response = client.post(
            "/insert-documents",
            json=[{"filename": "scan.pdf", "metadata": {"source": "ocr"}, "fields": {"iban": "DE00"}}],
        )
        assert response.status_code == 201

        document_id = response.json()[0]["id"]
        draft = client.get(f"/validation/{document_id}/v1")
        assert draft.status_code == 200
        assert draft.json()["fields"] == {"iban": "DE00"}

    def test_insert_rejects_path_outside_upload_root(self, client):
        response = client.post("/insert-documents", json=[{"filename": "x.pdf", "path": "../../etc/passwd"}])
        assert response.status_code == 400


class TestDocuments:
    """Tests for document listings, detail and content."""

    def test_uploaded_document_is_listed(self, client, uploaded_document):
        assert uploaded_document in [doc["id"] for doc in client.get("/files").json()]
        assert uploaded_document in [doc["id"] for doc in client.get("/prevalidations").json()]
        assert uploaded_document not in [doc["id"] for doc in client.get("/v2-validations").json()]

    def test_paged_listing(self, client, uploaded_document):
        response = client.get("/documents", params={"limit": 1, "state": "prevalidation"})
        assert response.status_code == 200
        assert len(response.json()) == 1

    def test_document_detail(self, client, uploaded_document):
        response = client.get(f"/document/{uploaded_document}")
        assert response.status_code == 200

        data = response.json()
        assert data["state"] == "prevalidation"
        assert data["events"][0]["message"] == "Document registered and awaiting prevalidation."

    def test_document_not_found(self, client):
        assert client.get("/document/nonexistent").status_code == 404
        assert client.get("/document/nonexistent/content").status_code == 404

    def test_document_content(self, client, uploaded_document, pdf_bytes):
        response = client.get(f"/document/{uploaded_document}/content")
        assert response.status_code == 200
        assert response.content == pdf_bytes

    def test_counts(self, client, uploaded_document):
        data = client.get("/document-counts").json()
        assert data["counts"]["prevalidation"] >= 1
        assert data["total"] == sum(data["counts"].values())


class TestLocks:
    """Tests for reviewer locks and the next-document queue."""

    def test_lock_conflict(self, client, uploaded_document):
        assert client.post(f"/lockFile/{uploaded_document}", json={"user": "alice"}).status_code == 200

        response = client.post(f"/lockFile/{uploaded_document}", json={"user": "bob"})
        assert response.status_code == 409
        assert client.post(f"/unlockFile/{uploaded_document}", json={"user": "bob"}).status_code == 409

        unlocked = client.post(f"/unlockFile/{uploaded_document}", json={"user": "alice"})
        assert unlocked.status_code == 200
        assert unlocked.json()["locked_by"] is None

    def test_lock_unknown_document(self, client):
        assert client.post("/lockFile/nonexistent", json={"user": "alice"}).status_code == 404

    def test_lock_requires_user(self, client, uploaded_document):
        assert client.post(f"/lockFile/{uploaded_document}", json={"user": ""}).status_code == 422

    def test_next_document_is_locked_to_caller(self, client, uploaded_document):
        response = client.post("/next-doc/v1", json={"user": "queue-reviewer"})
        assert response.status_code == 200
        assert response.json()["locked_by"] == "queue-reviewer"

        again = client.post("/next-doc/v1", json={"user": "queue-reviewer"})
        assert again.json()["id"] == response.json()["id"]

    def test_unknown_stage(self, client):
        assert client.post("/next-doc/v3", json={"user": "alice"}).status_code == 422


class TestWorkflow:
    """Tests for validations, return and reject."""

    def test_two_stage_validation(self, client, uploaded_document):
        draft = client.post(
            f"/validation/{uploaded_document}",
            json={"validation": "v1", "fields": {"total": "10.00"}, "validator": "alice"},
        )
        assert draft.status_code == 200

        first = _validate(client, uploaded_document, "v1", "alice", total="12.50")
        assert first.status_code == 200
        assert first.json()["state"] == "v2"
        assert uploaded_document in [doc["id"] for doc in client.get("/v2-validations").json()]

        second = _validate(client, uploaded_document, "v2", "bob", total="12.50")
        assert second.json()["state"] == "validated"

        validations = client.get(f"/validation/{uploaded_document}").json()
        assert [v["validation"] for v in validations] == ["v1", "v2"]
        assert uploaded_document in [v["document_id"] for v in client.get("/get-validations/validated").json()]

    def test_wrong_stage_conflicts(self, client, uploaded_document):
        assert _validate(client, uploaded_document, "v2", "bob").status_code == 409

    def test_locked_document_conflicts(self, client, uploaded_document):
        client.post(f"/lockFile/{uploaded_document}", json={"user": "alice"})
        assert _validate(client, uploaded_document, "v1", "bob").status_code == 409

    def test_return_and_revalidate(self, client, uploaded_document):
        assert client.post(f"/return-document/{uploaded_document}").status_code == 409

        _validate(client, uploaded_document, "v1", "alice")
        response = client.post(
            f"/return-document/{uploaded_document}", json={"reason": "wrong total", "user": "bob"}
        )
        assert response.status_code == 200
        assert response.json()["state"] == "returned"
        assert response.json()["reason"] == "wrong total"
        assert uploaded_document in [doc["id"] for doc in client.get("/returned-validations").json()]

        assert _validate(client, uploaded_document, "v1", "alice").json()["state"] == "v2"

    def test_reject(self, client, uploaded_document):
        response = client.post(f"/reject-document/{uploaded_document}", json={"reason": "duplicate"})
        assert response.status_code == 200
        assert response.json()["state"] == "rejected"
        assert uploaded_document in [doc["id"] for doc in client.get("/rejected-validations").json()]

        assert client.post(f"/reject-document/{uploaded_document}").status_code == 409

    def test_missing_validation(self, client, uploaded_document):
        assert client.get(f"/validation/{uploaded_document}/v2").status_code == 404
        assert client.get("/validation/nonexistent").status_code == 404


class TestExports:
    """Tests for /get-xml and /generateFile."""

    def test_xml_export(self, client, uploaded_document):
        _validate(client, uploaded_document, "v1", "alice")
        _validate(client, uploaded_document, "v2", "bob", total="12.50", lines=["rent"])

        response = client.post("/get-xml", json={"document_id": uploaded_document})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/xml")
        assert b'<field name="total">12.50</field>' in response.content
        assert b'validator="bob"' in response.content

    def test_xml_export_without_validation(self, client, uploaded_document):
        response = client.post("/get-xml", json={"document_id": uploaded_document, "validation": "v2"})
        assert response.status_code == 404

    def test_csv_export(self, client, uploaded_document):
        _validate(client, uploaded_document, "v1", "alice", total="12.50", iban="DE00")

        response = client.get("/generateFile", params={"state": "v2", "format": "csv"})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")

        header, *rows = response.text.strip().splitlines()
        assert header.startswith("document_id,filename,state,validation,validator,updated_at")
        assert "iban" in header and "total" in header
        assert any(row.startswith(uploaded_document) for row in rows)

    def test_xlsx_export_is_default(self, client, uploaded_document):
        _validate(client, uploaded_document, "v1", "alice", total="12.50")

        response = client.get("/generateFile", params={"state": "v2"})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/vnd.openxmlformats")
        assert "validations.xlsx" in response.headers["content-disposition"]

        sheet = load_workbook(BytesIO(response.content)).active
        header, *rows = sheet.iter_rows(values_only=True)
        assert header[:6] == ("document_id", "filename", "state", "validation", "validator", "updated_at")
        assert "total" in header
        assert any(row[0] == uploaded_document for row in rows)


class TestViewer:
    """Tests for page previews and hit tests."""

    def _square(self, page=0):
        return {
            "page": page,
            "key": "total",
            "vertices": [{"x": 0.1, "y": 0.1}, {"x": 0.3, "y": 0.1}, {"x": 0.3, "y": 0.3}, {"x": 0.1, "y": 0.3}],
        }

    @pytest.mark.parametrize("rotation, size", [(0, (306, 396)), (90, (396, 306)), (-90, (396, 306))])
    def test_preview_png(self, client, uploaded_document, rotation, size):
        response = client.post(
            f"/document/{uploaded_document}/preview",
            json={"page": 2, "scale": 0.5, "rotation": rotation, "vertices_groups": [self._square(1)], "label": "total"},
        )
        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert Image.open(BytesIO(response.content)).size == size

    def test_preview_highlights_square(self, client, uploaded_document):
        response = client.post(
            f"/document/{uploaded_document}/preview",
            json={"page": 1, "scale": 0.5, "vertices_groups": [self._square()]},
        )
        image = Image.open(BytesIO(response.content)).convert("RGB")
        # Inside the square the white page is tinted blue; far outside it stays white.
        red, green, blue = image.getpixel((61, 79))
        assert blue > red and blue > green
        assert image.getpixel((250, 350)) == (255, 255, 255)

    def test_preview_page_out_of_range(self, client, uploaded_document):
        response = client.post(f"/document/{uploaded_document}/preview", json={"page": 4})
        assert response.status_code == 400

    def test_preview_needs_stored_pdf(self, client):
        inserted = client.post("/insert-documents", json=[{"filename": "remote.pdf"}]).json()[0]["id"]
        assert client.post(f"/document/{inserted}/preview", json={"page": 1}).status_code == 404
        assert client.post("/document/nonexistent/preview", json={"page": 1}).status_code == 404

    def test_preview_of_unreadable_pdf(self, client):
        document_id = _upload(client, b"not really a pdf", name="broken.pdf")
        response = client.post(f"/document/{document_id}/preview", json={"page": 1})
        assert response.status_code == 422
        assert response.json()["detail"] == "Cannot load pdf file!"

    @pytest.mark.parametrize("rotation, x, y", [(0, 0.2, 0.2), (90, 0.8, 0.2), (180, 0.8, 0.8), (270, 0.2, 0.8)])
    def test_hit_test_follows_rotation(self, client, uploaded_document, rotation, x, y):
        response = client.post(
            f"/document/{uploaded_document}/hit-test",
            json={"page": 1, "rotation": rotation, "x": x, "y": y, "vertices_groups": [self._square()]},
        )
        assert response.status_code == 200
        assert [group["key"] for group in response.json()["matches"]] == ["total"]

    def test_hit_test_miss_and_other_page(self, client, uploaded_document):
        body = {"page": 1, "x": 0.5, "y": 0.5, "vertices_groups": [self._square()]}
        assert client.post(f"/document/{uploaded_document}/hit-test", json=body).json()["matches"] == []

        body = {"page": 2, "x": 0.2, "y": 0.2, "vertices_groups": [self._square()]}
        assert client.post(f"/document/{uploaded_document}/hit-test", json=body).json()["matches"] == []


class TestCORS:
    """Tests for CORS configuration."""

    def test_cors_headers_present(self, client):
        response = client.options(
            "/healthz",
            headers={"Origin": "http://localhost:3000", "Access-Control-Request-Method": "GET"},
        )
        assert response.status_code == 200
