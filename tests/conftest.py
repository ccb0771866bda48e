"""
Pytest configuration and fixtures for Document Review Backend tests.
"""

import os
import shutil
import tempfile

import fitz
import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing the app
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="docreview_test_uploads_")
os.environ["DATABASE_PATH"] = os.path.join(tempfile.mkdtemp(prefix="docreview_test_db_"), "documents.db")

from docreview_backend.main import app  # noqa: E402
from docreview_backend.models import Vertex, VerticesGroup  # noqa: E402


def _make_pdf_bytes(pages: int = 3) -> bytes:
    document = fitz.open()
    for number in range(1, pages + 1):
        page = document.new_page(width=612, height=792)
        page.insert_text((72, 72), f"Invoice page {number}", fontsize=12)
    data = document.tobytes()
    document.close()
    return data


@pytest.fixture(scope="session", autouse=True)
def test_dirs():
    """Cleanup test directories after the session."""
    upload_dir = os.environ["UPLOAD_DIR"]
    db_dir = os.path.dirname(os.environ["DATABASE_PATH"])

    yield {
        "upload": upload_dir,
        "database": db_dir,
    }

    shutil.rmtree(upload_dir, ignore_errors=True)
    shutil.rmtree(db_dir, ignore_errors=True)


@pytest.fixture
def client():
    """Create a test client for the FastAPI app."""
    return TestClient(app)


@pytest.fixture
def make_pdf():
    """Factory building an in-memory PDF with the given number of text pages."""
    return _make_pdf_bytes


@pytest.fixture
def pdf_bytes():
    return _make_pdf_bytes(3)


@pytest.fixture
def uploaded_document(client, pdf_bytes):
    """Upload a 3-page PDF and return its document id."""
    response = client.post(
        "/upload",
        files=[("files", ("invoice.pdf", pdf_bytes, "application/pdf"))],
    )
    assert response.status_code == 201
    return response.json()[0]["id"]


@pytest.fixture
def square():
    """The highlight square (0.1, 0.1)-(0.3, 0.3) on the first page."""
    return VerticesGroup(
        page=0,
        key="total",
        vertices=[
            Vertex(x=0.1, y=0.1),
            Vertex(x=0.3, y=0.1),
            Vertex(x=0.3, y=0.3),
            Vertex(x=0.1, y=0.3),
        ],
    )
