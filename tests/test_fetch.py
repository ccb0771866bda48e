"""
Tests for document byte fetching.
"""

import asyncio

import pytest
import requests

from docreview_backend.viewer.fetch import fetch_document_bytes, get_document_bytes, read_local_bytes


class StubSession:
    """Answers every GET with a fixed status and body."""

    def __init__(self, status_code=200, content=b"%PDF-1.7"):
        self.status_code = status_code
        self.content = content
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append((url, timeout))
        response = requests.Response()
        response.status_code = self.status_code
        response.url = url
        response._content = self.content
        return response


class TestFetch:
    def test_http_download(self):
        session = StubSession()
        data = asyncio.run(fetch_document_bytes("https://example.test/invoice.pdf", session=session, timeout=5))

        assert data == b"%PDF-1.7"
        assert session.calls == [("https://example.test/invoice.pdf", 5)]

    def test_http_error_status_raises(self):
        with pytest.raises(requests.HTTPError):
            asyncio.run(fetch_document_bytes("https://example.test/missing.pdf", session=StubSession(404, b"")))

    def test_local_file(self, tmp_path):
        path = tmp_path / "invoice.pdf"
        path.write_bytes(b"%PDF-local")

        assert asyncio.run(read_local_bytes(str(path))) == b"%PDF-local"
        assert asyncio.run(read_local_bytes(f"file://{path}")) == b"%PDF-local"
        assert asyncio.run(get_document_bytes(str(path))) == b"%PDF-local"

    def test_missing_local_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            asyncio.run(read_local_bytes(str(tmp_path / "missing.pdf")))
