"""
Document Review Backend - REST API for PDF/XML document review

This package provides a FastAPI-based web service for uploading documents
and tracking them through a multi-stage review workflow. It enables:

- PDF/XML uploads with type filtering
- Reviewer locks and next-document queues
- First (v1) and second (v2) validation, return and rejection
- XML and CSV exports of validated data
- Page previews with highlighted regions, and region hit tests

The ``viewer`` subpackage holds the headless PDF viewer core used for the
previews: rotation-aware coordinate mapping, point-in-polygon tests, overlay
drawing and the viewer state machine.

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - document_manager: Document lifecycle and workflow transitions
    - database: SQLite persistence for documents and validations
    - models: Pydantic models for request/response validation
    - configuration: Config loading (OmegaConf) and environment overrides
    - exports: XML and CSV exports
    - utils: Filesystem and upload helpers
    - viewer: PDF viewer core

Usage:
    Run the API server with:
        uvicorn docreview_backend.main:app --reload --host 0.0.0.0 --port 8000
"""
