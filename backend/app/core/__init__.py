"""Core module for configuration and utilities."""

from app.core.celery_app import celery_app
from app.core.config import settings
from app.core.document_store import DocumentStore, get_document_store

__all__ = [
    "celery_app",
    "settings",
    "DocumentStore",
    "get_document_store",
]
