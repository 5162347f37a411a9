"""Repository package for the upstream event source and the aggregate store."""

from records_engine.db.repositories.document_store import (
    Document,
    DocumentStore,
    SqlDocumentStore,
    deep_merge,
)
from records_engine.db.repositories.event_source import (
    EventCursor,
    EventSource,
    SqlEventSource,
)

__all__ = [
    "Document",
    "DocumentStore",
    "EventCursor",
    "EventSource",
    "SqlDocumentStore",
    "SqlEventSource",
    "deep_merge",
]
