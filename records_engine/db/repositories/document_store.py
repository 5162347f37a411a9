"""Keyed JSON document store holding the aggregated records and control documents."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from records_engine.db.models import AggregateDocument

Document = dict[str, Any]


def deep_merge(existing: Mapping[str, Any], incoming: Mapping[str, Any]) -> Document:
    """Return ``existing`` updated with ``incoming`` using merge-write semantics.

    Nested mappings are merged key by key, every other value (scalars and
    lists alike) is replaced. Keys only present in ``existing`` survive.
    """
    merged: Document = dict(existing)
    for key, value in incoming.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


class DocumentStore(Protocol):
    async def get(self, collection: str, key: str) -> Document | None: ...

    async def get_many(self, collection: str, keys: Iterable[str]) -> dict[str, Document]: ...

    async def merge_batch(self, collection: str, documents: Mapping[str, Document]) -> None:
        """Merge-write every document atomically: all land or none do."""

    async def overwrite(self, collection: str, key: str, document: Document) -> None: ...

    async def list_keys(self, collection: str) -> list[str]: ...


class SqlDocumentStore:
    """:class:`DocumentStore` over the ``aggregate_documents`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, collection: str, key: str) -> Document | None:
        async with self._session_factory() as session:
            row = await session.get(AggregateDocument, (collection, key))
            return dict(row.data) if row is not None else None

    async def get_many(self, collection: str, keys: Iterable[str]) -> dict[str, Document]:
        wanted = list(dict.fromkeys(keys))
        if not wanted:
            return {}

        query = select(AggregateDocument).where(
            AggregateDocument.collection == collection,
            AggregateDocument.key.in_(wanted),
        )
        async with self._session_factory() as session:
            result = await session.execute(query)
            return {row.key: dict(row.data) for row in result.scalars()}

    async def merge_batch(self, collection: str, documents: Mapping[str, Document]) -> None:
        if not documents:
            return

        now = datetime.now(UTC).replace(tzinfo=None)
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(AggregateDocument).where(
                        AggregateDocument.collection == collection,
                        AggregateDocument.key.in_(list(documents)),
                    )
                )
                existing = {row.key: row for row in result.scalars()}

                for key, document in documents.items():
                    row = existing.get(key)
                    if row is None:
                        session.add(
                            AggregateDocument(
                                collection=collection,
                                key=key,
                                data=dict(document),
                                updated_at=now,
                            )
                        )
                    else:
                        # Reassign so the JSON column is flagged dirty.
                        row.data = deep_merge(row.data, document)
                        row.updated_at = now

    async def overwrite(self, collection: str, key: str, document: Document) -> None:
        now = datetime.now(UTC).replace(tzinfo=None)
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(AggregateDocument, (collection, key))
                if row is None:
                    session.add(
                        AggregateDocument(
                            collection=collection, key=key, data=dict(document), updated_at=now
                        )
                    )
                else:
                    row.data = dict(document)
                    row.updated_at = now

    async def list_keys(self, collection: str) -> list[str]:
        query = (
            select(AggregateDocument.key)
            .where(AggregateDocument.collection == collection)
            .order_by(AggregateDocument.key)
        )
        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars())


__all__ = ["Document", "DocumentStore", "SqlDocumentStore", "deep_merge"]
