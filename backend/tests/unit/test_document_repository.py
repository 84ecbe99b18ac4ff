"""
Unit Tests — DocumentRepository SQL
════════════════════════════════════
Coverage targets:
  ✅ find_stale_processing: PROCESSING rows and extracted-but-unqueued rows
     (COMPLETED / PENDING), older than the cutoff, oldest first, limited
  ✅ update: enum values stored as plain strings, updated_at bumped,
     unknown columns rejected, missing row → DocumentNotFoundError
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import pytest

from lexsearch.core.errors import DocumentNotFoundError
from lexsearch.repositories.documents import DocumentRepository
from lexsearch.schemas.documents import EmbeddingStatus, ProcessingStatus
from tests.conftest import bound_params, compile_pg

CUTOFF = datetime(2026, 1, 1, tzinfo=timezone.utc)


@pytest.mark.unit
class TestFindStale:

    async def test_where_clause(self, session_factory, recording_session):
        repo = DocumentRepository(session_factory)

        await repo.find_stale_processing(CUTOFF, limit=25)

        [(stmt, _)] = recording_session.statements
        sql = compile_pg(stmt)
        where = sql.split("WHERE", 1)[1].split("ORDER BY", 1)[0]
        params = list(bound_params(stmt).values())

        assert "documents.processing_status = " in where
        assert "documents.embedding_status = " in where
        assert " OR " in where
        assert " AND " in where
        assert "documents.updated_at < " in where
        assert params.count("PROCESSING") == 2
        assert "COMPLETED" in params
        assert "PENDING" in params
        assert CUTOFF in params
        assert "ORDER BY documents.updated_at" in sql
        assert 25 in params


@pytest.mark.unit
class TestUpdate:

    async def test_enum_values_and_timestamp(self, session_factory, recording_session):
        recording_session.rowcount = 1
        repo = DocumentRepository(session_factory)

        await repo.update(
            uuid.uuid4(),
            processing_status=ProcessingStatus.COMPLETED,
            embedding_status=EmbeddingStatus.PENDING,
        )

        [(stmt, _)] = recording_session.statements
        sql = compile_pg(stmt)
        params = bound_params(stmt)
        assert sql.startswith("UPDATE documents SET")
        assert "updated_at=now()" in sql.replace(" ", "")
        assert "COMPLETED" in params.values()
        assert "PENDING" in params.values()

    async def test_unknown_field_rejected(self, session_factory, recording_session):
        repo = DocumentRepository(session_factory)

        with pytest.raises(ValueError, match="title"):
            await repo.update(uuid.uuid4(), title="otro")

        assert recording_session.statements == []

    async def test_missing_row(self, session_factory, recording_session):
        recording_session.rowcount = 0
        repo = DocumentRepository(session_factory)

        with pytest.raises(DocumentNotFoundError):
            await repo.update(uuid.uuid4(), embedding_error=None)
