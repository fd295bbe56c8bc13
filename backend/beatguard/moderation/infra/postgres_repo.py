"""PostgreSQL-backed report repository and content store."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

import asyncpg

from beatguard.moderation.domain.content import ContentRecord, ContentStore
from beatguard.moderation.domain.reports import ModerationReport, ReportRepository, ReportState
from beatguard.moderation.exceptions import DuplicateReportError

_REPORT_COLUMNS = """
    id,
    reporter_id,
    author_id,
    comment_id,
    rating_id,
    playlist_id,
    state,
    created_at,
    updated_at
"""

_TARGET_COLUMNS = {"comment": "comment_id", "rating": "rating_id", "playlist": "playlist_id"}

# table, author column, text columns
_CONTENT_TABLES = {
    "comment": ("comments", "author_id", ("text",)),
    "rating": ("ratings", "author_id", ("comment",)),
    "playlist": ("playlists", "owner_id", ("name", "description")),
}


class PostgresReportRepository(ReportRepository):
    """Persists moderation reports using asyncpg."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def get(self, report_id: str) -> ModerationReport | None:
        query = f"SELECT {_REPORT_COLUMNS} FROM moderation_reports WHERE id = $1"
        record = await self.pool.fetchrow(query, report_id)
        return _report_from_record(record) if record else None

    async def create(self, report: ModerationReport) -> ModerationReport:
        query = f"""
        INSERT INTO moderation_reports (id, reporter_id, author_id, comment_id, rating_id, playlist_id, state, created_at)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
        RETURNING {_REPORT_COLUMNS}
        """
        try:
            record = await self.pool.fetchrow(
                query,
                report.report_id,
                report.reporter_id,
                report.author_id,
                report.comment_id,
                report.rating_id,
                report.playlist_id,
                report.state.value,
                report.created_at,
            )
        except asyncpg.UniqueViolationError as exc:  # type: ignore[attr-defined]
            raise DuplicateReportError() from exc
        assert record is not None
        return _report_from_record(record)

    async def transition(self, report_id: str, state: ReportState) -> bool:
        query = """
        UPDATE moderation_reports
        SET state = $2, updated_at = now()
        WHERE id = $1 AND state = 'Checking'
        RETURNING id
        """
        return await self.pool.fetchval(query, report_id, state.value) is not None

    async def count_accepted(self, author_id: str) -> int:
        query = "SELECT COUNT(*) FROM moderation_reports WHERE author_id = $1 AND state = 'Accepted'"
        return int(await self.pool.fetchval(query, author_id) or 0)

    async def list_stale(self, *, older_than: datetime, limit: int) -> Sequence[ModerationReport]:
        query = f"""
        SELECT {_REPORT_COLUMNS}
        FROM moderation_reports
        WHERE state = 'Checking' AND created_at < $1
        ORDER BY created_at ASC
        LIMIT $2
        """
        rows = await self.pool.fetch(query, older_than, limit)
        return [_report_from_record(row) for row in rows]

    async def count_checking(self, *, older_than: datetime | None = None) -> int:
        if older_than is None:
            value = await self.pool.fetchval("SELECT COUNT(*) FROM moderation_reports WHERE state = 'Checking'")
        else:
            value = await self.pool.fetchval(
                "SELECT COUNT(*) FROM moderation_reports WHERE state = 'Checking' AND created_at < $1",
                older_than,
            )
        return int(value or 0)

    async def find_open(self, content_type: str, content_id: str) -> ModerationReport | None:
        column = _TARGET_COLUMNS[content_type]
        query = f"""
        SELECT {_REPORT_COLUMNS}
        FROM moderation_reports
        WHERE {column} = $1 AND state = 'Checking'
        LIMIT 1
        """
        record = await self.pool.fetchrow(query, content_id)
        return _report_from_record(record) if record else None

    async def list_reports(self, *, author_id: str | None = None) -> Sequence[ModerationReport]:
        if author_id is None:
            rows = await self.pool.fetch(
                f"SELECT {_REPORT_COLUMNS} FROM moderation_reports ORDER BY created_at DESC"
            )
        else:
            rows = await self.pool.fetch(
                f"SELECT {_REPORT_COLUMNS} FROM moderation_reports WHERE author_id = $1 ORDER BY created_at DESC",
                author_id,
            )
        return [_report_from_record(row) for row in rows]


class PostgresContentStore(ContentStore):
    """Reads and deletes comments, ratings and playlists."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def find_by_id(self, content_type: str, content_id: str) -> ContentRecord | None:
        table, author_column, text_columns = _CONTENT_TABLES[content_type]
        columns = ", ".join(text_columns)
        query = f"SELECT id, {author_column} AS author_id, {columns} FROM {table} WHERE id = $1"
        record = await self.pool.fetchrow(query, content_id)
        if record is None:
            return None
        return ContentRecord(
            content_type=content_type,
            content_id=str(record["id"]),
            author_id=str(record["author_id"]),
            fields={column: record[column] for column in text_columns},
        )

    async def delete(self, content_type: str, content_id: str) -> bool:
        table, _, _ = _CONTENT_TABLES[content_type]
        deleted = await self.pool.fetchval(f"DELETE FROM {table} WHERE id = $1 RETURNING id", content_id)
        return deleted is not None


def _optional_str(value: object) -> Optional[str]:
    return str(value) if value is not None else None


def _report_from_record(record: asyncpg.Record) -> ModerationReport:
    return ModerationReport(
        report_id=str(record["id"]),
        reporter_id=str(record["reporter_id"]),
        author_id=str(record["author_id"]),
        comment_id=_optional_str(record["comment_id"]),
        rating_id=_optional_str(record["rating_id"]),
        playlist_id=_optional_str(record["playlist_id"]),
        state=ReportState(record["state"]),
        created_at=record["created_at"],
        updated_at=record["updated_at"],
    )


__all__ = ["PostgresContentStore", "PostgresReportRepository"]
