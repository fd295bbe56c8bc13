"""Apply ordered SQL migrations from ``infra/migrations``."""

from __future__ import annotations

import logging
import pathlib
from typing import List

import asyncpg

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = pathlib.Path(__file__).resolve().parents[3] / "infra" / "migrations"


async def apply_migrations(conn: asyncpg.Connection, directory: pathlib.Path = MIGRATIONS_DIR) -> List[str]:
	"""Run every ``NNNN_name.sql`` not yet recorded in ``schema_migrations``.

	Each file runs in its own transaction together with its bookkeeping row.
	Returns the file names applied by this call.
	"""
	paths = sorted(directory.glob("*.sql"))
	if not paths:
		raise FileNotFoundError(f"no migration files found in {directory}")

	await conn.execute(
		"""
		CREATE TABLE IF NOT EXISTS schema_migrations (
			version TEXT PRIMARY KEY,
			applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
		)
		"""
	)
	applied = {row["version"] for row in await conn.fetch("SELECT version FROM schema_migrations")}

	ran: List[str] = []
	for path in paths:
		version = path.name.split("_", 1)[0]
		if version in applied:
			continue
		async with conn.transaction():
			await conn.execute(path.read_text())
			await conn.execute("INSERT INTO schema_migrations (version) VALUES ($1)", version)
		logger.info("Applied migration", extra={"migration": path.name})
		ran.append(path.name)
	return ran


__all__ = ["MIGRATIONS_DIR", "apply_migrations"]
