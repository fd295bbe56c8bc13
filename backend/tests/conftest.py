import sys
from pathlib import Path
from typing import List

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from beatguard.api import ops
from beatguard.infra import postgres
from beatguard.infra.redis import get_redis, set_redis_client
from beatguard.moderation.domain.classifier import Verdict
from beatguard.moderation.domain.content import InMemoryContentStore
from beatguard.moderation.domain.pipeline import ModerationPipeline
from beatguard.moderation.domain.reports import InMemoryReportRepository
from beatguard.moderation.exceptions import SuspensionError
from beatguard.settings import settings


class StubClassifier:
	"""Returns queued verdicts (or a default) and records every text it sees."""

	def __init__(self, default: Verdict | None = None) -> None:
		self.default = default or Verdict(label="safe", confidence=0.9)
		self.queue: List[Verdict] = []
		self.calls: List[str] = []

	async def classify(self, text: str) -> Verdict:
		self.calls.append(text)
		if self.queue:
			return self.queue.pop(0)
		return self.default


class RecordingSuspender:
	def __init__(self, *, fail: bool = False) -> None:
		self.fail = fail
		self.calls: List[str] = []

	async def suspend(self, author_id: str) -> None:
		self.calls.append(author_id)
		if self.fail:
			raise SuspensionError("auth_service_status_500")


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	original = get_redis()
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture
def reports():
	return InMemoryReportRepository()


@pytest.fixture
def content():
	return InMemoryContentStore()


@pytest.fixture
def classifier():
	return StubClassifier()


@pytest.fixture
def suspender():
	return RecordingSuspender()


@pytest.fixture
def pipeline(reports, content, classifier, suspender):
	return ModerationPipeline(
		store=get_redis,
		reports=reports,
		content=content,
		classifier=classifier,
		suspender=suspender,
	)


@pytest.fixture
def admin_token():
	original = settings.obs_admin_token
	settings.obs_admin_token = "test-admin-token"
	try:
		yield settings.obs_admin_token
	finally:
		settings.obs_admin_token = original


@pytest_asyncio.fixture
async def api_client():
	app = FastAPI()
	app.include_router(ops.router)
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
