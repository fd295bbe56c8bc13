"""Shared store (Redis) connection management.

Exposes a process-wide ``store`` whose ``get()`` never blocks: it returns the live
client, or ``None`` while a connection is being (re)established. ``connect()``
retries ``max_retries`` times with a fixed delay, then cools down and starts over,
forever. Once connected, a supervisor task pings the server and runs the same loop
when the connection drops, so callers never implement reconnect logic themselves.

Tests swap the underlying client for fakeredis through ``set_redis_client``.
"""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Callable, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from beatguard.obs import metrics
from beatguard.settings import settings

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], redis.Redis]


class SharedStoreClient:
	"""Self-healing holder of the process-wide Redis connection."""

	def __init__(
		self,
		url: str,
		*,
		max_retries: int = 5,
		retry_delay: float = 2.0,
		cooldown: float = 10.0,
		health_check_interval: float = 5.0,
		ping_timeout: float = 1.0,
		factory: Optional[ClientFactory] = None,
	) -> None:
		self.url = url
		self.max_retries = max(1, int(max_retries))
		self.retry_delay = retry_delay
		self.cooldown = cooldown
		self.health_check_interval = health_check_interval
		self.ping_timeout = ping_timeout
		self._factory: ClientFactory = factory or (lambda: redis.from_url(url, decode_responses=True))
		self._client: Optional[redis.Redis] = None
		self._connect_lock = asyncio.Lock()
		self._supervisor: Optional[asyncio.Task] = None
		self._closing = False

	@property
	def ready(self) -> bool:
		return self._client is not None

	def get(self) -> Optional[redis.Redis]:
		"""Return the live client, or None when not (yet) connected."""
		return self._client

	def set_client(self, client: Optional[redis.Redis]) -> None:
		self._client = client

	async def connect(self) -> redis.Redis:
		"""Connect, retrying indefinitely, and start the connection supervisor."""
		async with self._connect_lock:
			if self._client is None:
				self._closing = False
				self._client = await self._connect_with_retry()
			self._start_supervisor()
			return self._client

	async def disconnect(self) -> None:
		self._closing = True
		supervisor, self._supervisor = self._supervisor, None
		if supervisor is not None:
			supervisor.cancel()
			try:
				await supervisor
			except asyncio.CancelledError:
				pass
		client, self._client = self._client, None
		if client is not None:
			logger.warning("Disconnecting shared store")
			await self._safe_close(client)
		metrics.mark_redis(False)
		logger.info("Shared store disconnected")

	async def ping(self, timeout: float = 0.2) -> bool:
		client = self._client
		if client is None:
			metrics.mark_redis(False)
			return False
		start = perf_counter()
		try:
			await asyncio.wait_for(client.ping(), timeout=timeout)
		except (RedisError, OSError, asyncio.TimeoutError):
			metrics.mark_redis(False)
			logger.warning("Shared store ping failed", exc_info=True)
			return False
		metrics.mark_redis(True, latency_seconds=perf_counter() - start)
		return True

	async def _connect_with_retry(self) -> redis.Redis:
		while True:
			for attempt in range(1, self.max_retries + 1):
				logger.warning(
					"Shared store connection attempt",
					extra={"attempt": attempt, "max_retries": self.max_retries},
				)
				client = self._factory()
				try:
					await asyncio.wait_for(client.ping(), timeout=self.ping_timeout)
				except (RedisError, OSError, asyncio.TimeoutError) as exc:
					metrics.REDIS_RECONNECT_ATTEMPTS.labels(result="error").inc()
					logger.error(
						"Shared store connection failed",
						extra={"attempt": attempt, "error": str(exc) or exc.__class__.__name__},
					)
					await self._safe_close(client)
					if attempt < self.max_retries:
						await asyncio.sleep(self.retry_delay)
					continue
				metrics.REDIS_RECONNECT_ATTEMPTS.labels(result="ok").inc()
				metrics.mark_redis(True)
				logger.info("Shared store connected", extra={"attempt": attempt})
				return client
			logger.error(
				"Shared store max retries reached, cooling down",
				extra={"cooldown_seconds": self.cooldown},
			)
			await asyncio.sleep(self.cooldown)

	def _start_supervisor(self) -> None:
		if self._supervisor is None or self._supervisor.done():
			self._supervisor = asyncio.create_task(self._supervise(), name="shared-store-supervisor")

	async def _supervise(self) -> None:
		while not self._closing:
			await asyncio.sleep(self.health_check_interval)
			client = self._client
			if client is None:
				continue
			try:
				await asyncio.wait_for(client.ping(), timeout=self.ping_timeout)
				continue
			except (RedisError, OSError, asyncio.TimeoutError):
				logger.warning("Shared store connection lost, reconnecting", exc_info=True)
			metrics.mark_redis(False)
			async with self._connect_lock:
				if self._client is client:
					self._client = None
					await self._safe_close(client)
					self._client = await self._connect_with_retry()

	@staticmethod
	async def _safe_close(client: redis.Redis) -> None:
		try:
			await client.aclose()
		except (RedisError, OSError):
			logger.debug("Ignoring error while closing shared store client", exc_info=True)


store = SharedStoreClient(
	settings.redis_url,
	max_retries=settings.redis_connection_max_retries,
	retry_delay=settings.redis_connection_retry_delay,
	cooldown=settings.redis_cooldown,
	health_check_interval=settings.redis_health_check_interval,
	ping_timeout=settings.redis_ping_timeout,
)


def get_redis() -> Optional[redis.Redis]:
	return store.get()


def set_redis_client(client: Optional[redis.Redis]) -> None:
	store.set_client(client)
