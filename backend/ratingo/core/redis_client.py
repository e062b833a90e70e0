from redis import asyncio as aioredis
from redis.asyncio.connection import ConnectionPool as AsyncConnectionPool
from ratingo.core.config import settings
import asyncio
import json
import logging
import threading
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# Per-event-loop async Redis clients to avoid cross-loop issues (each Celery task runs its own loop)
_redis_async_by_loop: Dict[str, aioredis.Redis] = {}


def _current_loop_key() -> str:
	"""Stable key for the current async context: running loop identity, else thread id."""
	try:
		loop = asyncio.get_running_loop()
		return f"loop-{id(loop)}"
	except RuntimeError:
		return f"thread-{threading.get_ident()}"


def get_redis() -> aioredis.Redis:
	"""Get an async Redis client bound to the current event loop."""
	key = _current_loop_key()
	client = _redis_async_by_loop.get(key)
	if client is not None:
		return client

	pool = AsyncConnectionPool.from_url(
		settings.redis_url,
		decode_responses=True,
		max_connections=50,
		socket_connect_timeout=5,
		socket_timeout=5,
		retry_on_timeout=True,
	)
	client = aioredis.Redis(connection_pool=pool)
	_redis_async_by_loop[key] = client
	return client


class ResponseCache:
	"""JSON response cache for upstream GET requests.

	Redis failures are logged and treated as cache misses so a cache outage
	never fails a provider call.
	"""

	def __init__(self, redis: Optional[aioredis.Redis] = None, prefix: str = "ratingo:http"):
		self._redis = redis
		self.prefix = prefix

	def _r(self) -> aioredis.Redis:
		return self._redis if self._redis is not None else get_redis()

	def key(self, service: str, endpoint: str, params: Optional[dict] = None) -> str:
		return f"{self.prefix}:{service}:{endpoint}:{json.dumps(params, sort_keys=True) if params else ''}"

	async def get(self, key: str) -> Optional[Any]:
		try:
			cached = await self._r().get(key)
		except Exception as e:
			logger.warning(f"Response cache read failed for {key}: {e}")
			return None
		if isinstance(cached, bytes):
			cached = cached.decode("utf-8")
		if not cached or not cached.strip():
			return None
		try:
			return json.loads(cached)
		except json.JSONDecodeError as e:
			logger.warning(f"Failed to parse cached response {key}: {e}, fetching fresh")
			return None

	async def set(self, key: str, value: Any, ttl: int) -> None:
		try:
			await self._r().set(key, json.dumps(value), ex=ttl)
		except Exception as e:
			logger.warning(f"Response cache write failed for {key}: {e}")
