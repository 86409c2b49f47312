"""
Per-user metadata cache.

Each user id gets its own UserCache. A full load fetches the object list,
then describes the objects in sequential batches of ``batch_size`` with the
describes of one batch running concurrently, so at most ``batch_size``
requests are in flight. Objects that fail to fetch or extract are logged and
left out; the load itself still succeeds. The new maps replace the old ones
only once every batch has finished, so a failed load leaves the previous
contents in place.

Reads block on a reload when the cache is older than ``ttl_seconds``. After
every successful load a refresh task is also scheduled for that user, due
when the data expires.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from field_impact.errors import AlreadyLoadingError
from field_impact.events import EventLog
from field_impact.extractor import extract_relationships, summarize_relationships
from field_impact.gateway import GatewayFactory, TokenProvider
from field_impact.models import RelationshipRecord, UserCache
from field_impact.settings import DEFAULT_BATCH_SIZE, DEFAULT_CACHE_TTL_SECONDS

log = logging.getLogger(__name__)

COMPONENT = "metadata-service"


def _chunk(items: List[str], size: int) -> List[List[str]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class MetadataCacheManager:
    def __init__(
        self,
        token_provider: TokenProvider,
        gateway_factory: GatewayFactory,
        ttl_seconds: Optional[float] = None,
        batch_size: Optional[int] = None,
        events: Optional[EventLog] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.token_provider = token_provider
        self.gateway_factory = gateway_factory
        self.ttl_seconds = DEFAULT_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.batch_size = DEFAULT_BATCH_SIZE if batch_size is None else batch_size
        if self.ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.events = events or EventLog()
        self.clock = clock
        self._user_caches: Dict[str, UserCache] = {}

    def _get_user_cache(self, user_id: str) -> UserCache:
        user_cache = self._user_caches.get(user_id)
        if user_cache is None:
            user_cache = UserCache()
            self._user_caches[user_id] = user_cache
        return user_cache

    # =========================================
    # LOADING
    # =========================================

    async def initialize(self, user_id: str) -> None:
        """
        Reload every object schema for ``user_id``.

        Raises AlreadyLoadingError if a reload started by this method is still
        running for the same user. The rejected caller is not queued.
        """
        user_cache = self._get_user_cache(user_id)
        if user_cache.is_loading:
            raise AlreadyLoadingError(user_id)

        user_cache.is_loading = True
        try:
            await self._reload(user_id)
        except Exception as exc:
            self.events.error(f"Failed to initialize metadata for user {user_id}", exc, component=COMPONENT)
            raise
        finally:
            user_cache.is_loading = False

    async def _reload(self, user_id: str) -> None:
        metadata, relationships = await self._load_all_metadata(user_id)

        user_cache = self._get_user_cache(user_id)
        user_cache.metadata_by_object = metadata
        user_cache.relationships = relationships
        user_cache.last_load_time = self.clock()
        self._schedule_auto_refresh(user_id)

        self.events.log(
            f"Metadata initialized for user {user_id}",
            component=COMPONENT,
            user=user_id,
            objects=len(metadata),
        )

    async def _load_all_metadata(
        self, user_id: str
    ) -> Tuple[Dict[str, Dict[str, Any]], Dict[str, RelationshipRecord]]:
        access_token = await self.token_provider.get_valid_access_token(user_id)
        gateway = self.gateway_factory(user_id, access_token)

        self.events.log("Fetching object list", component=COMPONENT, user=user_id)
        objects = await gateway.fetch_object_list()
        total = len(objects)
        self.events.log(f"Found {total} objects to process", component=COMPONENT, user=user_id)

        metadata: Dict[str, Dict[str, Any]] = {}
        relationships: Dict[str, RelationshipRecord] = {}
        processed = 0

        async def _load_object(object_name: str) -> bool:
            nonlocal processed
            try:
                raw_schema = await gateway.fetch_object_schema(object_name)
            except Exception as exc:  # noqa: BLE001
                self.events.error(
                    f"Failed to load metadata for {object_name}", exc, component=COMPONENT, object=object_name
                )
                return False

            record = extract_relationships(object_name, raw_schema)
            if record is None:
                self.events.error(
                    f"Failed to extract relationships for {object_name}", component=COMPONENT, object=object_name
                )
                return False

            metadata[object_name] = raw_schema
            relationships[object_name] = record
            processed += 1
            self.events.metadata_progress(
                object_name,
                processed,
                total,
                fields=len(record.fields),
                relationships=summarize_relationships(record),
            )
            self.events.relationships(object_name, record)
            return True

        for batch in _chunk(objects, self.batch_size):
            results = await asyncio.gather(*[_load_object(name) for name in batch])
            failed = [name for name, ok in zip(batch, results) if not ok]
            if failed:
                self.events.error(
                    f"Failed to load metadata for {len(failed)} objects in batch",
                    component=COMPONENT,
                    failedObjects=failed,
                )

        self.events.log(
            f"Completed metadata load for {total} objects",
            component=COMPONENT,
            summary={
                "totalObjects": total,
                "cachedObjects": len(metadata),
                "relationshipsMapped": len(relationships),
            },
        )
        return metadata, relationships

    # =========================================
    # FRESHNESS + AUTO-REFRESH
    # =========================================

    def _is_stale(self, user_cache: UserCache) -> bool:
        if user_cache.last_load_time is None:
            return True
        return self.clock() - user_cache.last_load_time >= self.ttl_seconds

    async def _ensure_valid_cache(self, user_id: str) -> None:
        user_cache = self._get_user_cache(user_id)
        if not self._is_stale(user_cache):
            return

        if user_cache.last_load_time is None:
            self.events.log(f"Initializing metadata for user {user_id}", component=COMPONENT)
        else:
            self.events.log(f"Refreshing expired metadata for user {user_id}", component=COMPONENT)

        # Not guarded by is_loading: concurrent stale reads may each reload.
        try:
            await self._reload(user_id)
        except Exception as exc:
            self.events.error(f"Failed to refresh metadata for user {user_id}", exc, component=COMPONENT)
            raise

    def _schedule_auto_refresh(self, user_id: str) -> None:
        user_cache = self._get_user_cache(user_id)
        elapsed = self.clock() - (user_cache.last_load_time or 0.0)
        delay = max(0.0, self.ttl_seconds - elapsed)

        # Only a timer that is still sleeping is cancelled; a fired one is mid-reload.
        previous = user_cache.refresh_task
        if (
            previous is not None
            and previous is not asyncio.current_task()
            and not previous.done()
            and not user_cache.refresh_fired
        ):
            previous.cancel()

        user_cache.refresh_fired = False
        user_cache.refresh_task = asyncio.get_running_loop().create_task(self._auto_refresh(user_id, delay))
        log.debug("[metadata] refresh scheduled user=%s in=%.1fs", user_id, delay)

    async def _auto_refresh(self, user_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        user_cache = self._get_user_cache(user_id)
        if user_cache.refresh_task is asyncio.current_task():
            user_cache.refresh_fired = True
        self.events.log(f"Auto-refreshing metadata for user {user_id}", component=COMPONENT)
        try:
            await self.initialize(user_id)
        except Exception as exc:  # noqa: BLE001
            self.events.error(f"Auto-refresh failed for user {user_id}", exc, component=COMPONENT)

    async def close(self) -> None:
        """Cancel every pending refresh task."""
        current = asyncio.current_task()
        pending = []
        for user_cache in self._user_caches.values():
            task = user_cache.refresh_task
            user_cache.refresh_task = None
            if task is None or task is current or task.done():
                continue
            task.cancel()
            pending.append(task)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # =========================================
    # READ ACCESSORS
    # =========================================

    async def get_object_metadata(self, user_id: str, object_name: str) -> Optional[Dict[str, Any]]:
        await self._ensure_valid_cache(user_id)
        return self._get_user_cache(user_id).metadata_by_object.get(object_name)

    async def get_object_relationships(self, user_id: str, object_name: str) -> Optional[RelationshipRecord]:
        await self._ensure_valid_cache(user_id)
        return self._get_user_cache(user_id).relationships.get(object_name)

    async def get_all_objects(self, user_id: str) -> List[str]:
        await self._ensure_valid_cache(user_id)
        return list(self._get_user_cache(user_id).metadata_by_object.keys())

    async def get_field_metadata(
        self, user_id: str, object_name: str, field_name: str
    ) -> Optional[Dict[str, Any]]:
        await self._ensure_valid_cache(user_id)
        object_metadata = self._get_user_cache(user_id).metadata_by_object.get(object_name)
        if not object_metadata:
            return None
        for entry in object_metadata.get("fields") or []:
            if isinstance(entry, dict) and entry.get("name") == field_name:
                return entry
        return None

    def is_loaded(self, user_id: str) -> bool:
        user_cache = self._user_caches.get(user_id)
        return user_cache is not None and user_cache.last_load_time is not None

    def cache_age(self, user_id: str) -> Optional[float]:
        user_cache = self._user_caches.get(user_id)
        if user_cache is None or user_cache.last_load_time is None:
            return None
        return self.clock() - user_cache.last_load_time
