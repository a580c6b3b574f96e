"""Site document store on Redis.

Each site is one Redis hash: one field per top-level document field, each
field JSON-encoded. This gives the two properties the engine relies on:

- Partial writes: a mutation HSETs only the fields it changed.
- Atomic read-modify-write: WATCH the hash, read it, compute, then
  MULTI/HSET/EXEC. A concurrent writer makes EXEC fail with WatchError and
  the whole read-validate-compute cycle is retried against fresh data.

Every committed write also publishes the full new document on the
site's Pub/Sub channel, queued in the same MULTI block as the write so
subscribers always receive versions in commit order.
"""

from collections.abc import AsyncIterator, Callable

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random,
)

from sitetrack.core.exceptions import NotFoundError, PersistenceFailureError
from sitetrack.domain.models import Site, SiteUpdate, decode_fields

logger = structlog.get_logger(__name__)

SiteMutation = Callable[[Site], SiteUpdate]


def _snapshot(site: Site) -> str:
    return site.model_dump_json(by_alias=True, exclude_none=True)


class SiteStore:
    """Keyed site documents with atomic partial updates and a live feed."""

    DEFAULT_MAX_ATTEMPTS = 5

    def __init__(
        self,
        redis: Redis,
        key_prefix: str = "sitetrack",
        max_attempts: int | None = None,
    ):
        self.redis = redis
        self.key_prefix = key_prefix
        self.max_attempts = max_attempts or self.DEFAULT_MAX_ATTEMPTS

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def _site_key(self, site_id: str) -> str:
        return f"{self.key_prefix}:site:{site_id}"

    def _supervisor_key(self, supervisor_id: str) -> str:
        return f"{self.key_prefix}:supervisor:{supervisor_id}:sites"

    def _client_key(self, client_id: str) -> str:
        return f"{self.key_prefix}:client:{client_id}:site"

    def channel(self, site_id: str) -> str:
        """Pub/Sub channel carrying full document snapshots for a site."""
        return f"{self.key_prefix}:site:{site_id}:events"

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, site_id: str) -> Site | None:
        """Fetch the current document for a site.

        Returns:
            Site or None if no document exists
        """
        raw = await self.redis.hgetall(self._site_key(site_id))
        if not raw:
            return None
        return Site.model_validate(decode_fields(raw))

    async def list_supervisor_sites(self, supervisor_id: str) -> list[Site]:
        """Return all sites assigned to a supervisor, most recently updated first."""
        site_ids = await self.redis.smembers(self._supervisor_key(supervisor_id))

        sites = []
        for site_id in site_ids:
            site = await self.get(site_id)
            if site is not None:
                sites.append(site)

        sites.sort(key=lambda s: s.updated_at or s.start_date, reverse=True)
        return sites

    async def find_client_site(self, client_id: str) -> Site | None:
        """Return the site of a client (a client has at most one active site)."""
        site_id = await self.redis.get(self._client_key(client_id))
        if site_id is None:
            return None
        return await self.get(site_id)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, site: Site) -> None:
        """Persist a new site document and index it by supervisor and client."""
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(self._site_key(site.id), mapping=site.to_document())
            pipe.sadd(self._supervisor_key(site.supervisor_id), site.id)
            pipe.set(self._client_key(site.client_id), site.id)
            pipe.publish(self.channel(site.id), _snapshot(site))
            await pipe.execute()

        logger.info("site_created", site_id=site.id, supervisor_id=site.supervisor_id)

    async def transact(self, site_id: str, mutate: SiteMutation) -> Site:
        """Apply one atomic read-modify-write to a site document.

        ``mutate`` receives the freshly read Site and returns the SiteUpdate
        to write. It may raise (NotFoundError, LockedDependencyError, ...) to
        abort; nothing is written in that case. It may be called more than
        once when a concurrent writer forces a retry, so it must be pure.

        The snapshot is published inside the same MULTI block as the write,
        so subscribers see versions in commit order.

        Args:
            site_id: Site identifier
            mutate: Pure function from current Site to partial update

        Returns:
            The Site as persisted after the write

        Raises:
            NotFoundError: Site does not exist
            PersistenceFailureError: Write conflicted on every attempt, or
                the store could not be reached
        """
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(WatchError),
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_random(min=0, max=0.05),
                reraise=True,
                before_sleep=lambda rs: logger.warning(
                    "site_write_conflict_retrying",
                    site_id=site_id,
                    attempt=rs.attempt_number,
                ),
            ):
                with attempt:
                    updated = await self._transact_once(site_id, mutate)
        except WatchError as exc:
            logger.error("site_write_abandoned", site_id=site_id, attempts=self.max_attempts)
            raise PersistenceFailureError(
                f"Site '{site_id}' kept changing concurrently; write abandoned after {self.max_attempts} attempts"
            ) from exc
        except RedisError as exc:
            logger.error("site_write_failed", site_id=site_id, error=str(exc), error_type=type(exc).__name__)
            raise PersistenceFailureError(f"Could not write site '{site_id}': {exc}") from exc

        return updated

    async def _transact_once(self, site_id: str, mutate: SiteMutation) -> Site:
        key = self._site_key(site_id)

        async with self.redis.pipeline(transaction=True) as pipe:
            await pipe.watch(key)

            raw = await pipe.hgetall(key)
            if not raw:
                raise NotFoundError("Site", site_id)

            current = decode_fields(raw)
            update = mutate(Site.model_validate(current))
            document = update.to_document()
            updated = Site.model_validate({**current, **decode_fields(document)})

            pipe.multi()
            pipe.hset(key, mapping=document)
            pipe.publish(self.channel(site_id), _snapshot(updated))
            await pipe.execute()

        return updated

    # ------------------------------------------------------------------
    # Live feed
    # ------------------------------------------------------------------

    async def feed(self, site_id: str, poll_timeout: float = 1.0) -> AsyncIterator[Site | None]:
        """Yield the current document, then every new version as it is written.

        Yields None after each ``poll_timeout`` seconds without a change, so
        consumers can send keepalives or check for disconnects. The channel is
        subscribed before the initial read so no write can slip between the
        two. Stops when the consumer stops iterating.
        """
        pubsub = self.redis.pubsub()
        channel = self.channel(site_id)
        await pubsub.subscribe(channel)

        try:
            current = await self.get(site_id)
            if current is not None:
                yield current

            while True:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=poll_timeout)
                if message and message["type"] == "message":
                    yield Site.model_validate_json(message["data"])
                else:
                    yield None
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()

    async def subscribe(self, site_id: str, poll_timeout: float = 1.0) -> AsyncIterator[Site]:
        """Like feed(), without the idle ticks."""
        async for site in self.feed(site_id, poll_timeout=poll_timeout):
            if site is not None:
                yield site
