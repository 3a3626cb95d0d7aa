# redirect-service/resolver.py
import asyncio
import logging
from typing import Optional, Tuple

from pydantic import ValidationError

from cache import NULL_MARKER, LinkCache
from errors import (
    InvalidRecordError,
    NotFoundError,
    StoreError,
    StoreUnavailableError,
)
from models import RedirectTarget, ShortLink
from store import DirectusStore

CLICKS_FIELD = "clicks"


class Resolver:
    """
    Resolves a slug to its target URL and counts the click.

    The resolver keeps no state between requests. It never navigates itself;
    the caller redirects to the returned target.
    """

    def __init__(
        self,
        store: DirectusStore,
        cache: Optional[LinkCache] = None,
        timeout: float = 5.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.cache = cache
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

    async def resolve(self, slug: str) -> RedirectTarget:
        """
        Look up ``slug`` (exact, case-sensitive), increment its click counter
        and return where to redirect.

        Raises NotFoundError when no record carries the slug and
        StoreUnavailableError when the lookup fails. A failed increment is
        logged and reported through ``click_recorded``; the redirect still
        happens.
        """
        if not slug:
            raise NotFoundError(slug)

        link, duplicates = await self._bounded(
            self._lookup(slug), f"lookup of slug {slug!r}"
        )

        click_recorded = True
        try:
            await self._bounded(
                self.store.increment(link.id, CLICKS_FIELD, 1),
                f"click increment of record {link.id!r}",
            )
        except StoreError as e:
            click_recorded = False
            self.logger.error("Click for slug %r not recorded: %s", slug, e)
        except Exception:
            click_recorded = False
            self.logger.exception("Click for slug %r not recorded", slug)

        return RedirectTarget(
            url=link.target_url,
            link=link,
            click_recorded=click_recorded,
            duplicates=duplicates,
        )

    async def _lookup(self, slug: str) -> Tuple[ShortLink, int]:
        if self.cache is not None:
            cached = await self.cache.get(slug)
            if cached == NULL_MARKER:
                raise NotFoundError(slug)
            if isinstance(cached, ShortLink):
                return cached, 0

        records = await self.store.query({"slug": {"_eq": slug}})
        # The store's collation may be case-insensitive.
        matches = [record for record in records if record.get("slug") == slug]

        if not matches:
            if self.cache is not None:
                await self.cache.set_missing(slug)
            raise NotFoundError(slug)

        if len(matches) > 1:
            self.logger.warning(
                "Data integrity anomaly: slug %r matched %d records, using the oldest one",
                slug,
                len(matches),
            )

        try:
            link = ShortLink.model_validate(matches[0])
        except ValidationError as e:
            raise InvalidRecordError(
                f"Record for slug {slug!r} failed validation: {e}"
            ) from e

        if self.cache is not None:
            await self.cache.set_link(link)
        return link, len(matches) - 1

    async def _bounded(self, coro, what: str):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise StoreUnavailableError(
                f"{what} timed out after {self.timeout}s"
            ) from e
