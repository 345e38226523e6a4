from typing import Any

from .gallery import GalleryReconciler
from .logging import LOGGER
from .models import GenerationJob

DEFAULT_PAGE_SIZE = 20


class GalleryPager:
    """Appends historical jobs to the gallery one page at a time.

    Failed historical jobs are hidden. Only one page request is in flight at
    any time; a trigger while one is running does nothing.
    """

    def __init__(self, client: Any, gallery: GalleryReconciler, *, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        self._client = client
        self._gallery = gallery
        self.page_size = max(1, int(page_size))
        self.in_flight = False

    @property
    def has_more(self) -> bool:
        return self._gallery.cursor.has_more

    async def load_more(self) -> int:
        """Fetch the next page if one is due. Returns the number of jobs appended."""
        if self.in_flight or not self.has_more:
            return 0
        self.in_flight = True
        epoch = self._gallery.epoch
        offset = self._gallery.cursor.offset or 0
        try:
            page = await self._client.list_jobs(offset, self.page_size)
        except Exception as exc:
            LOGGER.warning("gallery page fetch failed offset=%d error=%s", offset, exc)
            return 0
        finally:
            self.in_flight = False

        if self._gallery.epoch != epoch:
            LOGGER.info("discarding gallery page offset=%d fetched before reset", offset)
            return 0

        fetched = max(page.fetched, len(page.jobs))
        cursor = self._gallery.cursor
        cursor.offset = offset + fetched
        cursor.has_more = bool(page.has_more) and fetched >= self.page_size

        appended = 0
        for upstream in page.jobs:
            if upstream.status == "failed":
                continue
            if self._gallery.contains(upstream.id):
                continue
            self._gallery.upsert(GenerationJob.from_upstream(upstream), append=True)
            appended += 1
        LOGGER.info(
            "gallery page offset=%d fetched=%d appended=%d has_more=%s",
            offset,
            fetched,
            appended,
            cursor.has_more,
        )
        return appended
