import asyncio

import pytest

from lumastudio.errors import UpstreamError
from lumastudio.gallery import GalleryReconciler
from lumastudio.models import GenerationJob, JobPage
from lumastudio.pager import GalleryPager

pytestmark = pytest.mark.unit


def test_short_page_ends_paging(fake_client, upstream_jobs) -> None:
    gallery = GalleryReconciler()
    fake_client.pages = [
        JobPage(jobs=upstream_jobs(20), has_more=True, offset=0),
        JobPage(jobs=upstream_jobs(5, start=20), has_more=True, offset=20),
    ]
    pager = GalleryPager(fake_client, gallery, page_size=20)

    async def scenario() -> list:
        return [await pager.load_more(), await pager.load_more(), await pager.load_more()]

    appended = asyncio.run(scenario())
    assert appended == [20, 5, 0]
    assert fake_client.list_calls == [(0, 20), (20, 20)]
    assert pager.has_more is False
    assert gallery.cursor.offset == 25
    assert len(gallery) == 25


def test_upstream_has_more_false_ends_paging(fake_client, upstream_jobs) -> None:
    gallery = GalleryReconciler()
    fake_client.pages = [JobPage(jobs=upstream_jobs(20), has_more=False)]
    pager = GalleryPager(fake_client, gallery, page_size=20)
    asyncio.run(pager.load_more())
    assert pager.has_more is False


def test_failed_history_is_hidden_and_live_jobs_stay_on_top(fake_client, upstream_jobs) -> None:
    gallery = GalleryReconciler()
    gallery.upsert(GenerationJob.pending("live").bind_remote("live-1"))
    gallery.upsert(GenerationJob.pending("live failure").failed("Insufficient credits"))
    page_jobs = upstream_jobs(3) + upstream_jobs(2, start=3, status="failed")
    fake_client.pages = [JobPage(jobs=page_jobs, has_more=False)]
    pager = GalleryPager(fake_client, gallery, page_size=20)

    appended = asyncio.run(pager.load_more())
    assert appended == 3
    prompts = [job.prompt for job in gallery.jobs()]
    assert prompts == ["live failure", "live", "historical 0", "historical 1", "historical 2"]
    assert all(job.status != "failed" for job in gallery.jobs()[2:])


def test_paging_skips_jobs_already_present(fake_client, upstream_jobs) -> None:
    gallery = GalleryReconciler()
    live = GenerationJob.pending("mine").bind_remote("hist-001")
    gallery.upsert(live)
    fake_client.pages = [JobPage(jobs=upstream_jobs(3), has_more=False)]
    pager = GalleryPager(fake_client, gallery, page_size=20)

    appended = asyncio.run(pager.load_more())
    assert appended == 2
    assert len(gallery) == 3
    assert gallery.get("hist-001") is live


def test_trigger_during_fetch_is_suppressed(fake_client, upstream_jobs) -> None:
    gallery = GalleryReconciler()
    fake_client.pages = [JobPage(jobs=upstream_jobs(20), has_more=True)]
    pager = GalleryPager(fake_client, gallery, page_size=20)

    async def scenario() -> tuple:
        fake_client.list_gate = asyncio.Event()
        first = asyncio.ensure_future(pager.load_more())
        await asyncio.sleep(0)
        assert pager.in_flight is True
        second = await pager.load_more()
        fake_client.list_gate.set()
        return await first, second

    first, second = asyncio.run(scenario())
    assert first == 20
    assert second == 0
    assert len(fake_client.list_calls) == 1
    assert pager.in_flight is False


def test_page_errors_are_swallowed(fake_client) -> None:
    gallery = GalleryReconciler()
    fake_client.pages = [UpstreamError("Service unavailable", status_code=503)]
    pager = GalleryPager(fake_client, gallery, page_size=20)

    appended = asyncio.run(pager.load_more())
    assert appended == 0
    assert len(gallery) == 0
    assert pager.has_more is True
    assert pager.in_flight is False
    assert gallery.cursor.offset is None


def test_page_fetched_before_reset_is_discarded(fake_client, upstream_jobs) -> None:
    gallery = GalleryReconciler()
    fake_client.pages = [JobPage(jobs=upstream_jobs(20), has_more=True)]
    pager = GalleryPager(fake_client, gallery, page_size=20)

    async def scenario() -> int:
        fake_client.list_gate = asyncio.Event()
        pending = asyncio.ensure_future(pager.load_more())
        await asyncio.sleep(0)
        gallery.reset()
        fake_client.list_gate.set()
        return await pending

    assert asyncio.run(scenario()) == 0
    assert len(gallery) == 0
    assert gallery.cursor.offset is None
