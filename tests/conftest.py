import asyncio
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from lumastudio.models import JobPage, UpstreamJob

Scripted = Union[UpstreamJob, Exception]


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class FakeLumaClient:
    """In-memory stand-in for LumaClient with scripted responses."""

    def __init__(self, *, has_credential: bool = True) -> None:
        self.has_credential = has_credential
        self.created_ids: List[str] = []
        self.create_error: Optional[Exception] = None
        self.statuses: Dict[str, List[Scripted]] = {}
        self.pages: List[Union[JobPage, Exception]] = []
        self.list_gate: Optional[asyncio.Event] = None
        self.on_create: Optional[Callable[[], None]] = None
        self.create_calls: List[Dict[str, Any]] = []
        self.get_calls: List[str] = []
        self.list_calls: List[tuple] = []

    async def create_job(self, prompt, aspect_ratio, resolution, duration, reference_image=None) -> UpstreamJob:
        self.create_calls.append(
            {
                "prompt": prompt,
                "aspect_ratio": aspect_ratio,
                "resolution": resolution,
                "duration": duration,
                "reference_image": reference_image,
            }
        )
        if self.on_create is not None:
            self.on_create()
        await asyncio.sleep(0)
        if self.create_error is not None:
            raise self.create_error
        job_id = self.created_ids.pop(0) if self.created_ids else f"gen-{len(self.create_calls)}"
        return UpstreamJob(id=job_id, status="pending", prompt=prompt)

    async def get_job(self, job_id: str) -> UpstreamJob:
        self.get_calls.append(job_id)
        script = self.statuses.get(job_id) or []
        if not script:
            return UpstreamJob(id=job_id, status="pending")
        item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def list_jobs(self, offset: int, limit: int) -> JobPage:
        self.list_calls.append((offset, limit))
        if self.list_gate is not None:
            await self.list_gate.wait()
        item = self.pages.pop(0) if self.pages else JobPage(jobs=[], has_more=False, offset=offset)
        if isinstance(item, Exception):
            raise item
        return item


def make_upstream_jobs(count: int, *, start: int = 0, status: str = "completed") -> List[UpstreamJob]:
    jobs = []
    for index in range(start, start + count):
        jobs.append(
            UpstreamJob(
                id=f"hist-{index:03d}",
                status=status,  # type: ignore[arg-type]
                prompt=f"historical {index}",
                video_url=f"https://cdn.example/{index}.mp4" if status == "completed" else None,
                failure_reason="moderation" if status == "failed" else None,
                created_at=f"2024-01-01T00:{59 - (index % 60):02d}:00Z",
            )
        )
    return jobs


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def fake_client() -> FakeLumaClient:
    return FakeLumaClient()


@pytest.fixture()
def upstream_jobs() -> Callable[..., List[UpstreamJob]]:
    return make_upstream_jobs
