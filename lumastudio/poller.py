import time
from typing import Any, Callable, Dict, List, Literal, Optional

from .errors import GenerationTimeoutError, StudioError, UpstreamError
from .gallery import GalleryReconciler
from .logging import LOGGER
from .models import GenerationJob
from .scheduling import ScheduledTask, SleepFn, schedule_repeating

PollerState = Literal["polling", "completed", "failed", "timed_out"]

DEFAULT_POLL_INTERVAL_SEC = 5.0
DEFAULT_POLL_TIMEOUT_SEC = 300.0


def describe_timeout(timeout_sec: float) -> str:
    if timeout_sec >= 60 and timeout_sec % 60 == 0:
        minutes = int(timeout_sec // 60)
        return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"
    return f"{timeout_sec:g} seconds"


class CompletionPoller:
    """Checks one upstream job on a fixed interval until it reaches a terminal state.

    Every outcome is written to the gallery as a job update. Nothing raised while
    checking status escapes the poller: a failed check ends polling for this job
    with status=failed.
    """

    def __init__(
        self,
        job: GenerationJob,
        client: Any,
        gallery: GalleryReconciler,
        *,
        interval_sec: float = DEFAULT_POLL_INTERVAL_SEC,
        timeout_sec: float = DEFAULT_POLL_TIMEOUT_SEC,
        sleep: Optional[SleepFn] = None,
        clock: Optional[Callable[[], float]] = None,
        on_finish: Optional[Callable[["CompletionPoller"], None]] = None,
    ) -> None:
        if not job.remote_id:
            raise ValueError("Cannot poll a job that has no upstream id")
        self.job = job
        self.state: PollerState = "polling"
        self.tick_count = 0
        self.error: Optional[StudioError] = None
        self._client = client
        self._gallery = gallery
        self._interval_sec = float(interval_sec)
        self._timeout_sec = float(timeout_sec)
        self._sleep = sleep
        self._clock = clock or time.monotonic
        self._on_finish = on_finish
        self._started_at: Optional[float] = None
        self._handle: Optional[ScheduledTask] = None

    @property
    def key(self) -> str:
        return self.job.key

    @property
    def active(self) -> bool:
        return self.state == "polling" and self._handle is not None and not self._handle.done

    def start(self) -> ScheduledTask:
        if self._handle is not None:
            return self._handle
        self._started_at = self._clock()
        self._handle = schedule_repeating(
            self.tick,
            interval_sec=self._interval_sec,
            name=f"poll-{self.key[:12]}",
            sleep=self._sleep,
        )
        LOGGER.info("poller started id=%s interval=%.2fs timeout=%.0fs", self.key, self._interval_sec, self._timeout_sec)
        return self._handle

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()

    async def wait(self) -> None:
        if self._handle is not None:
            await self._handle.wait()

    def _timed_out(self) -> bool:
        if self._started_at is None:
            return False
        return self._clock() - self._started_at >= self._timeout_sec

    def _finish(self, state: PollerState, job: GenerationJob) -> None:
        self.state = state
        self.job = job
        self._gallery.upsert(job)
        if state == "completed":
            LOGGER.info("poller completed id=%s ticks=%d video=%s", self.key, self.tick_count, job.video_url)
        else:
            LOGGER.warning("poller %s id=%s ticks=%d error=%s", state, self.key, self.tick_count, job.error_message)
        if self._on_finish is not None:
            self._on_finish(self)

    def _finish_timed_out(self) -> None:
        self.error = GenerationTimeoutError(f"Generation timed out after {describe_timeout(self._timeout_sec)}")
        self._finish("timed_out", self.job.failed(str(self.error)))

    async def tick(self) -> bool:
        """Run one status check. Returns True while the job should keep polling."""
        if self.state != "polling":
            return False
        if self._timed_out():
            self._finish_timed_out()
            return False
        self.tick_count += 1
        try:
            upstream = await self._client.get_job(self.job.remote_id)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            self.error = exc if isinstance(exc, StudioError) else UpstreamError(message)
            self._finish("failed", self.job.failed(message))
            return False

        if upstream.status == "completed":
            if not upstream.video_url:
                self.error = UpstreamError("No video URL found")
                self._finish("failed", self.job.failed(str(self.error)))
            else:
                self._finish("completed", self.job.completed(upstream.video_url, upstream.thumbnail_url))
            return False
        if upstream.status == "failed":
            self.error = UpstreamError(upstream.failure_reason or "Generation failed")
            self._finish("failed", self.job.failed(str(self.error)))
            return False
        if self._timed_out():
            self._finish_timed_out()
            return False
        return True


class PollerRegistry:
    """Keeps at most one active poller per job id."""

    def __init__(
        self,
        client: Any,
        gallery: GalleryReconciler,
        *,
        interval_sec: float = DEFAULT_POLL_INTERVAL_SEC,
        timeout_sec: float = DEFAULT_POLL_TIMEOUT_SEC,
        sleep: Optional[SleepFn] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._client = client
        self._gallery = gallery
        self.interval_sec = interval_sec
        self.timeout_sec = timeout_sec
        self._sleep = sleep
        self._clock = clock
        self._pollers: Dict[str, CompletionPoller] = {}

    def __len__(self) -> int:
        return len(self._pollers)

    def start(self, job: GenerationJob) -> CompletionPoller:
        existing = self._pollers.get(job.key)
        if existing is not None and existing.active:
            return existing
        poller = CompletionPoller(
            job,
            self._client,
            self._gallery,
            interval_sec=self.interval_sec,
            timeout_sec=self.timeout_sec,
            sleep=self._sleep,
            clock=self._clock,
            on_finish=self._forget,
        )
        self._pollers[job.key] = poller
        poller.start()
        return poller

    def _forget(self, poller: CompletionPoller) -> None:
        if self._pollers.get(poller.key) is poller:
            del self._pollers[poller.key]

    def get(self, key: str) -> Optional[CompletionPoller]:
        return self._pollers.get(key)

    def active(self) -> List[CompletionPoller]:
        return [poller for poller in self._pollers.values() if poller.active]

    def active_count(self) -> int:
        return len(self.active())

    def stop_all(self) -> None:
        pollers = list(self._pollers.values())
        self._pollers.clear()
        for poller in pollers:
            poller.stop()
        if pollers:
            LOGGER.info("stopped %d poller(s)", len(pollers))
