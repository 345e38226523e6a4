from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .errors import UpstreamError

JobStatus = Literal["pending", "completed", "failed"]
AspectRatio = Literal["1:1", "16:9", "9:16", "4:3", "3:4", "21:9", "9:21"]
Resolution = Literal["540p", "720p", "1080p", "4k"]
Duration = Literal["5s", "9s"]

TERMINAL_STATUSES = {"completed", "failed"}
DEFAULT_ASPECT_RATIO = "16:9"
DEFAULT_RESOLUTION = "720p"
DEFAULT_DURATION = "5s"

ASPECT_RATIO_LABELS: Dict[str, str] = {
    "16:9": "16:9 Landscape",
    "9:16": "9:16 Portrait",
    "1:1": "1:1 Square",
    "4:3": "4:3 Classic",
    "3:4": "3:4 Portrait",
    "21:9": "21:9 Ultrawide",
    "9:21": "9:21 Vertical",
}
RESOLUTION_LABELS: Dict[str, str] = {
    "540p": "540p",
    "720p": "720p HD",
    "1080p": "1080p Full HD",
    "4k": "4K Ultra HD",
}
ASPECT_RATIOS = tuple(ASPECT_RATIO_LABELS)
RESOLUTIONS = tuple(RESOLUTION_LABELS)
DURATIONS = ("5s", "9s")

# Upstream reports in-progress work as "queued" or "dreaming".
UPSTREAM_STATE_MAP: Dict[str, JobStatus] = {
    "queued": "pending",
    "dreaming": "pending",
    "pending": "pending",
    "completed": "completed",
    "failed": "failed",
}


def utc_now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


class GenerationRequest(BaseModel):
    prompt: str = Field(default="", max_length=5000)
    aspect_ratio: str = DEFAULT_ASPECT_RATIO
    resolution: str = DEFAULT_RESOLUTION
    duration: str = DEFAULT_DURATION
    reference_image: Optional[str] = None


@dataclass(frozen=True)
class UpstreamJob:
    """One generation record as reported by the upstream API."""

    id: str
    status: JobStatus
    prompt: str = ""
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    failure_reason: Optional[str] = None
    aspect_ratio: Optional[str] = None
    resolution: Optional[str] = None
    duration: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "UpstreamJob":
        if not isinstance(payload, dict):
            raise UpstreamError(f"Malformed generation record: expected object, got {type(payload).__name__}")
        job_id = str(payload.get("id") or "").strip()
        raw_state = str(payload.get("state") or "").strip().lower()
        if not job_id or not raw_state:
            raise UpstreamError("Malformed generation record: missing id or state")
        if raw_state not in UPSTREAM_STATE_MAP:
            raise UpstreamError(f"Unknown generation state: {raw_state}")
        assets = payload.get("assets") if isinstance(payload.get("assets"), dict) else {}
        request = payload.get("request") if isinstance(payload.get("request"), dict) else {}
        return cls(
            id=job_id,
            status=UPSTREAM_STATE_MAP[raw_state],
            prompt=str(request.get("prompt") or payload.get("prompt") or ""),
            video_url=assets.get("video") or None,
            thumbnail_url=assets.get("image") or None,
            failure_reason=payload.get("failure_reason") or None,
            aspect_ratio=request.get("aspect_ratio") or payload.get("aspect_ratio") or None,
            resolution=request.get("resolution") or payload.get("resolution") or None,
            duration=request.get("duration") or payload.get("duration") or None,
            created_at=payload.get("created_at") or None,
        )


@dataclass(frozen=True)
class JobPage:
    jobs: List[UpstreamJob]
    has_more: bool
    offset: int = 0
    fetched: int = 0


@dataclass
class PageCursor:
    offset: Optional[int] = None
    has_more: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {"offset": self.offset, "has_more": self.has_more}


@dataclass(frozen=True)
class GenerationJob:
    """A video generation tracked from optimistic insert to terminal state.

    ``local_id`` exists from the moment of submission. ``remote_id`` is set once
    upstream accepts the job; from then on ``key`` resolves to it.
    """

    local_id: str
    prompt: str
    status: JobStatus = "pending"
    remote_id: Optional[str] = None
    aspect_ratio: str = DEFAULT_ASPECT_RATIO
    resolution: str = DEFAULT_RESOLUTION
    duration: str = DEFAULT_DURATION
    reference_image: Optional[str] = None
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    error_message: Optional[str] = None
    created_at: str = field(default_factory=utc_now)

    @property
    def key(self) -> str:
        return self.remote_id or self.local_id

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def pending(
        cls,
        prompt: str,
        *,
        aspect_ratio: str = DEFAULT_ASPECT_RATIO,
        resolution: str = DEFAULT_RESOLUTION,
        duration: str = DEFAULT_DURATION,
        reference_image: Optional[str] = None,
    ) -> "GenerationJob":
        return cls(
            local_id=str(uuid.uuid4()),
            prompt=prompt,
            aspect_ratio=aspect_ratio,
            resolution=resolution,
            duration=duration,
            reference_image=reference_image,
        )

    @classmethod
    def from_upstream(cls, upstream: UpstreamJob) -> "GenerationJob":
        completed = upstream.status == "completed"
        failed = upstream.status == "failed"
        return cls(
            local_id=upstream.id,
            remote_id=upstream.id,
            prompt=upstream.prompt or "Unknown prompt",
            status=upstream.status,
            aspect_ratio=upstream.aspect_ratio or DEFAULT_ASPECT_RATIO,
            resolution=upstream.resolution or DEFAULT_RESOLUTION,
            duration=upstream.duration or DEFAULT_DURATION,
            video_url=upstream.video_url if completed else None,
            thumbnail_url=upstream.thumbnail_url if completed else None,
            error_message=(upstream.failure_reason or "Generation failed") if failed else None,
            created_at=upstream.created_at or utc_now(),
        )

    def bind_remote(self, remote_id: str) -> "GenerationJob":
        return replace(self, remote_id=remote_id)

    def completed(self, video_url: str, thumbnail_url: Optional[str] = None) -> "GenerationJob":
        return replace(self, status="completed", video_url=video_url, thumbnail_url=thumbnail_url, error_message=None)

    def failed(self, message: str) -> "GenerationJob":
        return replace(self, status="failed", video_url=None, thumbnail_url=None, error_message=message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.key,
            "local_id": self.local_id,
            "remote_id": self.remote_id,
            "prompt": self.prompt,
            "status": self.status,
            "aspect_ratio": self.aspect_ratio,
            "resolution": self.resolution,
            "duration": self.duration,
            "reference_image": self.reference_image,
            "video_url": self.video_url,
            "thumbnail_url": self.thumbnail_url,
            "error_message": self.error_message,
            "created_at": self.created_at,
        }
