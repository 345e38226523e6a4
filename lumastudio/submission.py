import re
from dataclasses import dataclass
from typing import Any, Optional

from .errors import AuthError, ValidationError
from .gallery import GalleryReconciler
from .logging import LOGGER
from .models import ASPECT_RATIOS, DURATIONS, RESOLUTIONS, GenerationJob, GenerationRequest
from .poller import PollerRegistry
from .upstream import MISSING_CREDENTIAL_MESSAGE

DURATION_PATTERN = re.compile(r"^\s*(\d+)\s*s?\s*$", re.IGNORECASE)
DEFAULT_MAX_CONCURRENT_GENERATIONS = 20


@dataclass(frozen=True)
class CreateJobParams:
    prompt: str
    aspect_ratio: str
    resolution: str
    duration: str
    reference_image: Optional[str] = None


def normalize_duration(raw: str) -> str:
    match = DURATION_PATTERN.match(str(raw or ""))
    if not match:
        raise ValidationError("Invalid duration format")
    duration = f"{int(match.group(1))}s"
    if duration not in DURATIONS:
        raise ValidationError(f"Unsupported duration: {raw} (expected one of {', '.join(DURATIONS)})")
    return duration


def build_create_params(request: GenerationRequest) -> CreateJobParams:
    """Validate the form fields and convert them into upstream create-job parameters."""
    prompt = (request.prompt or "").strip()
    if not prompt:
        raise ValidationError("Prompt is required")
    aspect_ratio = str(request.aspect_ratio or "").strip()
    if aspect_ratio not in ASPECT_RATIOS:
        raise ValidationError(f"Unsupported aspect ratio: {request.aspect_ratio}")
    resolution = str(request.resolution or "").strip().lower()
    if resolution not in RESOLUTIONS:
        raise ValidationError(f"Unsupported resolution: {request.resolution}")
    duration = normalize_duration(request.duration)
    reference_image = (request.reference_image or "").strip() or None
    if reference_image and not reference_image.startswith(("http://", "https://")):
        raise ValidationError("Reference image must be an http(s) URL")
    return CreateJobParams(
        prompt=prompt,
        aspect_ratio=aspect_ratio,
        resolution=resolution,
        duration=duration,
        reference_image=reference_image,
    )


class JobSubmitter:
    def __init__(
        self,
        client: Any,
        gallery: GalleryReconciler,
        pollers: PollerRegistry,
        *,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT_GENERATIONS,
    ) -> None:
        self._client = client
        self._gallery = gallery
        self._pollers = pollers
        self.max_concurrent = max_concurrent
        self._creating = 0

    @property
    def in_progress(self) -> int:
        return self._creating + self._pollers.active_count()

    async def submit(self, request: GenerationRequest) -> GenerationJob:
        params = build_create_params(request)
        if not getattr(self._client, "has_credential", True):
            raise AuthError(MISSING_CREDENTIAL_MESSAGE)
        if self.in_progress >= self.max_concurrent:
            raise ValidationError(f"{self.in_progress} of {self.max_concurrent} generations already in progress")

        job = GenerationJob.pending(
            params.prompt,
            aspect_ratio=params.aspect_ratio,
            resolution=params.resolution,
            duration=params.duration,
            reference_image=params.reference_image,
        )
        self._gallery.upsert(job)
        LOGGER.info("submission queued local_id=%s aspect_ratio=%s duration=%s", job.local_id, job.aspect_ratio, job.duration)

        epoch = self._gallery.epoch
        self._creating += 1
        try:
            created = await self._client.create_job(
                params.prompt,
                params.aspect_ratio,
                params.resolution,
                params.duration,
                params.reference_image,
            )
        except Exception as exc:
            failed = job.failed(str(exc) or "Failed to generate video")
            if self._gallery.epoch != epoch:
                LOGGER.info("discarding failed submission local_id=%s after gallery reset", job.local_id)
                return failed
            self._gallery.upsert(failed)
            LOGGER.warning("submission failed local_id=%s error=%s", job.local_id, failed.error_message)
            return failed
        finally:
            self._creating -= 1

        bound = job.bind_remote(created.id)
        if self._gallery.epoch != epoch:
            # The gallery now belongs to another credential; leave it untouched and do not poll.
            LOGGER.info("discarding submission local_id=%s remote_id=%s after gallery reset", job.local_id, created.id)
            return bound
        self._gallery.upsert(bound)
        LOGGER.info("submission accepted local_id=%s remote_id=%s", job.local_id, created.id)
        self._pollers.start(bound)
        return bound
