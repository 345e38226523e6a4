import re
import time
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import httpx

from .config import resolve_path
from .errors import ValidationError
from .http import stream_download_with_retry
from .logging import LOGGER
from .models import GenerationJob

SAFE_JOB_ID = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def _iter_files(directory: Path) -> Iterable[Path]:
    if not directory.exists():
        return []
    return [entry for entry in directory.iterdir() if entry.is_file()]


def _prune_by_age_and_count(
    files: list[Path],
    *,
    max_age_days: int,
    max_count: int,
) -> list[Path]:
    now = time.time()
    max_age_sec = max(1, int(max_age_days)) * 24 * 60 * 60
    ordered = sorted(files, key=lambda p: p.stat().st_mtime if p.exists() else 0)
    remove_targets: list[Path] = []
    for path in ordered:
        age_sec = max(0.0, now - float(path.stat().st_mtime))
        if age_sec > max_age_sec:
            remove_targets.append(path)
    keep = [path for path in ordered if path not in remove_targets]
    overflow = max(0, len(keep) - max(1, int(max_count)))
    if overflow > 0:
        remove_targets.extend(keep[:overflow])
    return remove_targets


def _remove_files(paths: Iterable[Path]) -> list[str]:
    removed: list[str] = []
    for path in paths:
        try:
            if path.exists() and path.is_file():
                path.unlink(missing_ok=True)
                removed.append(str(path))
        except OSError as exc:
            LOGGER.warning("cache cleanup could not remove path=%s error=%s", path, exc)
    return removed


class VideoCache:
    """Temporary on-disk copies of completed videos, named ``<job id>.mp4``."""

    def __init__(
        self,
        directory: Path,
        *,
        max_age_days: int = 1,
        max_count: int = 100,
        timeout_sec: float = 60.0,
        retry_count: int = 2,
        retry_backoff_sec: float = 1.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.directory = directory
        self.max_age_days = max_age_days
        self.max_count = max_count
        self.timeout_sec = timeout_sec
        self.retry_count = retry_count
        self.retry_backoff_sec = retry_backoff_sec
        self._transport = transport

    @classmethod
    def from_settings(
        cls, settings: Dict[str, Any], base_dir: Path, *, transport: Optional[httpx.BaseTransport] = None
    ) -> "VideoCache":
        storage = settings.get("storage", {})
        server = settings.get("server", {})
        return cls(
            resolve_path(str(settings.get("paths", {}).get("tmp_dir", "tmp")), base_dir),
            max_age_days=int(storage.get("cleanup_max_age_days", 1)),
            max_count=int(storage.get("cleanup_max_tmp_count", 100)),
            retry_count=int(server.get("request_retry_count", 2)),
            retry_backoff_sec=float(server.get("request_retry_backoff_sec", 1.0)),
            transport=transport,
        )

    def path_for(self, job_id: str) -> Path:
        if not SAFE_JOB_ID.match(job_id or ""):
            raise ValidationError("Invalid job id")
        return self.directory / f"{job_id}.mp4"

    def fetch(self, job: GenerationJob) -> Path:
        """Return the cached file for a completed job, downloading it on first use."""
        if job.status != "completed" or not job.video_url:
            raise ValidationError("Video is not ready")
        target = self.path_for(job.key)
        if target.exists() and target.stat().st_size > 0:
            return target
        self.directory.mkdir(parents=True, exist_ok=True)
        partial = target.with_suffix(".part")
        try:
            stream_download_with_retry(
                url=job.video_url,
                destination_path=str(partial),
                timeout_sec=self.timeout_sec,
                retry_count=self.retry_count,
                retry_backoff_sec=self.retry_backoff_sec,
                transport=self._transport,
            )
        except Exception:
            partial.unlink(missing_ok=True)
            raise
        partial.replace(target)
        LOGGER.info("video cached id=%s path=%s bytes=%d", job.key, target, target.stat().st_size)
        self.cleanup(keep=target)
        return target

    def cleanup(self, keep: Optional[Path] = None) -> Dict[str, Any]:
        files = [path for path in _iter_files(self.directory) if path.suffix == ".mp4" and path != keep]
        # The file just fetched always survives, so it counts against the limit up front.
        max_count = self.max_count - 1 if keep is not None else self.max_count
        targets = _prune_by_age_and_count(files, max_age_days=self.max_age_days, max_count=max(1, max_count))
        removed = _remove_files(targets)
        return {
            "status": "ok",
            "removed_tmp": removed,
            "tmp_count_before": len(files),
            "tmp_count_after": max(0, len(files) - len(removed)),
        }
