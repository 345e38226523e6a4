from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from .config import ClientConfig
from .errors import AuthError, UpstreamError
from .http import request_json_with_retry
from .logging import LOGGER
from .models import JobPage, UpstreamJob

MISSING_CREDENTIAL_MESSAGE = "Please set your API key in settings first"


class LumaClient:
    """Thin async adapter over the Dream Machine generations endpoints."""

    def __init__(self, config: ClientConfig, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.config = config
        self._transport = transport

    @property
    def has_credential(self) -> bool:
        return bool(self.config.api_key)

    def _headers(self) -> Dict[str, str]:
        if not self.config.api_key:
            raise AuthError(MISSING_CREDENTIAL_MESSAGE)
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Accept": "application/json",
        }

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{path.lstrip('/')}"

    async def _request(self, method: str, path: str, *, retry_count: int = 0, **kwargs: Any) -> Dict[str, Any]:
        headers = self._headers()
        return await request_json_with_retry(
            method=method,
            url=self._url(path),
            headers=headers,
            timeout_sec=self.config.timeout_sec,
            retry_count=retry_count,
            retry_backoff_sec=self.config.retry_backoff_sec,
            transport=self._transport,
            **kwargs,
        )

    async def create_job(
        self,
        prompt: str,
        aspect_ratio: str,
        resolution: str,
        duration: str,
        reference_image: Optional[str] = None,
    ) -> UpstreamJob:
        body: Dict[str, Any] = {
            "prompt": prompt,
            "model": self.config.model,
            "aspect_ratio": aspect_ratio,
            "resolution": resolution,
            "duration": duration,
        }
        if reference_image:
            body["keyframes"] = {"frame0": {"type": "image", "url": reference_image}}
        LOGGER.info(
            "upstream create model=%s aspect_ratio=%s resolution=%s duration=%s keyframe=%s",
            self.config.model,
            aspect_ratio,
            resolution,
            duration,
            bool(reference_image),
        )
        # Job creation is never retried.
        payload = await self._request("POST", "generations", retry_count=0, json_body=body)
        return UpstreamJob.from_payload(payload)

    async def get_job(self, job_id: str) -> UpstreamJob:
        payload = await self._request("GET", f"generations/{quote(job_id, safe='')}", retry_count=0)
        job = UpstreamJob.from_payload(payload)
        if job.id != job_id:
            raise UpstreamError(f"Upstream returned generation {job.id} when asked for {job_id}")
        return job

    async def list_jobs(self, offset: int, limit: int) -> JobPage:
        payload = await self._request(
            "GET",
            "generations",
            retry_count=self.config.retry_count,
            params={"offset": int(offset), "limit": int(limit)},
        )
        raw_items = payload.get("generations")
        if not isinstance(raw_items, list):
            raise UpstreamError("Malformed generations listing: missing 'generations' array")
        jobs: List[UpstreamJob] = []
        for item in raw_items:
            try:
                jobs.append(UpstreamJob.from_payload(item))
            except UpstreamError as exc:
                LOGGER.warning("skipping malformed listing record offset=%s error=%s", offset, exc)
        jobs.sort(key=lambda job: job.created_at or "", reverse=True)
        raw_has_more = payload.get("has_more")
        has_more = bool(raw_has_more) if raw_has_more is not None else len(raw_items) >= limit
        return JobPage(jobs=jobs, has_more=has_more, offset=int(offset), fetched=len(raw_items))
