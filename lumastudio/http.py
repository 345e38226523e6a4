import asyncio
import time
from typing import Any, Dict, Optional

import httpx

from .errors import UpstreamError


def upstream_error_from_response(response: httpx.Response) -> UpstreamError:
    detail: Optional[str] = None
    code: Optional[str] = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error_field = body.get("error")
        if isinstance(error_field, dict):
            detail = error_field.get("message") or None
            code = error_field.get("code") or None
        elif isinstance(error_field, str):
            detail = error_field
        detail = body.get("detail") or body.get("message") or detail
        code = body.get("code") or code
    if not isinstance(detail, str) or not detail.strip():
        detail = f"HTTP {response.status_code} from {response.request.url}"
    return UpstreamError(detail, code=str(code) if code is not None else None, status_code=response.status_code)


async def request_json_with_retry(
    *,
    method: str,
    url: str,
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    json_body: Optional[Dict[str, Any]] = None,
    data: Optional[Dict[str, Any]] = None,
    files: Optional[Dict[str, Any]] = None,
    timeout_sec: float = 20.0,
    retry_count: int = 2,
    retry_backoff_sec: float = 1.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    last_error: Optional[UpstreamError] = None
    timeout = httpx.Timeout(timeout_sec, connect=min(timeout_sec, 10.0))
    for attempt in range(retry_count + 1):
        try:
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True, transport=transport) as client:
                response = await client.request(
                    method=method,
                    url=url,
                    params=params,
                    headers=headers,
                    json=json_body,
                    data=data,
                    files=files,
                )
                if response.is_error:
                    raise upstream_error_from_response(response)
                payload = response.json()
                if not isinstance(payload, dict):
                    raise UpstreamError(f"Invalid JSON object response from {url}")
                return payload
        except UpstreamError as exc:
            last_error = exc
            # Client errors will not change on a second attempt.
            if exc.upstream_status is None or exc.upstream_status < 500:
                break
        except (httpx.HTTPError, ValueError) as exc:
            last_error = UpstreamError(str(exc) or exc.__class__.__name__)
        if attempt >= retry_count:
            break
        await asyncio.sleep(max(0.1, retry_backoff_sec) * (2**attempt))
    raise last_error or UpstreamError("request failed")


def stream_download_with_retry(
    *,
    url: str,
    destination_path: str,
    timeout_sec: float = 60.0,
    retry_count: int = 2,
    retry_backoff_sec: float = 1.0,
    chunk_bytes: int = 1024 * 1024,
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Headers:
    last_error: Optional[Exception] = None
    timeout = httpx.Timeout(timeout_sec, connect=min(timeout_sec, 10.0))
    for attempt in range(retry_count + 1):
        try:
            with httpx.Client(timeout=timeout, follow_redirects=True, transport=transport) as client:
                with client.stream("GET", url) as response:
                    response.raise_for_status()
                    with open(destination_path, "wb") as handle:
                        for chunk in response.iter_bytes(chunk_size=chunk_bytes):
                            if chunk:
                                handle.write(chunk)
                    return response.headers
        except (httpx.HTTPError, OSError) as exc:
            last_error = exc
            if attempt >= retry_count:
                break
            time.sleep(max(0.1, retry_backoff_sec) * (2**attempt))
    raise UpstreamError(f"Video download failed: {last_error or 'unknown error'}")
