import asyncio
import io
import os
import time
from pathlib import Path

import httpx
import pytest
from PIL import Image

from lumastudio.errors import UpstreamError, ValidationError
from lumastudio.models import GenerationJob
from lumastudio.storage import VideoCache
from lumastudio.uploads import ImageUploader, verify_image_bytes

pytestmark = pytest.mark.unit


def _png_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), (200, 30, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


def _completed(job_id: str = "abc123") -> GenerationJob:
    return GenerationJob(
        local_id="tmp-1",
        remote_id=job_id,
        prompt="a cat",
        status="completed",
        video_url=f"https://cdn.example/{job_id}.mp4",
    )


def test_verify_image_bytes() -> None:
    assert verify_image_bytes(_png_bytes()) == "png"
    with pytest.raises(ValidationError, match="File must be an image"):
        verify_image_bytes(b"definitely not an image")


def test_upload_rejects_non_image_before_network() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"secure_url": "https://x"})

    uploader = ImageUploader("demo", "preset", transport=httpx.MockTransport(handler))
    with pytest.raises(ValidationError, match="File must be an image"):
        asyncio.run(uploader.upload_image(b"%PDF-1.4", "application/pdf", "doc.pdf"))
    with pytest.raises(ValidationError, match="File must be an image"):
        asyncio.run(uploader.upload_image(b"garbage", "image/png", "fake.png"))
    with pytest.raises(ValidationError, match="No file uploaded"):
        asyncio.run(uploader.upload_image(b"", "image/png", "empty.png"))
    assert calls == []


def test_upload_enforces_size_limit() -> None:
    uploader = ImageUploader("demo", "preset", max_bytes=16)
    with pytest.raises(ValidationError, match="upload limit"):
        asyncio.run(uploader.upload_image(_png_bytes(), "image/png", "frame.png"))


def test_upload_posts_unsigned_preset() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = request.content
        return httpx.Response(200, json={"secure_url": "https://res.cloudinary.com/demo/image/upload/frame.png"})

    uploader = ImageUploader(
        "demo", "unsigned-preset", base_url="https://cloudinary.test/v1_1", transport=httpx.MockTransport(handler)
    )
    result = asyncio.run(uploader.upload_image(_png_bytes(), "image/png", "frame.png"))
    assert result == {"url": "https://res.cloudinary.com/demo/image/upload/frame.png"}
    assert seen["url"] == "https://cloudinary.test/v1_1/demo/image/upload"
    assert b"unsigned-preset" in seen["body"]
    assert b'filename="frame.png"' in seen["body"]


def test_upload_without_configuration_is_upstream_error() -> None:
    uploader = ImageUploader("", "")
    with pytest.raises(UpstreamError, match="not configured"):
        asyncio.run(uploader.upload_image(_png_bytes(), "image/png", "frame.png"))


def test_upload_failure_is_reported() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": {"message": "Upload preset not found"}})

    uploader = ImageUploader("demo", "missing", transport=httpx.MockTransport(handler))
    with pytest.raises(UpstreamError, match="Upload preset not found"):
        asyncio.run(uploader.upload_image(_png_bytes(), "image/png", "frame.png"))


def test_video_cache_downloads_once(tmp_path: Path) -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        return httpx.Response(200, content=b"\x00\x00\x00\x18ftypmp42")

    cache = VideoCache(tmp_path / "tmp", transport=httpx.MockTransport(handler))
    first = cache.fetch(_completed())
    second = cache.fetch(_completed())
    assert first == second == tmp_path / "tmp" / "abc123.mp4"
    assert first.read_bytes().endswith(b"ftypmp42")
    assert calls == ["https://cdn.example/abc123.mp4"]
    assert not (tmp_path / "tmp" / "abc123.part").exists()


def test_video_cache_rejects_unfinished_jobs(tmp_path: Path) -> None:
    cache = VideoCache(tmp_path)
    with pytest.raises(ValidationError, match="Video is not ready"):
        cache.fetch(GenerationJob.pending("still going").bind_remote("abc123"))
    with pytest.raises(ValidationError, match="Invalid job id"):
        cache.path_for("../etc/passwd")


def test_video_cache_download_failure(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    cache = VideoCache(tmp_path, retry_count=0, transport=httpx.MockTransport(handler))
    with pytest.raises(UpstreamError, match="Video download failed"):
        cache.fetch(_completed())
    assert list(tmp_path.iterdir()) == []


def test_video_cache_cleanup_prunes_old_and_overflow(tmp_path: Path) -> None:
    stale = tmp_path / "stale.mp4"
    stale.write_bytes(b"old")
    two_days_ago = time.time() - 2 * 24 * 60 * 60
    os.utime(stale, (two_days_ago, two_days_ago))
    for index in range(3):
        path = tmp_path / f"fresh-{index}.mp4"
        path.write_bytes(b"new")
        os.utime(path, (time.time() - 10 + index, time.time() - 10 + index))
    (tmp_path / "notes.txt").write_text("keep me", encoding="utf-8")

    report = VideoCache(tmp_path, max_age_days=1, max_count=2).cleanup()
    remaining = sorted(path.name for path in tmp_path.iterdir())
    assert remaining == ["fresh-1.mp4", "fresh-2.mp4", "notes.txt"]
    assert report["tmp_count_before"] == 4
    assert report["tmp_count_after"] == 2
