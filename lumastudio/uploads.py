import io
from typing import Any, Dict, Optional

import httpx
from PIL import Image, UnidentifiedImageError

from .config import CLOUDINARY_API_BASE_URL
from .errors import UpstreamError, ValidationError
from .http import request_json_with_retry
from .logging import LOGGER

DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024


def verify_image_bytes(file_bytes: bytes) -> str:
    try:
        with Image.open(io.BytesIO(file_bytes)) as image:
            image.verify()
            return str(image.format or "").lower()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
        raise ValidationError("File must be an image") from exc


class ImageUploader:
    """Forwards reference keyframe images to Cloudinary with an unsigned preset."""

    def __init__(
        self,
        cloud_name: str,
        upload_preset: str,
        *,
        max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
        timeout_sec: float = 60.0,
        base_url: str = CLOUDINARY_API_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.cloud_name = cloud_name
        self.upload_preset = upload_preset
        self.max_bytes = max_bytes
        self.timeout_sec = timeout_sec
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    async def upload_image(self, file_bytes: bytes, mime_type: str, filename: str = "keyframe") -> Dict[str, Any]:
        normalized_mime = str(mime_type or "").strip().lower()
        if not normalized_mime.startswith("image/"):
            raise ValidationError("File must be an image")
        if not file_bytes:
            raise ValidationError("No file uploaded")
        if len(file_bytes) > self.max_bytes:
            raise ValidationError(f"Image exceeds the {self.max_bytes // (1024 * 1024)} MB upload limit")
        image_format = verify_image_bytes(file_bytes)
        if not self.cloud_name or not self.upload_preset:
            raise UpstreamError("Image uploads are not configured (missing Cloudinary cloud name or upload preset)")

        payload = await request_json_with_retry(
            method="POST",
            url=f"{self.base_url}/{self.cloud_name}/image/upload",
            data={"upload_preset": self.upload_preset},
            files={"file": (filename or "keyframe", file_bytes, normalized_mime)},
            timeout_sec=self.timeout_sec,
            retry_count=0,
            transport=self._transport,
        )
        url = payload.get("secure_url") or payload.get("url")
        if not isinstance(url, str) or not url:
            raise UpstreamError("Error uploading file: no URL in upload response")
        LOGGER.info("image uploaded format=%s bytes=%d url=%s", image_format, len(file_bytes), url)
        return {"url": url}
