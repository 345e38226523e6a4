import copy
import json
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from .models import ASPECT_RATIOS, DEFAULT_ASPECT_RATIO, DEFAULT_DURATION, DEFAULT_RESOLUTION, DURATIONS, RESOLUTIONS

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR"}
LUMA_API_BASE_URL = "https://api.lumalabs.ai/dream-machine/v1"
CLOUDINARY_API_BASE_URL = "https://api.cloudinary.com/v1_1"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "server": {
        "listen_host": "127.0.0.1",
        "listen_port": 8000,
        "request_timeout_sec": 20,
        "request_retry_count": 2,
        "request_retry_backoff_sec": 1.0,
    },
    "luma": {
        "api_base_url": LUMA_API_BASE_URL,
        "model": "ray-2",
    },
    "polling": {
        "interval_sec": 5.0,
        "timeout_sec": 300.0,
    },
    "gallery": {
        "page_size": 20,
    },
    "limits": {
        "max_concurrent_generations": 20,
    },
    "uploads": {
        "cloudinary_cloud_name": "",
        "cloudinary_upload_preset": "",
        "max_bytes": 10 * 1024 * 1024,
    },
    "paths": {
        "tmp_dir": "tmp",
        "logs_dir": "logs",
    },
    "storage": {
        "cleanup_max_age_days": 1,
        "cleanup_max_tmp_count": 100,
    },
    "logging": {
        "level": "INFO",
    },
    "defaults": {
        "aspect_ratio": "16:9",
        "resolution": "720p",
        "duration": "5s",
    },
}


def deep_merge(base: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _clamped_int(raw_value: Any, default: int, low: int, high: int) -> int:
    try:
        value = int(raw_value)
    except Exception:
        value = default
    return max(low, min(value, high))


def _clamped_float(raw_value: Any, default: float, low: float, high: float) -> float:
    try:
        value = float(raw_value)
    except Exception:
        value = default
    return max(low, min(value, high))


def sanitize_settings(payload: Dict[str, Any]) -> Dict[str, Any]:
    cleaned = copy.deepcopy(payload)
    server = cleaned.setdefault("server", {})
    luma = cleaned.setdefault("luma", {})
    polling = cleaned.setdefault("polling", {})
    gallery = cleaned.setdefault("gallery", {})
    limits = cleaned.setdefault("limits", {})
    uploads = cleaned.setdefault("uploads", {})
    storage = cleaned.setdefault("storage", {})
    logging_config = cleaned.setdefault("logging", {})
    defaults = cleaned.setdefault("defaults", {})

    raw_port = server.get("listen_port", 8000)
    try:
        listen_port = int(raw_port)
    except Exception:
        listen_port = 8000
    server["listen_port"] = listen_port if 1 <= listen_port <= 65535 else 8000
    server["listen_host"] = str(server.get("listen_host", "127.0.0.1")).strip() or "127.0.0.1"
    server["request_timeout_sec"] = _clamped_float(server.get("request_timeout_sec", 20), 20.0, 5.0, 180.0)
    server["request_retry_count"] = _clamped_int(server.get("request_retry_count", 2), 2, 0, 5)
    server["request_retry_backoff_sec"] = _clamped_float(server.get("request_retry_backoff_sec", 1.0), 1.0, 0.1, 10.0)

    base_url = str(luma.get("api_base_url", LUMA_API_BASE_URL)).strip().rstrip("/")
    luma["api_base_url"] = base_url if base_url.startswith(("http://", "https://")) else LUMA_API_BASE_URL
    luma["model"] = str(luma.get("model", "ray-2")).strip() or "ray-2"

    polling["interval_sec"] = _clamped_float(polling.get("interval_sec", 5.0), 5.0, 0.05, 60.0)
    polling["timeout_sec"] = _clamped_float(polling.get("timeout_sec", 300.0), 300.0, 1.0, 3600.0)
    gallery["page_size"] = _clamped_int(gallery.get("page_size", 20), 20, 1, 100)
    limits["max_concurrent_generations"] = _clamped_int(limits.get("max_concurrent_generations", 20), 20, 1, 100)

    uploads["cloudinary_cloud_name"] = str(uploads.get("cloudinary_cloud_name", "") or "").strip()
    uploads["cloudinary_upload_preset"] = str(uploads.get("cloudinary_upload_preset", "") or "").strip()
    uploads["max_bytes"] = _clamped_int(uploads.get("max_bytes", 10 * 1024 * 1024), 10 * 1024 * 1024, 1024, 100 * 1024 * 1024)

    storage["cleanup_max_age_days"] = _clamped_int(storage.get("cleanup_max_age_days", 1), 1, 1, 365)
    storage["cleanup_max_tmp_count"] = _clamped_int(storage.get("cleanup_max_tmp_count", 100), 100, 1, 10000)

    raw_level = str(logging_config.get("level", "INFO")).strip().upper()
    logging_config["level"] = raw_level if raw_level in VALID_LOG_LEVELS else "INFO"

    aspect_ratio = str(defaults.get("aspect_ratio", DEFAULT_ASPECT_RATIO)).strip()
    defaults["aspect_ratio"] = aspect_ratio if aspect_ratio in ASPECT_RATIOS else DEFAULT_ASPECT_RATIO
    resolution = str(defaults.get("resolution", DEFAULT_RESOLUTION)).strip().lower()
    defaults["resolution"] = resolution if resolution in RESOLUTIONS else DEFAULT_RESOLUTION
    duration = str(defaults.get("duration", DEFAULT_DURATION)).strip().lower()
    defaults["duration"] = duration if duration in DURATIONS else DEFAULT_DURATION
    return cleaned


def resolve_path(path_like: str, base_dir: Path) -> Path:
    candidate = Path(path_like).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return candidate.resolve()


def ensure_runtime_dirs(settings: Dict[str, Any], base_dir: Path) -> None:
    for key in ("tmp_dir", "logs_dir"):
        resolve_path(str(settings["paths"][key]), base_dir).mkdir(parents=True, exist_ok=True)


def cloudinary_settings(settings: Dict[str, Any]) -> tuple[str, str]:
    uploads = settings.get("uploads", {})
    cloud_name = str(os.environ.get("CLOUDINARY_CLOUD_NAME") or uploads.get("cloudinary_cloud_name") or "").strip()
    upload_preset = str(os.environ.get("CLOUDINARY_UPLOAD_PRESET") or uploads.get("cloudinary_upload_preset") or "").strip()
    return cloud_name, upload_preset


@dataclass(frozen=True)
class ClientConfig:
    """Everything the upstream client needs, passed in explicitly.

    The credential is supplied per session by the browser; it is never read
    from the settings file or the environment.
    """

    api_key: Optional[str]
    base_url: str = LUMA_API_BASE_URL
    model: str = "ray-2"
    timeout_sec: float = 20.0
    retry_count: int = 2
    retry_backoff_sec: float = 1.0

    @classmethod
    def from_settings(cls, settings: Dict[str, Any], api_key: Optional[str]) -> "ClientConfig":
        server = settings.get("server", {})
        luma = settings.get("luma", {})
        return cls(
            api_key=(api_key or "").strip() or None,
            base_url=str(luma.get("api_base_url", LUMA_API_BASE_URL)),
            model=str(luma.get("model", "ray-2")),
            timeout_sec=float(server.get("request_timeout_sec", 20.0)),
            retry_count=int(server.get("request_retry_count", 2)),
            retry_backoff_sec=float(server.get("request_retry_backoff_sec", 1.0)),
        )


class SettingsStore:
    def __init__(self, path: Path, defaults: Dict[str, Any]) -> None:
        self._path = path
        self._defaults = copy.deepcopy(defaults)
        self._lock = threading.Lock()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        loaded, should_persist = self._load()
        self._settings = loaded
        if should_persist:
            self._write(self._settings)

    def _load(self) -> tuple[Dict[str, Any], bool]:
        if not self._path.exists():
            return sanitize_settings(copy.deepcopy(self._defaults)), True
        try:
            content = json.loads(self._path.read_text(encoding="utf-8"))
            if not isinstance(content, dict):
                return sanitize_settings(copy.deepcopy(self._defaults)), True
            merged = sanitize_settings(deep_merge(self._defaults, content))
            should_persist = merged != content
            return merged, should_persist
        except Exception:
            return sanitize_settings(copy.deepcopy(self._defaults)), True

    def _write(self, payload: Dict[str, Any]) -> None:
        tmp = self._path.with_suffix(".tmp")
        tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp.replace(self._path)

    def get(self) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._settings)

    def update(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            merged = deep_merge(self._settings, updates)
            self._settings = sanitize_settings(deep_merge(self._defaults, merged))
            self._write(self._settings)
            return copy.deepcopy(self._settings)
