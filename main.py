import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

import httpx
import uvicorn
from fastapi import FastAPI, File, Header, HTTPException, UploadFile
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from lumastudio.config import (
    DEFAULT_SETTINGS,
    SettingsStore,
    cloudinary_settings,
    ensure_runtime_dirs,
)
from lumastudio.errors import AuthError, StudioError
from lumastudio.logging import LOGGER, latest_log_file, setup_logger, tail_log_file
from lumastudio.models import (
    ASPECT_RATIO_LABELS,
    DURATIONS,
    RESOLUTION_LABELS,
    GenerationRequest,
)
from lumastudio.session import SessionHub, StudioSession
from lumastudio.storage import VideoCache
from lumastudio.upstream import MISSING_CREDENTIAL_MESSAGE
from lumastudio.uploads import ImageUploader

BASE_DIR = Path(__file__).resolve().parent
STATIC_DIR = BASE_DIR / "static"
DATA_DIR = BASE_DIR / "data"

settings_store = SettingsStore(DATA_DIR / "settings.json", DEFAULT_SETTINGS)
ensure_runtime_dirs(settings_store.get(), BASE_DIR)

# Outbound transport overrides; None means real network. Luma and Cloudinary calls are async,
# video downloads run in a worker thread on a sync client.
upstream_transport: Optional[httpx.AsyncBaseTransport] = None
download_transport: Optional[httpx.BaseTransport] = None
session_hub = SessionHub(settings_store.get())


def http_error(exc: StudioError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=str(exc))


def require_session(api_key: Optional[str]) -> StudioSession:
    # Checked before touching the hub so a request without a key never resets the gallery.
    if not (api_key or "").strip():
        raise http_error(AuthError(MISSING_CREDENTIAL_MESSAGE))
    return session_hub.session_for(api_key)


def build_image_uploader(settings: Dict[str, Any]) -> ImageUploader:
    cloud_name, upload_preset = cloudinary_settings(settings)
    return ImageUploader(
        cloud_name,
        upload_preset,
        max_bytes=int(settings["uploads"]["max_bytes"]),
        timeout_sec=float(settings["server"]["request_timeout_sec"]) * 3,
        transport=upstream_transport,
    )


def build_video_cache(settings: Dict[str, Any]) -> VideoCache:
    return VideoCache.from_settings(settings, BASE_DIR, transport=download_transport)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = settings_store.get()
    log_file = setup_logger(settings, BASE_DIR)
    LOGGER.info("server starting static_dir=%s log_file=%s", STATIC_DIR, log_file)
    try:
        yield
    finally:
        session_hub.close()
        LOGGER.info("server stopped")


app = FastAPI(title="Luma Studio", lifespan=lifespan)
app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")


@app.get("/")
def root() -> FileResponse:
    return FileResponse(STATIC_DIR / "index.html")


@app.get("/api/options")
def options() -> Dict[str, Any]:
    settings = settings_store.get()
    return {
        "aspect_ratios": [{"value": key, "label": label} for key, label in ASPECT_RATIO_LABELS.items()],
        "resolutions": [{"value": key, "label": label} for key, label in RESOLUTION_LABELS.items()],
        "durations": list(DURATIONS),
        "defaults": settings["defaults"],
        "max_concurrent_generations": settings["limits"]["max_concurrent_generations"],
        "page_size": settings["gallery"]["page_size"],
        "uploads_enabled": all(cloudinary_settings(settings)),
    }


@app.get("/api/settings")
def get_settings() -> Dict[str, Any]:
    return settings_store.get()


@app.put("/api/settings")
def update_settings(payload: Dict[str, Any]) -> Dict[str, Any]:
    updated = settings_store.update(payload)
    ensure_runtime_dirs(updated, BASE_DIR)
    setup_logger(updated, BASE_DIR)
    session_hub.apply_settings(updated)
    return updated


@app.get("/api/logs")
def get_logs(lines: int = 200) -> Dict[str, Any]:
    log_file = latest_log_file(settings_store.get(), BASE_DIR)
    if log_file is None:
        return {"file": None, "lines": []}
    return {"file": str(log_file), "lines": tail_log_file(log_file, max(1, min(lines, 2000)))}


@app.get("/api/generations")
async def list_generations(x_api_key: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    session = require_session(x_api_key)
    return {**session.gallery.snapshot(), "status": session.status()}


@app.post("/api/generations")
async def create_generation(req: GenerationRequest, x_api_key: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    session = require_session(x_api_key)
    try:
        job = await session.submitter.submit(req)
    except StudioError as exc:
        raise http_error(exc) from exc
    return {"job": job.to_dict(), "status": session.status()}


@app.post("/api/generations/more")
async def load_more_generations(x_api_key: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    session = require_session(x_api_key)
    appended = await session.pager.load_more()
    return {
        "appended": appended,
        "cursor": session.gallery.cursor.to_dict(),
        "in_flight": session.pager.in_flight,
    }


@app.post("/api/upload")
async def upload_reference_image(file: UploadFile = File(...)) -> Dict[str, str]:
    uploader = build_image_uploader(settings_store.get())
    file_bytes = await file.read()
    try:
        return await uploader.upload_image(file_bytes, file.content_type or "", file.filename or "keyframe")
    except StudioError as exc:
        LOGGER.warning("image upload rejected file=%s error=%s", file.filename, exc)
        raise http_error(exc) from exc


@app.get("/api/videos/{job_id}")
async def get_video(job_id: str, x_api_key: Optional[str] = Header(default=None)) -> FileResponse:
    session = require_session(x_api_key)
    job = session.gallery.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Generation not found")
    cache = build_video_cache(settings_store.get())
    try:
        path = await asyncio.to_thread(cache.fetch, job)
    except StudioError as exc:
        raise http_error(exc) from exc
    return FileResponse(path, media_type="video/mp4", filename=f"{job.key}.mp4")


if __name__ == "__main__":
    server_settings = settings_store.get()["server"]
    uvicorn.run(app, host=server_settings["listen_host"], port=int(server_settings["listen_port"]))
