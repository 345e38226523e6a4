import time
from typing import Any, Callable, Dict, Optional

import httpx

from .config import ClientConfig
from .gallery import GalleryReconciler
from .logging import LOGGER
from .pager import GalleryPager
from .poller import PollerRegistry
from .scheduling import SleepFn
from .submission import JobSubmitter
from .upstream import LumaClient


def _mask(api_key: Optional[str]) -> str:
    if not api_key:
        return "<none>"
    return f"...{api_key[-4:]}" if len(api_key) > 8 else "***"


class StudioSession:
    """One credential and everything working on its behalf.

    The gallery instance lives as long as the session. Switching credentials
    stops every poller and resets the gallery rather than replacing it.
    """

    def __init__(
        self,
        settings: Dict[str, Any],
        api_key: Optional[str],
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[SleepFn] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._transport = transport
        self._sleep = sleep
        self._clock = clock or time.monotonic
        self.settings = settings
        self.gallery = GalleryReconciler()
        self._wire(ClientConfig.from_settings(settings, api_key))

    def _wire(self, config: ClientConfig) -> None:
        self.client = LumaClient(config, transport=self._transport)
        self.pollers = PollerRegistry(
            self.client,
            self.gallery,
            interval_sec=float(self.settings["polling"]["interval_sec"]),
            timeout_sec=float(self.settings["polling"]["timeout_sec"]),
            sleep=self._sleep,
            clock=self._clock,
        )
        self.pager = GalleryPager(self.client, self.gallery, page_size=int(self.settings["gallery"]["page_size"]))
        self.submitter = JobSubmitter(
            self.client,
            self.gallery,
            self.pollers,
            max_concurrent=int(self.settings["limits"]["max_concurrent_generations"]),
        )

    @property
    def api_key(self) -> Optional[str]:
        return self.client.config.api_key

    def switch_credential(self, api_key: Optional[str]) -> bool:
        normalized = (api_key or "").strip() or None
        if normalized == self.api_key:
            return False
        LOGGER.info("switching credential from=%s to=%s", _mask(self.api_key), _mask(normalized))
        self.pollers.stop_all()
        self.gallery.reset()
        self._wire(ClientConfig.from_settings(self.settings, normalized))
        return True

    def apply_settings(self, settings: Dict[str, Any]) -> None:
        """Use new settings for future calls. Running pollers keep their interval."""
        self.settings = settings
        self.client.config = ClientConfig.from_settings(settings, self.api_key)
        self.pollers.interval_sec = float(settings["polling"]["interval_sec"])
        self.pollers.timeout_sec = float(settings["polling"]["timeout_sec"])
        self.pager.page_size = max(1, int(settings["gallery"]["page_size"]))
        self.submitter.max_concurrent = int(settings["limits"]["max_concurrent_generations"])

    def status(self) -> Dict[str, Any]:
        return {
            "has_credential": self.client.has_credential,
            "in_progress": self.submitter.in_progress,
            "pending": self.gallery.count_pending(),
            "max_concurrent_generations": self.submitter.max_concurrent,
            "jobs": len(self.gallery),
        }

    def close(self) -> None:
        self.pollers.stop_all()


class SessionHub:
    """Holds the single active session of this local server."""

    def __init__(
        self,
        settings: Dict[str, Any],
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[SleepFn] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._sleep = sleep
        self._clock = clock
        self._session: Optional[StudioSession] = None

    def session_for(self, api_key: Optional[str]) -> StudioSession:
        if self._session is None:
            self._session = StudioSession(
                self._settings,
                api_key,
                transport=self._transport,
                sleep=self._sleep,
                clock=self._clock,
            )
        else:
            self._session.switch_credential(api_key)
        return self._session

    def apply_settings(self, settings: Dict[str, Any]) -> None:
        self._settings = settings
        if self._session is not None:
            self._session.apply_settings(settings)

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
