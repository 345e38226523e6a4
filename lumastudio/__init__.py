"""Generation lifecycle core for the Luma studio web UI.

Submission, completion polling, gallery reconciliation and paging.
"""

from .errors import AuthError, GenerationTimeoutError, StudioError, UpstreamError, ValidationError
from .gallery import GalleryReconciler
from .models import GenerationJob, GenerationRequest, JobPage, PageCursor, UpstreamJob
from .pager import GalleryPager
from .poller import CompletionPoller, PollerRegistry
from .session import SessionHub, StudioSession
from .submission import JobSubmitter
from .upstream import LumaClient

__all__ = [
    "AuthError",
    "CompletionPoller",
    "GalleryPager",
    "GalleryReconciler",
    "GenerationJob",
    "GenerationRequest",
    "GenerationTimeoutError",
    "JobPage",
    "JobSubmitter",
    "LumaClient",
    "PageCursor",
    "PollerRegistry",
    "SessionHub",
    "StudioError",
    "StudioSession",
    "UpstreamError",
    "UpstreamJob",
    "ValidationError",
]
