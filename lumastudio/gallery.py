from typing import Dict, List, Optional

from .models import GenerationJob, PageCursor


class GalleryReconciler:
    """Ordered, most-recent-first collection of jobs with one entry per id.

    ``upsert`` and ``reset`` are the only mutations. The reconciler never
    judges status transitions; whatever is upserted last wins.
    """

    def __init__(self) -> None:
        self._jobs: List[GenerationJob] = []
        self.cursor = PageCursor()
        self.epoch = 0

    def __len__(self) -> int:
        return len(self._jobs)

    def _matches(self, existing: GenerationJob, job: GenerationJob) -> bool:
        return existing.key == job.key or existing.local_id == job.local_id

    def upsert(self, job: GenerationJob, *, append: bool = False) -> None:
        positions = [index for index, existing in enumerate(self._jobs) if self._matches(existing, job)]
        if not positions:
            if append:
                self._jobs.append(job)
            else:
                self._jobs.insert(0, job)
            return
        first = positions[0]
        self._jobs[first] = job
        # A rebind can make a paged copy and the optimistic slot describe the same job.
        for index in reversed(positions[1:]):
            del self._jobs[index]

    def reset(self) -> None:
        self._jobs = []
        self.cursor = PageCursor()
        self.epoch += 1

    def get(self, key: str) -> Optional[GenerationJob]:
        for job in self._jobs:
            if job.key == key or job.local_id == key:
                return job
        return None

    def contains(self, key: str) -> bool:
        return self.get(key) is not None

    def jobs(self) -> List[GenerationJob]:
        return list(self._jobs)

    def count_pending(self) -> int:
        return sum(1 for job in self._jobs if job.status == "pending")

    def snapshot(self) -> Dict[str, object]:
        return {
            "items": [job.to_dict() for job in self._jobs],
            "cursor": self.cursor.to_dict(),
        }
