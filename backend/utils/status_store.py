import logging
import threading
from typing import Dict, Optional

from models.job import JobState, JobStatus

logger = logging.getLogger(__name__)


class InvalidTransition(ValueError):
    pass


class JobStatusStore:
    """Process-local job id -> JobStatus mapping.

    Created once at startup and handed to the orchestrator. Entries are frozen
    snapshots that get replaced, never mutated. States only move forward
    (downloading -> transcoding -> uploading -> completed), ``failed`` can be
    entered from any non-terminal state, and terminal entries never change.
    There is no eviction and no persistence.
    """

    def __init__(self):
        self._statuses: Dict[str, JobStatus] = {}
        self._lock = threading.Lock()

    def set(self, status: JobStatus):
        with self._lock:
            current = self._statuses.get(status.job_id)
            if current is not None:
                self._check_transition(current, status)
            self._statuses[status.job_id] = status
        logger.info(f"Job {status.job_id}: {status.label} ({status.progress}%)")

    def get(self, job_id: str) -> Optional[JobStatus]:
        return self._statuses.get(job_id)

    def __len__(self):
        return len(self._statuses)

    @staticmethod
    def _check_transition(current: JobStatus, new: JobStatus):
        if current.state.is_terminal:
            raise InvalidTransition(f"Job {current.job_id} is already {current.state.value}")
        if new.state == JobState.FAILED:
            return
        if new.state.rank < current.state.rank:
            raise InvalidTransition(
                f"Job {current.job_id} cannot move from {current.state.value} back to {new.state.value}"
            )
