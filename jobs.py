"""
Audit trail for long-running AI operations.

Jobs are created ``pending``, moved to ``processing`` just before the
external call, and end ``completed`` or ``failed``. Terminal jobs are final.
"""

import logging
from typing import Any, Dict, Optional

from errors import JobStateError, NotFound
from models import Job, JobStatus, JobType

logger = logging.getLogger("jobs")


class JobTracker:
    def __init__(self, db):
        self.db = db

    def create(self, job_type: JobType, user_id: str, story_id: str, input_data: Dict[str, Any],
               page_id: Optional[str] = None, max_retries: int = 3) -> Job:
        job = self.db.create_job(job_type.value, user_id, story_id, input_data,
                                 page_id=page_id, max_retries=max_retries)
        logger.debug(f"[jobs] Created {job_type.value} job {job.id} for story {story_id}")
        return job

    def get(self, job_id: str) -> Job:
        job = self.db.get_job(job_id)
        if job is None:
            raise NotFound("Job not found")
        return job

    def _transition(self, job_id: str, status: JobStatus, output: Optional[Dict[str, Any]] = None,
                    error: Optional[str] = None, retry_count: Optional[int] = None) -> None:
        if not self.db.update_job_status(job_id, status.value, output=output, error=error, retry_count=retry_count):
            current = self.db.get_job(job_id)
            if current is None:
                raise NotFound("Job not found")
            raise JobStateError(f"Job {job_id} is already {current.status.value}; cannot move to {status.value}")
        logger.debug(f"[jobs] {job_id} -> {status.value}")

    def start(self, job_id: str) -> None:
        self._transition(job_id, JobStatus.PROCESSING)

    def complete(self, job_id: str, output: Dict[str, Any], retry_count: Optional[int] = None) -> None:
        self._transition(job_id, JobStatus.COMPLETED, output=output, retry_count=retry_count)

    def fail(self, job_id: str, error: str, retry_count: Optional[int] = None) -> None:
        self._transition(job_id, JobStatus.FAILED, error=error, retry_count=retry_count)
