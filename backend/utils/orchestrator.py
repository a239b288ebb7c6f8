import os
import time
import asyncio
import logging
import posixpath
import secrets
from typing import Optional, Tuple
from urllib.parse import urlparse

from models.job import Job, JobState, JobStatus
from .storage import is_remote_url

logger = logging.getLogger(__name__)

# Coarse progress checkpoints reported to status pollers
PROGRESS = {
    JobState.DOWNLOADING: 0,
    JobState.TRANSCODING: 30,
    JobState.UPLOADING: 70,
    JobState.COMPLETED: 100,
}

OUTPUT_PREFIX = "transcoded"
CONTENT_TYPE = "video/mp4"
CANCELLED_MESSAGE = "Job cancelled before completion"


def destination_key(storage_path: str) -> str:
    """Artifact key for a source video.

    Distinct sources never share an artifact, so the full source path is kept,
    extension included: ``user/clip.mov`` -> ``transcoded/user/clip.mov.mp4``.
    Remote sources keep their host: ``https://a.test/u/clip.mov`` ->
    ``transcoded/a.test/u/clip.mov.mp4``.
    """
    if is_remote_url(storage_path):
        parsed = urlparse(storage_path)
        path = posixpath.join(parsed.netloc, parsed.path.strip("/"))
    else:
        path = storage_path
    return f"{OUTPUT_PREFIX}/{path.strip('/')}.mp4"


def scratch_file_name() -> str:
    return f"transcoded-{int(time.time() * 1000)}-{secrets.token_hex(8)}.mp4"


class _UploadProgressLogger:
    """Logs upload progress every 10%; status pollers only see the fixed checkpoints."""

    def __init__(self, label):
        self.label = label
        self.last_decile = -1

    def __call__(self, sent, total):
        decile = 10 if total == 0 else sent * 10 // total
        if decile > self.last_decile:
            self.last_decile = decile
            logger.info(f"{self.label}: uploaded {sent}/{total} bytes")


class JobOrchestrator:
    """Runs one job through download -> transcode -> upload -> record.

    ``run`` never raises (cancellation aside): every failure ends in a failed
    status entry plus a best-effort failed record, and the job's workspace is
    always removed before the terminal status is published.
    """

    def __init__(self, settings, status_store, records, workspaces, fetcher, transcoder, uploader, storage):
        self.settings = settings
        self.status_store = status_store
        self.records = records
        self.workspaces = workspaces
        self.fetcher = fetcher
        self.transcoder = transcoder
        self.uploader = uploader
        self.storage = storage

    async def run(self, job: Job):
        logger.info(f"Job {job.job_id}: starting processing for {job.storage_path}")
        self._set_status(job, JobState.DOWNLOADING)

        try:
            with self.workspaces.acquire() as workspace:
                transcoded_url = await self._process(job, workspace)
        except asyncio.CancelledError:
            await self._fail(job, CANCELLED_MESSAGE)
            raise
        except Exception as e:
            logger.error(f"Job {job.job_id}: processing failed: {str(e)}", exc_info=e)
            await self._fail(job, str(e) or type(e).__name__)
            return

        self._set_status(job, JobState.COMPLETED, transcoded_url=transcoded_url)
        logger.info(f"Job {job.job_id}: processing completed successfully: {transcoded_url}")

    async def _process(self, job, workspace):
        source_url, authorization = self.resolve_source(job.storage_path, job.authorization)
        await self.fetcher.fetch(
            source_url,
            workspace.input_path,
            timeout=self.settings.download_timeout_seconds,
            authorization=authorization,
        )

        self._set_status(job, JobState.TRANSCODING)
        await self.transcoder.transcode(workspace.input_path, workspace.output_path)

        self._set_status(job, JobState.UPLOADING)
        file_size = os.path.getsize(workspace.output_path)
        transcoded_url = await asyncio.to_thread(
            self.uploader.upload,
            self.settings.transcoded_bucket,
            workspace.output_path,
            destination_key(job.storage_path),
            content_type=CONTENT_TYPE,
            # re-processing the same video replaces its artifact
            upsert=True,
            on_progress=_UploadProgressLogger(f"Job {job.job_id}"),
        )

        await asyncio.to_thread(self.records.mark_completed, job.video_id, transcoded_url, file_size)
        return transcoded_url

    async def transcode_once(self, video_url: str, authorization: Optional[str] = None) -> Tuple[str, str]:
        """Single-shot pipeline into the scratch bucket, without tracking or records.

        Returns ``(public_url, file_name)``; errors propagate to the caller.
        """
        with self.workspaces.acquire() as workspace:
            await self.fetcher.fetch(
                video_url,
                workspace.input_path,
                timeout=self.settings.download_timeout_seconds,
                authorization=authorization,
            )
            await self.transcoder.transcode(workspace.input_path, workspace.output_path)

            file_name = scratch_file_name()
            url = await asyncio.to_thread(
                self.uploader.upload,
                self.settings.legacy_bucket,
                workspace.output_path,
                file_name,
                content_type=CONTENT_TYPE,
                upsert=False,
            )
        return url, file_name

    def resolve_source(self, storage_path, authorization=None):
        """Turn a storage path into a fetchable URL and the header to send with it."""
        if is_remote_url(storage_path):
            return storage_path, authorization
        # the presigned signature authorizes the request, so no header is forwarded
        url = self.storage.presigned_get_url(self.settings.source_bucket, storage_path.lstrip("/"))
        return url, None

    async def abandon(self, job: Job):
        """Fail a job that was cancelled before it ever started running."""
        await self._fail(job, CANCELLED_MESSAGE)

    async def _fail(self, job, message):
        # the FAILED status is published even if the record write is cancelled
        try:
            await asyncio.to_thread(self.records.mark_failed, job.video_id, message)
        except Exception as persist_error:
            logger.error(f"Job {job.job_id}: failed to persist failure record: {str(persist_error)}")
        finally:
            self._set_status(job, JobState.FAILED, error_message=message)

    def _set_status(self, job, state, transcoded_url=None, error_message=None):
        current = self.status_store.get(job.job_id)
        if state == JobState.FAILED:
            progress = current.progress if current else 0
        else:
            progress = PROGRESS[state]
        self.status_store.set(
            JobStatus(
                job_id=job.job_id,
                video_id=job.video_id,
                state=state,
                progress=progress,
                transcoded_url=transcoded_url,
                error_message=error_message,
            )
        )
