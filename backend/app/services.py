import logging

from app.auth import TokenVerifier
from utils.fetcher import SourceFetcher
from utils.job_runner import JobRunner
from utils.orchestrator import JobOrchestrator
from utils.status_store import JobStatusStore
from utils.storage import StorageClient
from utils.transcoder import Transcoder
from utils.uploader import FileCheckpointStore, MemoryCheckpointStore, ResumableUploader
from utils.video_records import VideoRecordStore, create_session_factory
from utils.workspace import WorkspaceManager

logger = logging.getLogger(__name__)


class Services:
    """Everything the HTTP layer needs, created once per process."""

    def __init__(self, settings, status_store, records, orchestrator, runner, verifier):
        self.settings = settings
        self.status_store = status_store
        self.records = records
        self.orchestrator = orchestrator
        self.runner = runner
        self.verifier = verifier

    @classmethod
    def from_settings(cls, settings, storage=None, fetcher=None, transcoder=None):
        storage = storage or StorageClient(settings)
        if settings.upload_checkpoint_dir:
            checkpoints = FileCheckpointStore(settings.upload_checkpoint_dir)
        else:
            checkpoints = MemoryCheckpointStore()
        uploader = ResumableUploader(
            storage,
            chunk_size=settings.upload_chunk_size,
            retry_delays=settings.upload_retry_delays,
            checkpoints=checkpoints,
        )
        status_store = JobStatusStore()
        records = VideoRecordStore(create_session_factory(settings.database_url))
        orchestrator = JobOrchestrator(
            settings,
            status_store=status_store,
            records=records,
            workspaces=WorkspaceManager(settings.workspace_root),
            fetcher=fetcher or SourceFetcher(),
            transcoder=transcoder or Transcoder(settings.ffmpeg_binary),
            uploader=uploader,
            storage=storage,
        )
        logger.info(
            f"Services ready (max in-flight jobs: {settings.max_in_flight_jobs or 'unbounded'}, "
            f"token verification: {'signed' if settings.auth_jwt_secret else 'unsigned'})"
        )
        return cls(
            settings,
            status_store=status_store,
            records=records,
            orchestrator=orchestrator,
            runner=JobRunner(settings.max_in_flight_jobs),
            verifier=TokenVerifier(settings.auth_jwt_secret, settings.auth_allow_unverified_tokens),
        )
