from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime, timezone

JOB_ID_PREFIX = "job_"


def job_id_for(video_id: str) -> str:
    return f"{JOB_ID_PREFIX}{video_id}"


def video_id_for(job_id: str) -> str:
    if job_id.startswith(JOB_ID_PREFIX):
        return job_id[len(JOB_ID_PREFIX):]
    return job_id


def utcnow():
    return datetime.now(timezone.utc)


class JobState(str, Enum):
    DOWNLOADING = "downloading"
    TRANSCODING = "transcoding"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self):
        return self in (JobState.COMPLETED, JobState.FAILED)

    @property
    def rank(self):
        return _STATE_ORDER.index(self)


_STATE_ORDER = [JobState.DOWNLOADING, JobState.TRANSCODING, JobState.UPLOADING, JobState.COMPLETED]


class JobStatus(BaseModel):
    """Immutable snapshot of a job's progress as held by the status store."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    video_id: str
    state: JobState
    progress: int = 0
    transcoded_url: Optional[str] = None
    error_message: Optional[str] = None
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def status(self) -> str:
        """Coarse status: ``processing`` until the job reaches a terminal state."""
        if self.state.is_terminal:
            return self.state.value
        return "processing"

    @property
    def label(self) -> str:
        if self.state.is_terminal:
            return self.state.value
        return f"processing:{self.state.value}"


class Job(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_id: str
    video_id: str
    storage_path: str
    owner_id: str
    authorization: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


# Request and response models
class ProcessVideoRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    storage_path: Optional[str] = Field(default=None, alias="storagePath")
    product_id: Optional[str] = Field(default=None, alias="productId")
    asin: Optional[str] = None
    title: Optional[str] = None


class ProcessVideoResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    video_id: str = Field(alias="videoId")
    job_id: str = Field(alias="jobId")
    status: str = "processing"


class JobStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    job_id: str = Field(alias="jobId")
    video_id: str = Field(alias="videoId")
    status: str
    step: Optional[str] = None
    progress: Optional[int] = None
    transcoded_url: Optional[str] = Field(default=None, alias="transcodedUrl")
    error: Optional[str] = None
    file_size: Optional[int] = Field(default=None, alias="fileSize")
    source: str = "memory"
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")


class TranscodeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    video_url: Optional[str] = Field(default=None, alias="videoUrl")


class TranscodeResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transcoded_url: str = Field(alias="transcodedUrl")
    file_name: str = Field(alias="fileName")
