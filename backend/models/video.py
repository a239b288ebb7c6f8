import uuid
import enum
from datetime import datetime, timezone
from sqlalchemy import Column, String, Text, BigInteger, DateTime, Enum as SqlEnum, Index
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow():
    return datetime.now(timezone.utc)


class UploadStatus(str, enum.Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Video(Base):
    """
    One uploaded video and the outcome of transcoding it.
    completed <=> transcoded_url set and error_message empty; failed <=> error_message set.
    """
    __tablename__ = "videos"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False)
    storage_path = Column(Text, nullable=False)
    product_id = Column(String, nullable=True)
    asin = Column(String, nullable=True)
    title = Column(String, nullable=True)

    upload_status = Column(
        SqlEnum(UploadStatus, name="upload_status_enum", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=UploadStatus.PROCESSING,
    )
    transcoded_url = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    file_size = Column(BigInteger, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_videos_user_id", "user_id"),
        Index("idx_videos_upload_status", "upload_status"),
    )
