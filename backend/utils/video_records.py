import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from models.video import Base, UploadStatus, Video
from .errors import RecordPersistError

logger = logging.getLogger(__name__)

# Stored error messages are truncated to this many characters
MAX_ERROR_LENGTH = 4000


def create_session_factory(database_url: str):
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    engine = create_engine(database_url, connect_args=connect_args, pool_pre_ping=True)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


class VideoRecordStore:
    """Durable video records. Every failure to write surfaces as RecordPersistError."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def create(self, owner_id, storage_path, product_id=None, asin=None, title=None) -> Video:
        video = Video(
            user_id=owner_id,
            storage_path=storage_path,
            product_id=product_id,
            asin=asin,
            title=title,
            upload_status=UploadStatus.PROCESSING,
        )
        try:
            with self.session_factory() as session:
                session.add(video)
                session.commit()
        except SQLAlchemyError as e:
            raise RecordPersistError(f"Failed to create video record: {str(e)}") from e
        logger.info(f"Created video record {video.id} for user {owner_id}")
        return video

    def get(self, video_id) -> Optional[Video]:
        with self.session_factory() as session:
            return session.get(Video, video_id)

    def mark_completed(self, video_id, transcoded_url, file_size):
        self._update(
            video_id,
            upload_status=UploadStatus.COMPLETED,
            transcoded_url=transcoded_url,
            file_size=file_size,
            error_message=None,
        )
        logger.info(f"Video {video_id}: marked completed ({file_size} bytes)")

    def mark_failed(self, video_id, message):
        self._update(
            video_id,
            upload_status=UploadStatus.FAILED,
            transcoded_url=None,
            error_message=(message or "Unknown error")[:MAX_ERROR_LENGTH],
        )
        logger.info(f"Video {video_id}: marked failed")

    def _update(self, video_id, **fields):
        try:
            with self.session_factory() as session:
                video = session.get(Video, video_id)
                if video is None:
                    raise RecordPersistError(f"Video record {video_id} does not exist")
                for name, value in fields.items():
                    setattr(video, name, value)
                video.processed_at = datetime.now(timezone.utc)
                session.commit()
        except SQLAlchemyError as e:
            raise RecordPersistError(f"Failed to update video record {video_id}: {str(e)}") from e
