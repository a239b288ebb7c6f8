import pytest
from sqlalchemy.exc import OperationalError

from models.video import UploadStatus
from utils.errors import RecordPersistError
from utils.video_records import VideoRecordStore, create_session_factory


@pytest.fixture
def records(tmp_path):
    return VideoRecordStore(create_session_factory(f"sqlite:///{tmp_path / 'records.db'}"))


def test_create_starts_in_processing(records):
    video = records.create("user-1", "user-1/clip.mov", product_id="p1", asin="B000TEST", title="Clip")

    stored = records.get(video.id)
    assert stored.upload_status == UploadStatus.PROCESSING
    assert stored.user_id == "user-1"
    assert stored.asin == "B000TEST"
    assert stored.transcoded_url is None
    assert stored.error_message is None


def test_mark_completed_sets_url_and_size(records):
    video = records.create("user-1", "user-1/clip.mov")

    records.mark_completed(video.id, "https://cdn.test/clip.mp4", 1234)

    stored = records.get(video.id)
    assert stored.upload_status == UploadStatus.COMPLETED
    assert stored.transcoded_url == "https://cdn.test/clip.mp4"
    assert stored.error_message is None
    assert stored.file_size == 1234
    assert stored.processed_at is not None


def test_mark_failed_sets_error_and_clears_url(records):
    video = records.create("user-1", "user-1/clip.mov")

    records.mark_failed(video.id, "Download timed out after 600s")

    stored = records.get(video.id)
    assert stored.upload_status == UploadStatus.FAILED
    assert stored.error_message == "Download timed out after 600s"
    assert stored.transcoded_url is None


def test_mark_failed_truncates_long_messages(records):
    video = records.create("user-1", "user-1/clip.mov")

    records.mark_failed(video.id, "x" * 10_000)

    assert len(records.get(video.id).error_message) == 4000


def test_updating_missing_record_raises(records):
    with pytest.raises(RecordPersistError, match="does not exist"):
        records.mark_completed("missing", "https://cdn.test/x.mp4", 1)


def test_database_errors_become_record_persist_errors():
    def broken_session():
        raise OperationalError("UPDATE videos", {}, Exception("database is locked"))

    records = VideoRecordStore(broken_session)

    with pytest.raises(RecordPersistError):
        records.create("user-1", "user-1/clip.mov")
    with pytest.raises(RecordPersistError):
        records.mark_failed("some-id", "boom")
