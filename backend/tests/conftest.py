import hashlib
import itertools
import os

import jwt
import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from utils.config import Settings
from utils.errors import TranscodeError
from utils.status_store import JobStatusStore
from utils.storage import StorageClient

TEST_SECRET = "test-secret"


def client_error(code, operation):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeS3Client:
    """In-memory stand-in for the boto3 S3 client calls the service makes."""

    def __init__(self):
        self.objects = {}
        self.object_args = {}
        self.uploads = {}
        self.part_calls = []
        self.created_uploads = 0
        # set to a callable(part_number) -> bool to make upload_part fail
        self.fail_part = None
        self._ids = itertools.count(1)

    def head_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise client_error("404", "HeadObject")
        return {"ContentLength": len(self.objects[(Bucket, Key)])}

    def put_object(self, Bucket, Key, Body, **kwargs):
        self.objects[(Bucket, Key)] = bytes(Body)
        self.object_args[(Bucket, Key)] = kwargs
        return {"ETag": '"%s"' % hashlib.md5(bytes(Body)).hexdigest()}

    def create_multipart_upload(self, Bucket, Key, **kwargs):
        upload_id = f"upload-{next(self._ids)}"
        self.created_uploads += 1
        self.uploads[upload_id] = {"bucket": Bucket, "key": Key, "parts": {}, "kwargs": kwargs}
        return {"UploadId": upload_id, "Bucket": Bucket, "Key": Key}

    def upload_part(self, Bucket, Key, UploadId, PartNumber, Body):
        if UploadId not in self.uploads:
            raise client_error("NoSuchUpload", "UploadPart")
        self.part_calls.append(PartNumber)
        if self.fail_part is not None and self.fail_part(PartNumber):
            raise EndpointConnectionError(endpoint_url="https://storage.test")
        etag = '"%s"' % hashlib.md5(Body).hexdigest()
        self.uploads[UploadId]["parts"][PartNumber] = (etag, bytes(Body))
        return {"ETag": etag}

    def list_parts(self, Bucket, Key, UploadId, PartNumberMarker=0):
        if UploadId not in self.uploads:
            raise client_error("NoSuchUpload", "ListParts")
        parts = self.uploads[UploadId]["parts"]
        return {
            "Parts": [
                {"PartNumber": number, "ETag": etag, "Size": len(data)}
                for number, (etag, data) in sorted(parts.items())
                if number > PartNumberMarker
            ],
            "IsTruncated": False,
        }

    def complete_multipart_upload(self, Bucket, Key, UploadId, MultipartUpload):
        upload = self.uploads.pop(UploadId)
        chunks = []
        for part in MultipartUpload["Parts"]:
            etag, data = upload["parts"][part["PartNumber"]]
            assert etag == part["ETag"]
            chunks.append(data)
        self.objects[(Bucket, Key)] = b"".join(chunks)
        self.object_args[(Bucket, Key)] = upload["kwargs"]
        return {"Bucket": Bucket, "Key": Key}

    def generate_presigned_url(self, ClientMethod, Params, ExpiresIn):
        return f"https://storage.test/{Params['Bucket']}/{Params['Key']}?X-Amz-Signature=fake"


class FakeTranscoder:
    """Writes a deterministic 'transcoded' file instead of running ffmpeg."""

    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    async def transcode(self, input_path, output_path):
        self.calls.append((input_path, output_path))
        if self.fail:
            raise TranscodeError(
                "FFmpeg exited with status 1: Invalid data found when processing input",
                stderr="Invalid data found when processing input",
            )
        with open(input_path, "rb") as src, open(output_path, "wb") as dst:
            dst.write(b"MP4:")
            for block in iter(lambda: src.read(1024 * 1024), b""):
                dst.write(block[: len(block) // 2])
        return output_path


class RecordingStatusStore(JobStatusStore):
    def __init__(self):
        super().__init__()
        self.history = []

    def set(self, status):
        super().set(status)
        self.history.append((status.job_id, status.state.value, status.progress))

    def states(self, job_id):
        return [state for recorded_id, state, _ in self.history if recorded_id == job_id]


def make_token(sub="user-1", secret=TEST_SECRET):
    return jwt.encode({"sub": sub, "role": "authenticated"}, secret, algorithm="HS256")


@pytest.fixture
def settings_factory(tmp_path):
    def factory(**overrides):
        values = dict(
            storage_endpoint_url="https://storage.test",
            storage_access_key_id="test-key",
            storage_secret_access_key="test-secret-key",
            storage_public_url="https://cdn.test/public",
            database_url=f"sqlite:///{tmp_path / 'videos.db'}",
            auth_jwt_secret=TEST_SECRET,
            download_timeout_seconds=5,
            upload_retry_delays=(0, 0),
            workspace_root=str(tmp_path / "workspaces"),
        )
        values.update(overrides)
        return Settings(**values)

    return factory


@pytest.fixture
def settings(settings_factory):
    return settings_factory()


@pytest.fixture
def fake_s3():
    return FakeS3Client()


@pytest.fixture
def storage(settings, fake_s3):
    return StorageClient(settings, s3_client=fake_s3)


@pytest.fixture
def workspace_root(settings):
    return settings.workspace_root


def workspace_dirs(root):
    if not os.path.exists(root):
        return []
    return os.listdir(root)
