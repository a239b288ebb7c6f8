import os
import json
import time
import hashlib
import logging
import threading
from typing import Callable, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .errors import UploadError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


def _error_code(exc):
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code")
    return None


class MemoryCheckpointStore:
    """Maps a content fingerprint to the open multipart upload it belongs to."""

    def __init__(self):
        self._checkpoints: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def get(self, fingerprint):
        with self._lock:
            return self._checkpoints.get(fingerprint)

    def save(self, fingerprint, checkpoint):
        with self._lock:
            self._checkpoints[fingerprint] = dict(checkpoint)

    def remove(self, fingerprint):
        with self._lock:
            self._checkpoints.pop(fingerprint, None)


class FileCheckpointStore:
    """Checkpoint store that survives restarts: one JSON file per fingerprint."""

    def __init__(self, directory):
        self.directory = directory
        os.makedirs(self.directory, exist_ok=True)

    def _path(self, fingerprint):
        return os.path.join(self.directory, f"{fingerprint}.json")

    def get(self, fingerprint):
        try:
            with open(self._path(fingerprint)) as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable upload checkpoint {fingerprint}: {str(e)}")
            return None

    def save(self, fingerprint, checkpoint):
        tmp_path = self._path(fingerprint) + ".tmp"
        with open(tmp_path, "w") as f:
            json.dump(checkpoint, f)
        os.replace(tmp_path, self._path(fingerprint))

    def remove(self, fingerprint):
        try:
            os.remove(self._path(fingerprint))
        except FileNotFoundError:
            pass


class ResumableUploader:
    """Chunked, resumable uploads over the S3 multipart-upload protocol.

    A transfer is identified by a fingerprint of its destination and content.
    When an earlier attempt for the same fingerprint left an open multipart
    upload behind, the parts the store already acknowledged are kept and only
    the remaining ones are sent. Nothing is readable at the destination key
    until the final ``complete_multipart_upload`` succeeds.
    """

    def __init__(
        self,
        storage,
        chunk_size: int,
        retry_delays=(0, 1, 3, 5),
        checkpoints=None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.storage = storage
        self.s3_client = storage.s3_client
        self.chunk_size = chunk_size
        self.retry_delays = tuple(retry_delays)
        self.checkpoints = checkpoints if checkpoints is not None else MemoryCheckpointStore()
        self.sleep = sleep

    def upload(
        self,
        bucket: str,
        local_path: str,
        dest_key: str,
        content_type: str = "video/mp4",
        upsert: bool = False,
        cache_control: str = "max-age=3600",
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """Upload ``local_path`` to ``bucket/dest_key`` and return its public URL.

        With ``upsert=False`` an existing object at the destination is an error.
        """
        if not os.path.exists(local_path):
            raise UploadError(f"File does not exist: {local_path}")

        total = os.path.getsize(local_path)
        logger.info(f"Uploading {local_path} ({total} bytes) -> {bucket}/{dest_key}")

        if not upsert:
            try:
                exists = self.storage.object_exists(bucket, dest_key)
            except (ClientError, BotoCoreError) as e:
                raise UploadError(f"Failed to check destination {bucket}/{dest_key}: {str(e)}") from e
            if exists:
                raise UploadError(f"Object already exists: {bucket}/{dest_key}")

        if total == 0:
            # multipart uploads need at least one non-empty part
            self._with_retries(
                "put empty object",
                lambda: self.s3_client.put_object(
                    Bucket=bucket, Key=dest_key, Body=b"", ContentType=content_type, CacheControl=cache_control
                ),
            )
            self._report(on_progress, 0, 0)
            return self.storage.public_url(bucket, dest_key)

        fingerprint = self.fingerprint(local_path, bucket, dest_key)
        upload_id, acknowledged = self._resume_or_start(fingerprint, bucket, dest_key, content_type, cache_control)

        parts = []
        sent = 0
        skipped = 0
        with open(local_path, "rb") as f:
            part_number = 1
            while True:
                data = f.read(self.chunk_size)
                if not data:
                    break
                digest = hashlib.md5(data).hexdigest()
                previous = acknowledged.get(part_number)
                if previous and previous["ETag"].strip('"') == digest and previous["Size"] == len(data):
                    etag = previous["ETag"]
                    skipped += 1
                else:
                    etag = self._upload_part(fingerprint, bucket, dest_key, upload_id, part_number, data)
                parts.append({"ETag": etag, "PartNumber": part_number})
                sent += len(data)
                self._report(on_progress, sent, total)
                part_number += 1

        if skipped:
            logger.info(f"Resumed upload {upload_id}: {skipped} of {len(parts)} parts were already acknowledged")

        self._with_retries(
            f"complete upload {upload_id}",
            lambda: self.s3_client.complete_multipart_upload(
                Bucket=bucket,
                Key=dest_key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            ),
        )
        self.checkpoints.remove(fingerprint)

        url = self.storage.public_url(bucket, dest_key)
        logger.info(f"Upload successful: {url}")
        return url

    def fingerprint(self, local_path, bucket, dest_key):
        size = os.path.getsize(local_path)
        h = hashlib.sha256(f"{bucket}/{dest_key}:{size}:".encode("utf-8"))
        with open(local_path, "rb") as f:
            for block in iter(lambda: f.read(1024 * 1024), b""):
                h.update(block)
        return h.hexdigest()

    def _resume_or_start(self, fingerprint, bucket, dest_key, content_type, cache_control):
        checkpoint = self.checkpoints.get(fingerprint)
        if checkpoint:
            upload_id = checkpoint["upload_id"]
            try:
                acknowledged = self._list_parts(bucket, dest_key, upload_id)
                logger.info(f"Resuming upload {upload_id} for {bucket}/{dest_key} ({len(acknowledged)} parts acknowledged)")
                return upload_id, acknowledged
            except UploadError as e:
                if _error_code(e.__cause__) != "NoSuchUpload":
                    raise
                logger.warning(f"Upload {upload_id} no longer exists, starting over")
                self.checkpoints.remove(fingerprint)

        response = self._with_retries(
            "create upload",
            lambda: self.s3_client.create_multipart_upload(
                Bucket=bucket, Key=dest_key, ContentType=content_type, CacheControl=cache_control
            ),
        )
        upload_id = response["UploadId"]
        self.checkpoints.save(fingerprint, {"bucket": bucket, "key": dest_key, "upload_id": upload_id})
        logger.info(f"Started multipart upload {upload_id} for {bucket}/{dest_key}")
        return upload_id, {}

    def _list_parts(self, bucket, dest_key, upload_id):
        acknowledged = {}
        marker = 0
        while True:
            response = self._with_retries(
                f"list parts of {upload_id}",
                lambda: self.s3_client.list_parts(
                    Bucket=bucket, Key=dest_key, UploadId=upload_id, PartNumberMarker=marker
                ),
            )
            for part in response.get("Parts", []):
                acknowledged[part["PartNumber"]] = {"ETag": part["ETag"], "Size": part["Size"]}
            if not response.get("IsTruncated"):
                return acknowledged
            marker = response["NextPartNumberMarker"]

    def _upload_part(self, fingerprint, bucket, dest_key, upload_id, part_number, data):
        try:
            response = self._with_retries(
                f"upload part {part_number} of {upload_id}",
                lambda: self.s3_client.upload_part(
                    Bucket=bucket, Key=dest_key, UploadId=upload_id, PartNumber=part_number, Body=data
                ),
            )
        except UploadError as e:
            if _error_code(e.__cause__) == "NoSuchUpload":
                self.checkpoints.remove(fingerprint)
            raise
        return response["ETag"]

    def _with_retries(self, description, operation):
        attempt = 0
        while True:
            try:
                return operation()
            except (ClientError, BotoCoreError) as e:
                if _error_code(e) == "NoSuchUpload" or attempt >= len(self.retry_delays):
                    raise UploadError(f"Failed to {description} after {attempt + 1} attempts: {str(e)}") from e
                delay = self.retry_delays[attempt]
                attempt += 1
                logger.warning(f"Failed to {description} (attempt {attempt}), retrying in {delay:g}s: {str(e)}")
                if delay:
                    self.sleep(delay)

    @staticmethod
    def _report(on_progress, sent, total):
        if on_progress is None:
            return
        try:
            on_progress(sent, total)
        except Exception:
            logger.exception("Upload progress callback failed")
