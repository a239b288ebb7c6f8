import os
import logging
import tempfile
from typing import List, Optional, Tuple

from dotenv import load_dotenv

from .errors import ConfigError

logger = logging.getLogger(__name__)

MIN_CHUNK_SIZE = 5 * 1024 * 1024
DEFAULT_CHUNK_SIZE = 6 * 1024 * 1024


def _as_bool(value, default):
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _as_list(value, default):
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings:
    def __init__(
        self,
        storage_endpoint_url: str,
        storage_access_key_id: str,
        storage_secret_access_key: str,
        storage_region: str = "us-east-1",
        storage_public_url: Optional[str] = None,
        source_bucket: str = "videos",
        transcoded_bucket: str = "transcoded-videos",
        legacy_bucket: str = "social-media-temp",
        database_url: str = "sqlite:///./videos.db",
        auth_jwt_secret: Optional[str] = None,
        auth_allow_unverified_tokens: bool = True,
        download_timeout_seconds: float = 600.0,
        upload_chunk_size: int = DEFAULT_CHUNK_SIZE,
        upload_retry_delays: Tuple[float, ...] = (0, 1, 3, 5),
        upload_checkpoint_dir: Optional[str] = None,
        max_in_flight_jobs: Optional[int] = None,
        ffmpeg_binary: str = "ffmpeg",
        workspace_root: Optional[str] = None,
        cors_origins: Optional[List[str]] = None,
        port: int = 3000,
    ):
        if not storage_endpoint_url or not storage_access_key_id or not storage_secret_access_key:
            raise ConfigError(
                "Missing required environment variables: STORAGE_ENDPOINT_URL, "
                "STORAGE_ACCESS_KEY_ID, STORAGE_SECRET_ACCESS_KEY"
            )
        if upload_chunk_size < MIN_CHUNK_SIZE:
            raise ConfigError(f"UPLOAD_CHUNK_SIZE must be at least {MIN_CHUNK_SIZE} bytes")
        if max_in_flight_jobs is not None and max_in_flight_jobs < 1:
            raise ConfigError("MAX_IN_FLIGHT_JOBS must be a positive integer")

        self.storage_endpoint_url = storage_endpoint_url.rstrip("/")
        self.storage_access_key_id = storage_access_key_id
        self.storage_secret_access_key = storage_secret_access_key
        self.storage_region = storage_region
        self.storage_public_url = (storage_public_url or self.storage_endpoint_url).rstrip("/")
        self.source_bucket = source_bucket
        self.transcoded_bucket = transcoded_bucket
        self.legacy_bucket = legacy_bucket
        self.database_url = database_url
        self.auth_jwt_secret = auth_jwt_secret or None
        self.auth_allow_unverified_tokens = auth_allow_unverified_tokens
        self.download_timeout_seconds = download_timeout_seconds
        self.upload_chunk_size = upload_chunk_size
        self.upload_retry_delays = tuple(upload_retry_delays)
        self.upload_checkpoint_dir = upload_checkpoint_dir
        self.max_in_flight_jobs = max_in_flight_jobs
        self.ffmpeg_binary = ffmpeg_binary
        self.workspace_root = workspace_root or tempfile.gettempdir()
        self.cors_origins = cors_origins or ["*"]
        self.port = port

    @classmethod
    def from_env(cls, env_file=None):
        """Build settings from the process environment (and an optional .env file)."""
        load_dotenv(env_file)

        try:
            retry_delays = tuple(float(d) for d in _as_list(os.getenv("UPLOAD_RETRY_DELAYS"), ["0", "1", "3", "5"]))
            max_in_flight = os.getenv("MAX_IN_FLIGHT_JOBS")
            settings = cls(
                storage_endpoint_url=os.getenv("STORAGE_ENDPOINT_URL", ""),
                storage_access_key_id=os.getenv("STORAGE_ACCESS_KEY_ID", ""),
                storage_secret_access_key=os.getenv("STORAGE_SECRET_ACCESS_KEY", ""),
                storage_region=os.getenv("STORAGE_REGION", "us-east-1"),
                storage_public_url=os.getenv("STORAGE_PUBLIC_URL"),
                source_bucket=os.getenv("SOURCE_BUCKET", "videos"),
                transcoded_bucket=os.getenv("TRANSCODED_BUCKET", "transcoded-videos"),
                legacy_bucket=os.getenv("LEGACY_BUCKET", "social-media-temp"),
                database_url=os.getenv("DATABASE_URL", "sqlite:///./videos.db"),
                auth_jwt_secret=os.getenv("AUTH_JWT_SECRET"),
                auth_allow_unverified_tokens=_as_bool(os.getenv("AUTH_ALLOW_UNVERIFIED_TOKENS"), True),
                download_timeout_seconds=float(os.getenv("DOWNLOAD_TIMEOUT_SECONDS", "600")),
                upload_chunk_size=int(os.getenv("UPLOAD_CHUNK_SIZE", str(DEFAULT_CHUNK_SIZE))),
                upload_retry_delays=retry_delays,
                upload_checkpoint_dir=os.getenv("UPLOAD_CHECKPOINT_DIR") or None,
                max_in_flight_jobs=int(max_in_flight) if max_in_flight else None,
                ffmpeg_binary=os.getenv("FFMPEG_BINARY", "ffmpeg"),
                workspace_root=os.getenv("WORKSPACE_ROOT") or None,
                cors_origins=_as_list(os.getenv("CORS_ORIGINS"), ["*"]),
                port=int(os.getenv("PORT", "3000")),
            )
        except ValueError as e:
            raise ConfigError(f"Invalid configuration value: {str(e)}") from e

        if not settings.auth_jwt_secret:
            if settings.auth_allow_unverified_tokens:
                logger.warning(
                    "AUTH_JWT_SECRET is not set: bearer tokens are decoded WITHOUT signature "
                    "verification (AUTH_ALLOW_UNVERIFIED_TOKENS=true)"
                )
            else:
                logger.warning("AUTH_JWT_SECRET is not set and unverified tokens are disabled: all requests will be rejected")

        return settings


def cors_origins_from_env():
    load_dotenv()
    return _as_list(os.getenv("CORS_ORIGINS"), ["*"])
