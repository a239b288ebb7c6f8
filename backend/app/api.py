import asyncio
import logging
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.auth import Principal
from app.services import Services
from models.job import (
    Job,
    JobStatusResponse,
    ProcessVideoRequest,
    ProcessVideoResponse,
    TranscodeRequest,
    TranscodeResponse,
    job_id_for,
    video_id_for,
)
from models.video import UploadStatus
from utils.errors import RecordPersistError
from utils.job_runner import JobAlreadyRunning

# Set up logging
logger = logging.getLogger(__name__)

# Create routers
router = APIRouter()
legacy_router = APIRouter()


def _error(status_code, message):
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


# Dependencies
def get_services(request: Request) -> Services:
    return request.app.state.services


def get_principal(request: Request, services: Services = Depends(get_services)) -> Principal:
    # AuthError is turned into a 401 by the app's exception handler
    return services.verifier.authenticate(request.headers.get("authorization"))


# API endpoints
@router.post("/videos/process", response_model=ProcessVideoResponse, response_model_by_alias=True)
async def process_video(
    body: ProcessVideoRequest,
    principal: Principal = Depends(get_principal),
    services: Services = Depends(get_services),
):
    """Register a video and start transcoding it in the background."""
    storage_path = (body.storage_path or "").strip()
    if not storage_path:
        return _error(400, "storagePath is required")

    try:
        video = await asyncio.to_thread(
            services.records.create,
            principal.user_id,
            storage_path,
            product_id=body.product_id,
            asin=body.asin,
            title=body.title,
        )
    except RecordPersistError as e:
        logger.error(f"Failed to register video for user {principal.user_id}: {str(e)}")
        return _error(500, "Failed to create video record")

    job = Job(
        job_id=job_id_for(video.id),
        video_id=video.id,
        storage_path=storage_path,
        owner_id=principal.user_id,
        authorization=principal.authorization,
    )
    try:
        services.runner.submit(
            job.job_id,
            services.orchestrator.run(job),
            on_abandoned=lambda: services.orchestrator.abandon(job),
        )
    except JobAlreadyRunning as e:
        return _error(409, str(e))

    logger.info(f"Registered video {video.id} as job {job.job_id}")
    return ProcessVideoResponse(video_id=video.id, job_id=job.job_id)


@router.get("/videos/status/{job_id}", response_model=JobStatusResponse, response_model_by_alias=True)
async def get_job_status(
    job_id: str,
    principal: Principal = Depends(get_principal),
    services: Services = Depends(get_services),
):
    """Job status from memory, falling back to the durable record after a restart."""
    status = services.status_store.get(job_id)
    if status is not None:
        return JobStatusResponse(
            job_id=status.job_id,
            video_id=status.video_id,
            status=status.status,
            step=status.state.value,
            progress=status.progress,
            transcoded_url=status.transcoded_url,
            error=status.error_message,
            updated_at=status.updated_at,
        )

    video_id = video_id_for(job_id)
    video = await asyncio.to_thread(services.records.get, video_id)
    if video is None:
        logger.warning(f"Job not found: {job_id}")
        return _error(404, "Job not found")

    terminal = video.upload_status in (UploadStatus.COMPLETED, UploadStatus.FAILED)
    return JobStatusResponse(
        job_id=job_id_for(video.id),
        video_id=video.id,
        status=video.upload_status.value,
        progress=100 if video.upload_status == UploadStatus.COMPLETED else None,
        transcoded_url=video.transcoded_url,
        error=video.error_message,
        file_size=video.file_size,
        source="record",
        updated_at=video.updated_at if terminal else video.created_at,
    )


@legacy_router.post("/transcode", response_model=TranscodeResponse, response_model_by_alias=True)
async def transcode(
    request: Request,
    body: TranscodeRequest,
    services: Services = Depends(get_services),
):
    """Download, transcode and upload in one request; nothing is tracked or recorded."""
    if not body.video_url:
        return JSONResponse(status_code=400, content={"error": "videoUrl is required"})

    logger.info(f"Transcoding request for: {body.video_url}")
    try:
        url, file_name = await services.orchestrator.transcode_once(
            body.video_url, request.headers.get("authorization")
        )
    except Exception as e:
        logger.exception("Transcoding error")
        return JSONResponse(status_code=500, content={"error": "Transcoding failed", "message": str(e)})

    logger.info(f"Transcoding complete: {url}")
    return TranscodeResponse(transcoded_url=url, file_name=file_name)
