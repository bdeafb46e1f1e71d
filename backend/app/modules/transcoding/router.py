"""API Router for episode media processing."""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_session
from app.core.storage import StorageError
from app.modules.episode.repository import EpisodeNotFoundError
from app.modules.episode.schemas import EpisodeProcessingStatus
from app.modules.transcoding.exceptions import JobConflictError, JobDispatchError
from app.modules.transcoding.schemas import (
    DeleteMediaResponse,
    EncodingJobResponse,
    PresignedUploadRequest,
    PresignedUploadResponse,
    ProcessVideoRequest,
    ProcessVideoResponse,
    UploadVideoResponse,
)
from app.modules.transcoding.service import TranscodingService
from app.modules.transcoding.storage import MissingEpisodeError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/media", tags=["media"])


def get_transcoding_service(session: AsyncSession = Depends(get_session)) -> TranscodingService:
    """Dependency to get TranscodingService instance."""
    return TranscodingService(session)


def verify_worker_secret(x_worker_secret: Optional[str] = Header(None)) -> None:
    """Reject callers that do not present the shared worker secret.

    The check is skipped when no WORKER_SECRET is configured.
    """
    if not settings.WORKER_SECRET:
        return
    if x_worker_secret is None or not hmac.compare_digest(x_worker_secret, settings.WORKER_SECRET):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid worker secret")


@router.post(
    "/process-video",
    response_model=ProcessVideoResponse,
    dependencies=[Depends(verify_worker_secret)],
)
async def process_video(
    request: ProcessVideoRequest,
    service: TranscodingService = Depends(get_transcoding_service),
) -> ProcessVideoResponse:
    """Queue HLS processing of an uploaded episode video.

    Returns as soon as the job is recorded; encoding runs in the background.
    """
    try:
        job = await service.submit_job(request)
    except EpisodeNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except JobConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except JobDispatchError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return ProcessVideoResponse(success=True, job_id=job.id)


@router.post(
    "/episodes/{movie_id}/{episode_id}/video",
    response_model=UploadVideoResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def upload_episode_video(
    movie_id: int,
    episode_id: int,
    file: UploadFile = File(...),
    callback_url: Optional[str] = Form(None, alias="callbackUrl"),
    service: TranscodingService = Depends(get_transcoding_service),
) -> UploadVideoResponse:
    """Upload an episode's source video and queue its processing."""
    try:
        job, key = await service.upload_and_submit(movie_id, episode_id, file, callback_url)
    except EpisodeNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except JobConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except JobDispatchError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except StorageError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return UploadVideoResponse(success=True, job_id=job.id, original_key=key)


@router.get("/episodes/{episode_id}/processing-status", response_model=EpisodeProcessingStatus)
async def get_processing_status(
    episode_id: int,
    service: TranscodingService = Depends(get_transcoding_service),
) -> EpisodeProcessingStatus:
    try:
        return await service.get_processing_status(episode_id)
    except EpisodeNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.get("/jobs/{job_id}", response_model=EncodingJobResponse)
async def get_job(
    job_id: str,
    service: TranscodingService = Depends(get_transcoding_service),
) -> EncodingJobResponse:
    job = await service.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return EncodingJobResponse.model_validate(job)


@router.post("/presigned-url", response_model=PresignedUploadResponse)
async def create_presigned_url(
    request: PresignedUploadRequest,
    service: TranscodingService = Depends(get_transcoding_service),
) -> PresignedUploadResponse:
    """Presign a direct upload of a poster, backdrop, trailer, video or thumbnail."""
    try:
        return service.create_presigned_upload(request)
    except MissingEpisodeError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except StorageError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


@router.delete("/episodes/{movie_id}/{episode_id}/media", response_model=DeleteMediaResponse)
async def delete_episode_media(
    movie_id: int,
    episode_id: int,
    service: TranscodingService = Depends(get_transcoding_service),
) -> DeleteMediaResponse:
    """Best-effort removal of an episode's original, thumbnail and HLS files."""
    return await service.delete_episode_media(movie_id, episode_id)
