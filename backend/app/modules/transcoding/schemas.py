"""Pydantic schemas for the media processing API."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from app.modules.transcoding.storage import UploadFileType

_CAMEL = {"populate_by_name": True}


class ProcessVideoRequest(BaseModel):
    """Request to encode an already uploaded source video."""
    video_key: str = Field(..., alias="videoKey", min_length=1, description="Storage key of the source")
    movie_id: int = Field(..., alias="movieId")
    episode_id: int = Field(..., alias="episodeId")
    job_id: Optional[str] = Field(None, alias="jobId", max_length=64)
    callback_url: Optional[str] = Field(None, alias="callbackUrl")

    model_config = _CAMEL

    @field_validator("video_key")
    @classmethod
    def validate_video_key(cls, v: str) -> str:
        """Only relative keys inside the bucket are accepted."""
        if v.startswith(("/", "\\")) or ".." in v.replace("\\", "/").split("/"):
            raise ValueError("videoKey must be a relative storage key")
        return v


class ProcessVideoResponse(BaseModel):
    success: bool = True
    job_id: str = Field(..., alias="jobId")

    model_config = _CAMEL


class UploadVideoResponse(BaseModel):
    success: bool = True
    job_id: str = Field(..., alias="jobId")
    original_key: str = Field(..., alias="originalKey")

    model_config = _CAMEL


class PresignedUploadRequest(BaseModel):
    movie_id: int = Field(..., alias="movieId")
    episode_id: Optional[int] = Field(None, alias="episodeId")
    file_type: UploadFileType = Field(..., alias="fileType")

    model_config = _CAMEL


class PresignedUploadResponse(BaseModel):
    presigned_url: str = Field(..., alias="presignedUrl")
    key: str
    content_type: str = Field(..., alias="contentType")
    cdn_url: str = Field(..., alias="cdnUrl")

    model_config = _CAMEL


class DeleteMediaResponse(BaseModel):
    """Result of best-effort media cleanup; failed steps are listed, not raised."""
    success: bool
    deleted: int = 0
    errors: list[str] = Field(default_factory=list)


class EncodingJobResponse(BaseModel):
    """Schema for encoding job response."""
    id: str
    movie_id: int
    episode_id: int
    source: str
    callback_url: Optional[str]
    state: str
    error_message: Optional[str]
    worker_hostname: Optional[str]
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True
