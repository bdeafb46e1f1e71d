"""Pydantic schemas for episode processing status."""

from typing import Optional

from pydantic import BaseModel, Field


class EpisodeProcessingStatus(BaseModel):
    """Processing state of one episode."""

    episode_id: int = Field(..., alias="episodeId")
    is_processed: bool = Field(..., alias="isProcessed")
    processing_error: Optional[str] = Field(None, alias="processingError")
    playlist_url: Optional[str] = Field(None, alias="playlistUrl")
    thumbnail_url: Optional[str] = Field(None, alias="thumbnailUrl")

    model_config = {
        "populate_by_name": True,
        "from_attributes": True,
    }
