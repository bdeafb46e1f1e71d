"""Episode repository for processing-state updates."""

import math
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.episode.models import Episode


class EpisodeNotFoundError(Exception):
    """Raised when an episode does not exist."""

    def __init__(self, episode_id: int):
        self.episode_id = episode_id
        super().__init__(f"Episode {episode_id} not found")


class EpisodeRepository:
    """Repository for Episode processing fields."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, episode_id: int) -> Optional[Episode]:
        result = await self.session.execute(
            select(Episode).where(Episode.id == episode_id)
        )
        return result.scalar_one_or_none()

    async def get_for_movie(self, movie_id: int, episode_id: int) -> Optional[Episode]:
        result = await self.session.execute(
            select(Episode).where(
                Episode.id == episode_id,
                Episode.movie_id == movie_id,
            )
        )
        return result.scalar_one_or_none()

    async def _require(self, episode_id: int) -> Episode:
        episode = await self.get_by_id(episode_id)
        if episode is None:
            raise EpisodeNotFoundError(episode_id)
        return episode

    async def mark_processing_started(self, episode_id: int) -> Episode:
        """Reset the processing fields before a new job runs.

        The previous ``playlist_url`` stays so a failed re-encode does not
        take down a playable episode.
        """
        episode = await self._require(episode_id)
        episode.is_processed = False
        episode.processing_error = None
        await self.session.flush()
        return episode

    async def mark_processed(
        self,
        episode_id: int,
        playlist_url: str,
        thumbnail_url: Optional[str],
        duration: float,
    ) -> Episode:
        """Record a successful job.

        Args:
            episode_id: Episode ID
            playlist_url: Public URL of the master playlist
            thumbnail_url: Public URL of the thumbnail
            duration: Source duration in seconds, stored floored

        Returns:
            Updated episode
        """
        episode = await self._require(episode_id)
        episode.is_processed = True
        episode.processing_error = None
        episode.playlist_url = playlist_url
        episode.thumbnail_url = thumbnail_url
        episode.duration = int(math.floor(duration))
        await self.session.flush()
        return episode

    async def mark_failed(self, episode_id: int, error: str) -> Optional[Episode]:
        """Record a failed job. Missing episodes are ignored."""
        episode = await self.get_by_id(episode_id)
        if episode is None:
            return None
        episode.is_processed = False
        episode.processing_error = error
        await self.session.flush()
        return episode
