"""Application modules.

- episode: Episode records and their processing state
- transcoding: Source video ingestion into HLS, jobs, storage layout and the media API
"""
