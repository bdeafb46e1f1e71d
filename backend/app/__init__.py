"""Episode HLS Pipeline Backend Application.

Ingests episode source videos and publishes them as adaptive-bitrate HLS
packages on object storage.

Modules:
    - core: Configuration, database, storage, Celery, logging, metrics and tracing
    - modules.episode: Episode records and processing state
    - modules.transcoding: Encoding jobs, the ffmpeg pipeline and the media API
"""

__version__ = "0.1.0"
