"""Transcoding module for episode ingestion.

Probes an uploaded source, extracts a thumbnail, encodes an adaptive-bitrate
ladder of fMP4 HLS renditions with ffmpeg, publishes the package to storage
and records the outcome on the episode.
"""
