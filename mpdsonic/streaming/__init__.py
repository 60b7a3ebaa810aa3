"""
Streaming module for mpdsonic.

Transcodes songs to Ogg/Opus for streaming to clients.
"""

from mpdsonic.streaming.transcoder import (
    BITRATES,
    TranscodeStream,
    build_ffmpeg_args,
    select_bitrate,
    stop_process,
    transcode_stream,
)

__all__ = [
    "BITRATES",
    "TranscodeStream",
    "build_ffmpeg_args",
    "select_bitrate",
    "stop_process",
    "transcode_stream",
]
