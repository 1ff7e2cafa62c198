"""Transcoding module.

Packages uploaded videos as HLS adaptive-bitrate streams: probe the source,
derive a rendition ladder, encode every variant with FFmpeg, write the master
playlist and track the job until it completes or fails.
"""

from app.modules.transcoding.router import router as transcoding_router

__all__ = ["transcoding_router"]
