"""Adaptive Stream Packager Backend Application.

Accepts video uploads and publishes them as HLS adaptive-bitrate packages.

Modules:
    - core: Configuration, database, logging, metrics, Celery setup
    - modules.transcoding: Probing, ladder derivation, encoding and job tracking
"""

__version__ = "0.1.0"
