"""Metadata Proxy Service for Ogg/Vorbis radio streams.

This module follows an upstream Ogg/Vorbis stream, extracts the in-band
Vorbis comment metadata and republishes the current track over HTTP,
both on demand and as a live server-sent event feed.

Version: 1.0.0
"""

__version__ = "1.0.0"

from .config import Config
from .distributor import NOT_AVAILABLE, Distributor
from .models import MetadataRecord

__all__ = ["Config", "Distributor", "MetadataRecord", "NOT_AVAILABLE"]
