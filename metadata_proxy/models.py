"""Metadata record model shared by the parser, the distributor and the API.

A single MetadataRecord is merged field by field from Vorbis comment
entries. Values only change when they actually differ, which keeps
``last_update`` stable across repeated packets with identical content.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

DEFAULT_TITLE = "Unknown"
RESERVED_KEYS = ("artist", "title", "album", "genre")


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


@dataclass
class MetadataRecord:
    """Canonical representation of one metadata snapshot.

    Attributes:
        title: Track title, "Unknown" until a title comment is seen
        artist: Track artist
        album: Album name
        genre: Genre
        extensions: Comment keys that are not one of the reserved names
        last_update: Time of the last actual change (ms since epoch)
    """

    title: str = DEFAULT_TITLE
    artist: Optional[str] = None
    album: Optional[str] = None
    genre: Optional[str] = None
    extensions: Dict[str, str] = field(default_factory=dict)
    last_update: int = field(default_factory=now_ms)

    def apply(self, key: str, value: str) -> bool:
        """Merge one comment entry into the record.

        Reserved names are matched case-insensitively; any other key is
        stored in ``extensions`` under its exact spelling.

        Args:
            key: Comment key (already trimmed)
            value: Comment value (already trimmed)

        Returns:
            True if a field value changed
        """
        name = key.lower()

        if name == "title":
            changed = self.title != value
            if changed:
                self.title = value
        elif name in ("artist", "album", "genre"):
            changed = getattr(self, name) != value
            if changed:
                setattr(self, name, value)
        else:
            changed = self.extensions.get(key) != value
            if changed:
                self.extensions[key] = value

        if changed:
            self.last_update = now_ms()
        return changed

    def is_complete(self) -> bool:
        """A record is worth publishing once it has a real title or an artist."""
        return self.title != DEFAULT_TITLE or self.artist is not None

    def render(self) -> str:
        """Render the record as a single display line.

        Only used as a deduplication key and for log output.

        Returns:
            e.g. "Artist: A | Title: T | Album: B | Genre: G | Comment: C"
        """
        parts = []
        if self.artist is not None:
            parts.append(f"Artist: {self.artist.strip()}")
        parts.append(f"Title: {self.title.strip()}")
        if self.album is not None:
            parts.append(f"Album: {self.album.strip()}")
        if self.genre is not None:
            parts.append(f"Genre: {self.genre.strip()}")

        for key, value in self.extensions.items():
            if key.lower() not in RESERVED_KEYS:
                parts.append(f"{key.strip()}: {value.strip()}")

        return " | ".join(parts)

    def copy(self) -> "MetadataRecord":
        """Return an independent snapshot of this record."""
        return MetadataRecord(
            title=self.title,
            artist=self.artist,
            album=self.album,
            genre=self.genre,
            extensions=dict(self.extensions),
            last_update=self.last_update,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with extension keys flattened to the top level.

        Fixed fields take precedence over an extension with the same name.
        """
        data: Dict[str, Any] = dict(self.extensions)
        data.update(
            {
                "title": self.title,
                "artist": self.artist,
                "album": self.album,
                "genre": self.genre,
                "last_update": self.last_update,
            }
        )
        return data
