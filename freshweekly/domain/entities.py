from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True)
class Artist:
    """Artist credited on a track."""

    id: str
    name: str = ""


@dataclass(frozen=True)
class Track:
    """Domain entity representing a playable catalog track."""

    id: Optional[str] = None
    uri: Optional[str] = None
    name: str = ""
    artists: Tuple[Artist, ...] = ()

    def __post_init__(self):
        if not isinstance(self.artists, tuple):
            object.__setattr__(self, 'artists', tuple(self.artists or ()))

    @property
    def primary_artist(self) -> Optional[Artist]:
        """First credited artist, or None for tracks without artist metadata."""
        return self.artists[0] if self.artists else None


@dataclass(frozen=True)
class AlbumRef:
    """Reference to an album or single of an artist."""

    id: str
    name: str = ""
    album_type: Optional[str] = None


@dataclass(frozen=True)
class Playlist:
    """Domain entity representing a playlist."""

    id: str
    name: str
    owner_id: str = ""
    track_count: int = 0


@dataclass(frozen=True)
class UserProfile:
    """Current user as seen by the catalog."""

    id: str
    country: Optional[str] = None
    display_name: Optional[str] = None


@dataclass(frozen=True)
class ArtistWeights:
    """Occurrence counts of primary artists within a source playlist."""

    counts: Dict[str, int] = field(default_factory=dict)
    names: Dict[str, str] = field(default_factory=dict)

    def entries(self) -> List[Tuple[str, int]]:
        return list(self.counts.items())

    def artist_ids(self) -> List[str]:
        return list(self.counts.keys())

    def name_of(self, artist_id: str) -> Optional[str]:
        return self.names.get(artist_id)

    def __len__(self) -> int:
        return len(self.counts)


@dataclass(frozen=True)
class GenerationResult:
    """Outcome of one successful generation run."""

    tracks: Tuple[Track, ...]
    playlist_id: Optional[str]
    playlist_name: str
    seed_artist_ids: Tuple[str, ...] = ()
    reused_existing: bool = False
    dry_run: bool = False
    metrics: Dict[str, object] = field(default_factory=dict)

    @property
    def uris(self) -> List[str]:
        return [track.uri for track in self.tracks if track.uri]

    @property
    def playlist_url(self) -> Optional[str]:
        if not self.playlist_id:
            return None
        return f"https://open.spotify.com/playlist/{self.playlist_id}"
