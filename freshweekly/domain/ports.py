from __future__ import annotations

from typing import List, Protocol

from .entities import AlbumRef, Playlist, Track, UserProfile


class CatalogProvider(Protocol):
    """Port defining the catalog capabilities the generator consumes.

    Implementations own authorization, pagination and request timeouts, and map
    provider-specific payloads into domain entities. Failures are raised as
    subclasses of ``ProviderError``.
    """

    async def fetch_current_user_profile(self) -> UserProfile:
        """Return the authorized user."""

    async def fetch_all_playlists(self) -> List[Playlist]:
        """Return every playlist visible in the user's library."""

    async def fetch_playlist_tracks(self, playlist_id: str, max_tracks: int = 300) -> List[Track]:
        """Return up to roughly max_tracks playable tracks of a playlist."""

    async def fetch_artist_albums(self, artist_id: str, market: str = "US") -> List[AlbumRef]:
        """Return albums and singles of an artist available in market."""

    async def fetch_album_tracks(self, album_id: str) -> List[Track]:
        """Return all tracks of an album."""

    async def search_playlists(self, query: str, limit: int = 3) -> List[Playlist]:
        """Return up to limit public playlists matching query."""

    async def create_playlist(self, owner_id: str, name: str, description: str,
                              is_public: bool) -> Playlist:
        """Create a playlist owned by owner_id."""

    async def replace_playlist_tracks(self, playlist_id: str, uris: List[str]) -> None:
        """Replace playlist contents with at most 100 URIs."""

    async def add_tracks_to_playlist(self, playlist_id: str, uris: List[str]) -> None:
        """Append at most 100 URIs to a playlist."""
