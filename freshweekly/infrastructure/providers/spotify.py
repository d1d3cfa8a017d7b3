import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

import requests
import spotipy
from spotipy.oauth2 import SpotifyOauthError, SpotifyPKCE
from urllib3.exceptions import ReadTimeoutError

from freshweekly.crosscutting.config import AppSettings, get_spotify_scope_string
from freshweekly.domain.entities import AlbumRef, Artist, Playlist, Track, UserProfile
from freshweekly.domain.errors import (
    NotFound, PermanentFailure, ProviderError, RateLimited, TemporaryFailure,
)
from freshweekly.domain.ports import CatalogProvider

logger = logging.getLogger(__name__)

MAX_WRITE_BATCH = 100
PLAYLIST_PAGE_SIZE = 50
PLAYLIST_TRACKS_PAGE_SIZE = 100
ALBUM_PAGE_SIZE = 50
PLAYLIST_TRACK_FIELDS = 'items(track(id,uri,name,artists(id,name))),next'


def artist_from_json(data: Any) -> Optional[Artist]:
    if not isinstance(data, dict) or not data.get('id'):
        return None
    return Artist(id=str(data['id']), name=str(data.get('name') or ''))


def track_from_json(data: Any) -> Optional[Track]:
    """Narrow a Spotify track object to a domain Track.

    Returns None for null items. Artists without an id (local files) are dropped.
    """
    if not isinstance(data, dict):
        return None
    raw_artists = data.get('artists')
    artists = []
    if isinstance(raw_artists, list):
        for raw in raw_artists:
            artist = artist_from_json(raw)
            if artist is not None:
                artists.append(artist)
    uri = data.get('uri')
    return Track(
        id=data.get('id'),
        uri=uri if isinstance(uri, str) and uri else None,
        name=str(data.get('name') or ''),
        artists=tuple(artists),
    )


def playlist_from_json(data: Any) -> Optional[Playlist]:
    if not isinstance(data, dict) or not data.get('id'):
        return None
    owner = data.get('owner') if isinstance(data.get('owner'), dict) else {}
    tracks = data.get('tracks') if isinstance(data.get('tracks'), dict) else {}
    return Playlist(
        id=str(data['id']),
        name=str(data.get('name') or ''),
        owner_id=str(owner.get('id') or ''),
        track_count=int(tracks.get('total') or 0),
    )


def album_from_json(data: Any) -> Optional[AlbumRef]:
    if not isinstance(data, dict) or not data.get('id'):
        return None
    return AlbumRef(
        id=str(data['id']),
        name=str(data.get('name') or ''),
        album_type=data.get('album_type'),
    )


def _page_items(page: Any) -> List[Any]:
    if not isinstance(page, dict):
        return []
    items = page.get('items')
    return items if isinstance(items, list) else []


class SpotifyCatalog(CatalogProvider):
    """Spotify Web API catalog built on spotipy.

    spotipy is synchronous, so each request runs in a worker thread and
    concurrent fetches from the generator overlap on I/O.
    """

    def __init__(self, client: spotipy.Spotify):
        self._client = client

    @classmethod
    def from_token(cls, access_token: str, requests_timeout: int = 15) -> 'SpotifyCatalog':
        """Build a catalog from a bare access token (no refresh)."""
        return cls(spotipy.Spotify(auth=access_token, requests_timeout=requests_timeout))

    @classmethod
    def from_auth_manager(cls, auth_manager: Any, requests_timeout: int = 15) -> 'SpotifyCatalog':
        """Build a catalog whose credentials are acquired and refreshed by auth_manager."""
        return cls(spotipy.Spotify(auth_manager=auth_manager, requests_timeout=requests_timeout))

    @classmethod
    def from_settings(cls, settings: AppSettings) -> 'SpotifyCatalog':
        if settings.access_token:
            return cls.from_token(settings.access_token, settings.requests_timeout)
        return cls.from_auth_manager(build_auth_manager(settings), settings.requests_timeout)

    def _map_error(self, error: Exception, operation: str) -> ProviderError:
        """Translate spotipy/requests failures into provider errors."""
        if isinstance(error, ProviderError):
            return error
        if isinstance(error, SpotifyOauthError):
            # Token refresh or grant failed; the user has to log in again
            return PermanentFailure(f"{operation} failed: authorization error: {error}")
        if isinstance(error, spotipy.SpotifyException):
            status = error.http_status
            message = f"{operation} failed ({status}): {error.msg}"
            if status == 429:
                headers = error.headers or {}
                try:
                    retry_after = int(headers.get('Retry-After', 1))
                except (TypeError, ValueError):
                    retry_after = 1
                return RateLimited(retry_after_ms=retry_after * 1000, message=message)
            if status in (401, 403):
                return PermanentFailure(message)
            if status == 404:
                return NotFound(message)
            if status is not None and int(status) >= 500:
                return TemporaryFailure(message)
            return PermanentFailure(message)
        # Connection errors and read timeouts
        return TemporaryFailure(f"{operation} failed: {error}")

    async def _call(self, operation: str, func: Callable, *args, **kwargs):
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except (spotipy.SpotifyException, SpotifyOauthError,
                requests.exceptions.RequestException, ReadTimeoutError) as e:
            logger.error(f"Spotify {operation} failed: {e}")
            raise self._map_error(e, operation) from e

    def _collect_pages(self, first_page: Any, convert: Callable[[Any], Any],
                       limit: Optional[int] = None) -> List[Any]:
        results = []
        page = first_page
        while page:
            for item in _page_items(page):
                converted = convert(item)
                if converted is not None:
                    results.append(converted)
            if limit is not None and len(results) >= limit:
                return results[:limit]
            page = self._client.next(page) if page.get('next') else None
        return results

    # Blocking implementations

    def _current_user_profile(self) -> UserProfile:
        data = self._client.current_user() or {}
        if not data.get('id'):
            raise PermanentFailure("Current user profile has no id")
        return UserProfile(
            id=str(data['id']),
            country=data.get('country') or None,
            display_name=data.get('display_name'),
        )

    def _all_playlists(self) -> List[Playlist]:
        first = self._client.current_user_playlists(limit=PLAYLIST_PAGE_SIZE)
        return self._collect_pages(first, playlist_from_json)

    def _playlist_tracks(self, playlist_id: str, max_tracks: int) -> List[Track]:
        if max_tracks <= 0:
            return []
        first = self._client.playlist_items(
            playlist_id,
            fields=PLAYLIST_TRACK_FIELDS,
            limit=min(PLAYLIST_TRACKS_PAGE_SIZE, max_tracks),
            additional_types=('track',),
        )

        def _convert(item: Any) -> Optional[Track]:
            return track_from_json(item.get('track')) if isinstance(item, dict) else None

        return self._collect_pages(first, _convert, limit=max_tracks)

    def _artist_albums(self, artist_id: str, market: str) -> List[AlbumRef]:
        first = self._client.artist_albums(
            artist_id,
            include_groups='album,single',
            country=market,
            limit=ALBUM_PAGE_SIZE,
        )
        return self._collect_pages(first, album_from_json)

    def _album_tracks(self, album_id: str) -> List[Track]:
        first = self._client.album_tracks(album_id, limit=ALBUM_PAGE_SIZE)
        return self._collect_pages(first, track_from_json)

    def _search_playlists(self, query: str, limit: int) -> List[Playlist]:
        data = self._client.search(q=query, limit=limit, type='playlist') or {}
        results = []
        for item in _page_items(data.get('playlists')):
            playlist = playlist_from_json(item)
            if playlist is not None:
                results.append(playlist)
        return results

    def _create_playlist(self, owner_id: str, name: str, description: str,
                         is_public: bool) -> Playlist:
        data = self._client.user_playlist_create(
            owner_id, name, public=is_public, description=description
        )
        playlist = playlist_from_json(data)
        if playlist is None:
            raise PermanentFailure(f"Playlist creation for '{name}' returned no id")
        return playlist

    # CatalogProvider

    async def fetch_current_user_profile(self) -> UserProfile:
        return await self._call("fetch current user", self._current_user_profile)

    async def fetch_all_playlists(self) -> List[Playlist]:
        playlists = await self._call("list playlists", self._all_playlists)
        logger.debug(f"Fetched {len(playlists)} playlists")
        return playlists

    async def fetch_playlist_tracks(self, playlist_id: str, max_tracks: int = 300) -> List[Track]:
        return await self._call(f"fetch playlist {playlist_id} tracks",
                                self._playlist_tracks, playlist_id, max_tracks)

    async def fetch_artist_albums(self, artist_id: str, market: str = "US") -> List[AlbumRef]:
        return await self._call(f"fetch albums of artist {artist_id}",
                                self._artist_albums, artist_id, market)

    async def fetch_album_tracks(self, album_id: str) -> List[Track]:
        return await self._call(f"fetch album {album_id} tracks", self._album_tracks, album_id)

    async def search_playlists(self, query: str, limit: int = 3) -> List[Playlist]:
        return await self._call("search playlists", self._search_playlists, query, limit)

    async def create_playlist(self, owner_id: str, name: str, description: str,
                              is_public: bool) -> Playlist:
        logger.info(f"Creating new playlist: {name}")
        return await self._call("create playlist", self._create_playlist,
                                owner_id, name, description, is_public)

    async def replace_playlist_tracks(self, playlist_id: str, uris: List[str]) -> None:
        self._check_batch(uris)
        await self._call("replace playlist tracks", self._client.playlist_replace_items,
                         playlist_id, list(uris))

    async def add_tracks_to_playlist(self, playlist_id: str, uris: List[str]) -> None:
        self._check_batch(uris)
        if not uris:
            return
        await self._call("add tracks to playlist", self._client.playlist_add_items,
                         playlist_id, list(uris))

    @staticmethod
    def _check_batch(uris: List[str]) -> None:
        # Spotify allows up to 100 tracks per request
        if len(uris) > MAX_WRITE_BATCH:
            raise ValueError(f"At most {MAX_WRITE_BATCH} URIs per request, got {len(uris)}")


def build_auth_manager(settings: AppSettings) -> SpotifyPKCE:
    """PKCE auth manager; spotipy owns token acquisition, refresh and caching."""
    settings.cache_path.parent.mkdir(parents=True, exist_ok=True)
    return SpotifyPKCE(
        client_id=settings.client_id,
        redirect_uri=settings.redirect_uri,
        scope=get_spotify_scope_string(),
        cache_path=str(settings.cache_path),
        open_browser=True,
    )
