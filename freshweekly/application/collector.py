from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Iterable, List, Optional, Sequence

from freshweekly.domain.entities import Track
from freshweekly.domain.errors import CollectorFetchError, ProviderError
from freshweekly.domain.ports import CatalogProvider


logger = logging.getLogger(__name__)

ALBUMS_PER_ARTIST = 4
TRACKS_PER_ALBUM = 6


def shuffled(items: Sequence, rng: random.Random) -> list:
    """Return a shuffled copy of items."""
    copy = list(items)
    rng.shuffle(copy)
    return copy


async def gather_settled(awaitables: Iterable[Awaitable]) -> list:
    """Await all lookups, then raise the first provider failure if any.

    Every lookup has settled by the time an error propagates.
    """
    results = await asyncio.gather(*awaitables, return_exceptions=True)
    for result in results:
        if isinstance(result, ProviderError):
            raise result
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results


class CandidateCollector:
    """Expands artists into a pool of candidate tracks from their albums."""

    def __init__(self,
                 catalog: CatalogProvider,
                 market: str = "US",
                 rng: Optional[random.Random] = None,
                 albums_per_artist: int = ALBUMS_PER_ARTIST,
                 tracks_per_album: int = TRACKS_PER_ALBUM):
        """Initialize candidate collector.

        Args:
            catalog: Catalog provider used for album and track lookups
            market: Market the user's albums must be available in
            rng: Random source for album and track sampling
            albums_per_artist: Album budget per requested artist
            tracks_per_album: Maximum tracks kept from each sampled album
        """
        self.catalog = catalog
        self.market = market
        self.rng = rng or random.Random()
        self.albums_per_artist = albums_per_artist
        self.tracks_per_album = tracks_per_album

    async def collect(self, artist_ids: Sequence[str]) -> List[Track]:
        """Collect a shuffled candidate pool for the given artists.

        Raises:
            CollectorFetchError: If any album or track fetch fails
        """
        if not artist_ids:
            return []

        try:
            album_lists = await gather_settled(
                self.catalog.fetch_artist_albums(artist_id, self.market)
                for artist_id in artist_ids
            )
        except ProviderError as e:
            raise CollectorFetchError(f"Failed to fetch albums for artists {list(artist_ids)}: {e}") from e

        album_ids = shuffled([album.id for albums in album_lists for album in albums], self.rng)
        sampled_album_ids = album_ids[:len(artist_ids) * self.albums_per_artist]

        try:
            album_tracks = await gather_settled(
                self.catalog.fetch_album_tracks(album_id)
                for album_id in sampled_album_ids
            )
        except ProviderError as e:
            raise CollectorFetchError(f"Failed to fetch album tracks: {e}") from e

        candidates: List[Track] = []
        for tracks in album_tracks:
            candidates.extend(shuffled(tracks, self.rng)[:self.tracks_per_album])

        logger.debug(f"Collected {len(candidates)} candidates from {len(sampled_album_ids)} albums "
                     f"of {len(artist_ids)} artists")
        return candidates
