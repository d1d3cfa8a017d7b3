from __future__ import annotations

import re
from typing import Iterable, List, Optional

from .entities import Playlist


_QUOTE_PATTERN = re.compile(r'"')

DEFAULT_PLAYLIST_NAME = "Fresh Weekly"


def clean_artist_name(value: Optional[str]) -> str:
    """Strip double quotes and surrounding whitespace so a name is safe inside a quoted query.

    Inner spacing is kept as Spotify has it.
    """
    return _QUOTE_PATTERN.sub("", value or "").strip()


def build_artist_playlist_query(artist_name: str) -> Optional[str]:
    name = clean_artist_name(artist_name)
    if not name:
        return None
    return f'artist:"{name}"'


def build_artist_playlist_queries(artist_names: Iterable[Optional[str]]) -> List[str]:
    queries = []
    for name in artist_names:
        query = build_artist_playlist_query(name)
        if query:
            queries.append(query)
    return queries


def normalize_playlist_name(value: Optional[str], default: str = DEFAULT_PLAYLIST_NAME) -> str:
    name = (value or "").strip()
    return name or default


def find_playlist_by_name(playlists: Iterable[Playlist], name: str) -> Optional[Playlist]:
    """Return the first playlist whose name equals name, ignoring case."""
    wanted = name.lower()
    for playlist in playlists:
        if (playlist.name or "").lower() == wanted:
            return playlist
    return None
