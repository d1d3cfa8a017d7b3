from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from freshweekly.domain.entities import Track


def _bucket_key(track: Track, index: int) -> str:
    primary = track.primary_artist
    if primary is not None and primary.id:
        return f"artist:{primary.id}"
    # Tracks without an artist never collide with each other
    return f"track:{track.uri or track.id or index}:{index}"


def interleave(tracks: Sequence[Track]) -> List[Track]:
    """Reorder tracks so the same primary artist does not play twice in a row.

    The artist with the most remaining tracks goes first unless it was the
    previous one; an artist repeats only when it is the last one left.
    """
    buckets: Dict[str, List[Track]] = {}
    for index, track in enumerate(tracks):
        buckets.setdefault(_bucket_key(track, index), []).append(track)

    ordered: List[Track] = []
    last_key: Optional[str] = None

    while buckets:
        ranked = sorted(buckets.items(), key=lambda item: len(item[1]), reverse=True)
        key, remaining = next(
            ((k, v) for k, v in ranked if k != last_key),
            ranked[0],
        )
        ordered.append(remaining.pop(0))
        last_key = key
        if not remaining:
            del buckets[key]

    return ordered
