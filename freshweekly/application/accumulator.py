from __future__ import annotations

import logging
import random
from typing import Dict, Iterable, List, Optional, Set

from freshweekly.domain.entities import Track


logger = logging.getLogger(__name__)


class TrackAccumulator:
    """Filters candidate batches into the final track selection.

    Rejects tracks from the source playlist, tracks already accepted and
    tracks whose primary artist already reached the per-artist cap.
    """

    def __init__(self,
                 target_count: int,
                 max_per_artist: int,
                 excluded_uris: Iterable[str] = (),
                 rng: Optional[random.Random] = None):
        self.target_count = target_count
        self.max_per_artist = max_per_artist
        self.excluded_uris: Set[str] = set(excluded_uris)
        self.rng = rng or random.Random()
        self._seen_uris: Set[str] = set()
        self._artist_counts: Dict[str, int] = {}
        self._tracks: List[Track] = []

    def add(self, candidates: Iterable[Track]) -> int:
        """Offer a batch of candidates; returns how many were accepted."""
        batch = list(candidates)
        self.rng.shuffle(batch)

        accepted = 0
        for track in batch:
            if self.is_satisfied():
                break
            if not track.uri:
                continue
            if track.uri in self.excluded_uris or track.uri in self._seen_uris:
                continue
            primary = track.primary_artist
            if primary is None or not primary.id:
                continue
            count = self._artist_counts.get(primary.id, 0)
            if count >= self.max_per_artist:
                continue

            self._artist_counts[primary.id] = count + 1
            self._seen_uris.add(track.uri)
            self._tracks.append(track)
            accepted += 1

        logger.debug(f"Accepted {accepted}/{len(batch)} candidates "
                     f"({len(self._tracks)}/{self.target_count} total)")
        return accepted

    def is_satisfied(self) -> bool:
        return len(self._tracks) >= self.target_count

    def result(self) -> List[Track]:
        return list(self._tracks)

    def artist_count(self, artist_id: str) -> int:
        return self._artist_counts.get(artist_id, 0)

    def __len__(self) -> int:
        return len(self._tracks)
