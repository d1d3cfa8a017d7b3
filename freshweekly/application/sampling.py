from __future__ import annotations

import logging
import random
from collections import Counter
from typing import Iterable, List, Optional, Sequence, Tuple

from freshweekly.domain.entities import ArtistWeights, Track


logger = logging.getLogger(__name__)


def build_artist_weights(tracks: Iterable[Track]) -> ArtistWeights:
    """Count primary artists of the given tracks.

    Tracks without artist metadata carry no signal and are skipped.
    """
    counts: Counter = Counter()
    names = {}
    for track in tracks:
        primary = track.primary_artist
        if primary is None or not primary.id:
            continue
        counts[primary.id] += 1
        names[primary.id] = primary.name
    return ArtistWeights(counts=dict(counts), names=names)


def weighted_sample(entries: Sequence[Tuple[str, float]],
                    count: int,
                    bias_exponent: float = 1.0,
                    rng: Optional[random.Random] = None) -> List[str]:
    """Draw up to count ids without replacement, proportional to weight ** bias_exponent.

    The pool is renormalized after every draw, so each pick is a fresh weighted
    draw over the entries that remain.

    Args:
        entries: (id, weight) pairs; every weight must be positive
        count: Number of ids to draw
        bias_exponent: Exponent applied to each weight before sampling
        rng: Random source, an unseeded one is used when omitted

    Returns:
        At most min(count, len(entries)) distinct ids in draw order
    """
    if count < 0:
        raise ValueError(f"count must be non-negative, got {count}")

    rng = rng or random.Random()
    pool = []
    for entry_id, weight in entries:
        if weight <= 0:
            raise ValueError(f"weight for {entry_id!r} must be positive, got {weight}")
        pool.append((entry_id, float(weight) ** bias_exponent))

    picks: List[str] = []
    while len(picks) < count and pool:
        total = sum(weight for _, weight in pool)
        roll = rng.random() * total
        picked_index = len(pool) - 1
        cumulative = 0.0
        for index, (_, weight) in enumerate(pool):
            cumulative += weight
            if cumulative > roll:
                picked_index = index
                break
        picks.append(pool.pop(picked_index)[0])

    logger.debug(f"Sampled {len(picks)} of {len(entries)} entries with bias {bias_exponent}")
    return picks
